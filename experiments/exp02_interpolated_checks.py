from __future__ import annotations
import jax.numpy as jnp
import numpy as np

from gpmp_jit import (
    PointRobotModel,
    BodySphere,
    TrajOptimizerSetting,
    batch_traj_optimize,
    collision_cost,
    interpolate_trajectory,
    signed_distance_field_2d,
    straight_line_trajectory,
)


def run_experiment():
    """
    Coarse knots can jump over a thin wall. Compare plans made with and
    without interpolated obstacle factors, scored densely in both cases.
    """
    robot = PointRobotModel(dof=2, spheres=[BodySphere(0, 0.05)])

    cell = 0.02
    coords = -1.0 + cell * np.arange(101)
    xs, ys = np.meshgrid(coords, coords)
    occupancy = ((np.abs(xs) <= 0.04) & (ys < 0.6)).astype(float)   # thin wall with a gap above
    sdf = signed_distance_field_2d(occupancy, origin=(-1.0, -1.0), cell_size=cell)

    start, end, zero = jnp.array([-0.8, 0.0]), jnp.array([0.8, 0.0]), jnp.zeros(2)
    base = TrajOptimizerSetting(dof=2, total_time=4.0, total_step=4, epsilon=0.05, cost_sigma=0.05)
    dense = base.replace(obs_check_inter=20)
    init = straight_line_trajectory(start, end, base.total_time, base.total_step)

    for label, setting in (("knots only", base), ("interpolated", base.replace(obs_check_inter=8))):
        traj = batch_traj_optimize(robot, sdf, start, zero, end, zero, init, setting)
        print(f"\n=== {label} ===")
        print("knots:\n", np.round(np.asarray(traj.poses), 3))
        print("dense collision cost:", collision_cost(robot, sdf, traj, dense))

    samples = interpolate_trajectory(init, base.delta_t, inter_step=3)
    print("\nwarm start resampled to", samples.num_knots, "states")


if __name__ == "__main__":
    run_experiment()
