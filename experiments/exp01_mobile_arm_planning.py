from __future__ import annotations
import logging

import jax.numpy as jnp
import numpy as np

from gpmp_jit import (
    Arm,
    BodySphere,
    Pose2MobileArmModel,
    TrajOptimizerSetting,
    batch_traj_optimize_pose2_mobile_arm_2d,
    collision_cost_pose2_mobile_arm_2d,
    signed_distance_field_2d,
    straight_line_trajectory,
)


def run_experiment():
    # --- Planar mobile base carrying a two-link arm ---
    arm = Arm.planar([0.4, 0.3])
    spheres = [
        BodySphere(0, 0.25),
        BodySphere(1, 0.05, center=(-0.2, 0.0, 0.0)),
        BodySphere(1, 0.05),
        BodySphere(2, 0.05),
    ]
    robot = Pose2MobileArmModel(arm, spheres)

    # --- Corridor with a pillar in the middle ---
    cell = 0.05
    coords = -3.0 + cell * np.arange(121)
    xs, ys = np.meshgrid(coords, coords)
    occupancy = ((xs ** 2 + (ys - 0.1) ** 2) <= 0.4 ** 2).astype(float)
    occupancy[np.abs(ys) > 1.8] = 1.0
    sdf = signed_distance_field_2d(occupancy, origin=(-3.0, -3.0), cell_size=cell)

    setting = TrajOptimizerSetting(
        dof=robot.dof,
        total_time=10.0,
        total_step=20,
        obs_check_inter=4,
        epsilon=0.2,
        cost_sigma=0.05,
        verbose=True,
    )

    start = jnp.array([-2.0, 0.0, 0.0, 0.0, 0.0])
    end = jnp.array([2.0, 0.0, 0.0, jnp.pi / 2, 0.0])
    zero = jnp.zeros(robot.dof)
    init = straight_line_trajectory(
        start, end, setting.total_time, setting.total_step, pose_space=robot.pose_space
    )

    print("\n=== INITIAL TRAJECTORY ===")
    print("collision cost:", collision_cost_pose2_mobile_arm_2d(robot, sdf, init, setting))

    traj = batch_traj_optimize_pose2_mobile_arm_2d(
        robot, sdf, start, zero, end, zero, init, setting
    )

    print("\n=== OPTIMIZED TRAJECTORY ===")
    for i, (pose, vel) in enumerate(zip(traj.poses, traj.velocities)):
        print(f"{i:2d}: base {np.round(pose[:3], 3)}  arm {np.round(pose[3:], 3)}  |v| {float(jnp.linalg.norm(vel)):.3f}")
    print("collision cost:", collision_cost_pose2_mobile_arm_2d(robot, sdf, traj, setting))


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_experiment()
