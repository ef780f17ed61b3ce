from __future__ import annotations

import jax.numpy as jnp
import numpy as np
import pytest

from gpmp_jit import (
    Arm,
    ArmModel,
    BodySphere,
    InvalidConfigurationError,
    OptimizerType,
    PointRobotModel,
    Pose2MobileArmModel,
    TrajOptimizerSetting,
    batch_traj_optimize,
    batch_traj_optimize_2d_arm,
    batch_traj_optimize_3d_arm,
    batch_traj_optimize_pose2_mobile_arm,
    batch_traj_optimize_pose2_mobile_arm_2d,
    batch_traj_optimize_result,
    collision_cost,
    collision_cost_2d_arm,
    collision_cost_3d_arm,
    collision_cost_pose2_mobile_arm,
    collision_cost_pose2_mobile_arm_2d,
    signed_distance_field_2d,
    signed_distance_field_3d,
    straight_line_trajectory,
)
from gpmp_jit.gp.prior import gp_prior_residual
from gpmp_jit.planner import graph as graph_module
from gpmp_jit.planner.graph import build_trajectory_graph
from gpmp_jit.planner.optimizer import graph_error, optimize_trajectory_graph


def _disk_sdf(center=(0.0, 0.05), radius=0.3, cell=0.05, half=1.5):
    n = int(round(2 * half / cell)) + 1
    coords = -half + cell * np.arange(n)
    xs, ys = np.meshgrid(coords, coords)      # rows follow y, columns follow x
    occupancy = ((xs - center[0]) ** 2 + (ys - center[1]) ** 2 <= radius ** 2).astype(float)
    return signed_distance_field_2d(occupancy, origin=(-half, -half), cell_size=cell)


def _empty_sdf_2d():
    return signed_distance_field_2d(np.zeros((20, 20)), origin=(-2.0, -2.0), cell_size=0.2)


def _box_sdf_3d():
    occupancy = np.zeros((30, 30, 20))
    occupancy[20:24, 20:24, 8:12] = 1.0       # small block away from the robots
    return signed_distance_field_3d(occupancy, origin=(-1.5, -1.5, -1.0), cell_size=0.1)


def _point_robot():
    return PointRobotModel(dof=2, spheres=[BodySphere(link_id=0, radius=0.1)])


def _midpoint_problem(**changes):
    setting = TrajOptimizerSetting(
        dof=2, total_time=2.0, total_step=10, obs_check_inter=1,
        epsilon=0.1, cost_sigma=0.1, rel_thresh=1e-4,
    ).replace(**changes)
    start, end = jnp.array([-1.0, 0.0]), jnp.array([1.0, 0.0])
    init = straight_line_trajectory(start, end, setting.total_time, setting.total_step)
    return _point_robot(), _disk_sdf(), start, end, init, setting


@pytest.mark.parametrize("optimizer", [OptimizerType.LEVENBERG_MARQUARDT, OptimizerType.DOGLEG])
def test_optimizer_clears_midpoint_obstacle(optimizer):
    robot, sdf, start, end, init, setting = _midpoint_problem(optimizer=optimizer)
    zero = jnp.zeros(2)

    result = batch_traj_optimize_result(robot, sdf, start, zero, end, zero, init, setting)
    assert result.final_error <= result.initial_error

    cost_before = collision_cost(robot, sdf, init, setting)
    cost_after = collision_cost(robot, sdf, result.trajectory, setting)
    assert cost_before > 1.0
    assert cost_after < 0.25 * cost_before

    # obstacle sits slightly above the straight line, so the path bends below it
    assert float(result.trajectory.poses[5, 1]) < -0.1


def test_boundary_knots_pinned_exactly():
    robot, sdf, start, end, _, setting = _midpoint_problem(max_iter=5)
    zero = jnp.zeros(2)
    # warm start whose ends disagree with the requested boundary
    init = straight_line_trajectory([-0.8, 0.3], [0.7, -0.2], setting.total_time, setting.total_step)

    traj = batch_traj_optimize(robot, sdf, start, zero, end, zero, init, setting)
    assert traj.num_knots == setting.total_step + 1
    assert jnp.allclose(traj.poses[0], start, atol=1e-12)
    assert jnp.allclose(traj.poses[-1], end, atol=1e-12)
    assert jnp.allclose(traj.velocities[0], zero, atol=1e-12)
    assert jnp.allclose(traj.velocities[-1], zero, atol=1e-12)


def test_soft_boundary_priors_stay_close():
    robot, sdf, start, end, init, setting = _midpoint_problem(
        conf_prior_sigma=1e-3, vel_prior_sigma=1e-3,
    )
    zero = jnp.zeros(2)
    traj = batch_traj_optimize(robot, sdf, start, zero, end, zero, init, setting)
    assert jnp.allclose(traj.poses[0], start, atol=1e-2)
    assert jnp.allclose(traj.poses[-1], end, atol=1e-2)


def test_graph_error_never_increases():
    robot, sdf, start, end, init, setting = _midpoint_problem()
    zero = jnp.zeros(2)
    graph = build_trajectory_graph(robot, sdf, start, zero, end, zero, init, setting)

    before = graph_error(graph)
    result = optimize_trajectory_graph(graph, setting)
    after = graph_error(graph, result.trajectory)

    assert result.initial_error == pytest.approx(before)
    assert after == pytest.approx(result.final_error)
    assert after <= before


def test_graph_structure():
    robot, sdf, start, end, init, setting = _midpoint_problem(obs_check_inter=2)
    zero = jnp.zeros(2)
    N = setting.total_step

    graph = build_trajectory_graph(robot, sdf, start, zero, end, zero, init, setting)
    assert graph.num_knots == N + 1
    assert graph.count_factors("prior") == 4
    assert graph.count_factors("gp_prior") == N
    assert graph.count_factors("obstacle") == N + 1
    assert graph.count_factors("obstacle_gp") == 2 * N

    graph = build_trajectory_graph(
        robot, sdf, start, zero, end, zero, init,
        setting.replace(interpolate_obstacles=False),
    )
    assert graph.count_factors("obstacle_gp") == 0


def test_limit_factors_added_on_interior_knots():
    robot, sdf, start, end, init, setting = _midpoint_problem(
        flag_pos_limit=True,
        joint_pos_limits_down=[-2.0, -2.0],
        joint_pos_limits_up=[2.0, 2.0],
        flag_vel_limit=True,
        vel_limits=[3.0, 3.0],
    )
    zero = jnp.zeros(2)
    graph = build_trajectory_graph(robot, sdf, start, zero, end, zero, init, setting)
    assert graph.count_factors("joint_limit") == setting.total_step - 1
    assert graph.count_factors("velocity_limit") == setting.total_step - 1


def test_single_interval_in_free_space_has_zero_cost():
    robot = _point_robot()
    sdf = _empty_sdf_2d()
    setting = TrajOptimizerSetting(dof=2, total_time=1.0, total_step=1, obs_check_inter=3)
    start, end, zero = jnp.array([0.0, 0.0]), jnp.array([1.0, 0.5]), jnp.zeros(2)
    init = straight_line_trajectory(start, end, 1.0, 1)

    traj = batch_traj_optimize(robot, sdf, start, zero, end, zero, init, setting)
    assert traj.num_knots == 2
    assert collision_cost(robot, sdf, traj, setting) == 0.0


@pytest.mark.parametrize("optimizer", list(OptimizerType))
def test_identical_start_and_end_rests(optimizer):
    robot = _point_robot()
    sdf = _empty_sdf_2d()
    setting = TrajOptimizerSetting(dof=2, total_time=1.0, total_step=5, optimizer=optimizer)
    conf, zero = jnp.array([0.3, 0.2]), jnp.zeros(2)
    # perturbed warm start with spurious motion
    poses = jnp.tile(conf, (6, 1)) + 0.05 * jnp.sin(jnp.arange(12.0)).reshape(6, 2)
    velocities = 0.1 * jnp.ones((6, 2))

    traj = batch_traj_optimize(robot, sdf, conf, zero, conf, zero, (poses, velocities), setting)
    assert jnp.allclose(traj.velocities, 0.0, atol=1e-3)
    assert jnp.allclose(traj.poses, jnp.tile(conf, (6, 1)), atol=1e-3)


def test_evaluator_is_repeatable_and_counts_interpolated_states():
    robot, sdf, start, end, init, setting = _midpoint_problem()
    first = collision_cost(robot, sdf, init, setting)
    second = collision_cost(robot, sdf, init, setting)
    assert first == second

    knots_only = collision_cost(robot, sdf, init, setting.replace(interpolate_obstacles=False))
    assert 0.0 < knots_only < first


@pytest.mark.parametrize(
    "changes",
    [
        dict(total_step=0),
        dict(dof=3),
        dict(obs_check_inter=-2),
    ],
)
def test_invalid_settings_fail_before_solving(changes):
    robot, sdf, start, end, init, setting = _midpoint_problem()
    zero = jnp.zeros(2)
    with pytest.raises(InvalidConfigurationError):
        batch_traj_optimize(robot, sdf, start, zero, end, zero, init, setting.replace(**changes))


def test_invalid_problem_shapes_rejected():
    robot, sdf, start, end, init, setting = _midpoint_problem()
    zero = jnp.zeros(2)
    with pytest.raises(InvalidConfigurationError):
        # one knot short
        short = straight_line_trajectory(start, end, 2.0, setting.total_step - 1)
        batch_traj_optimize(robot, sdf, start, zero, end, zero, short, setting)
    with pytest.raises(InvalidConfigurationError):
        batch_traj_optimize(robot, sdf, jnp.zeros(3), zero, end, zero, init, setting)
    with pytest.raises(InvalidConfigurationError):
        batch_traj_optimize(robot, sdf, start, zero, end, zero, 5, setting)


def _planar_arm():
    arm = Arm.planar([0.5, 0.5])
    spheres = [BodySphere(0, 0.05), BodySphere(1, 0.05)]
    return ArmModel(arm, spheres)


def _spatial_arm():
    arm = Arm(a=(0.0, 0.4, 0.4), alpha=(jnp.pi / 2, 0.0, 0.0), d=(0.3, 0.0, 0.0))
    spheres = [BodySphere(1, 0.05), BodySphere(2, 0.05)]
    return ArmModel(arm, spheres)


def _mobile_arm():
    arm = Arm.planar([0.5])
    spheres = [BodySphere(0, 0.2), BodySphere(1, 0.05)]
    return Pose2MobileArmModel(arm, spheres)


INSTANTIATIONS = [
    (_planar_arm, _disk_sdf, batch_traj_optimize_2d_arm, collision_cost_2d_arm,
     [0.0, 0.0], [1.2, -0.4]),
    (_spatial_arm, _box_sdf_3d, batch_traj_optimize_3d_arm, collision_cost_3d_arm,
     [0.0, 0.0, 0.0], [0.8, 0.4, -0.3]),
    (_mobile_arm, _disk_sdf, batch_traj_optimize_pose2_mobile_arm_2d, collision_cost_pose2_mobile_arm_2d,
     [-1.0, -0.8, 0.0, 0.0], [-0.4, -0.8, 0.3, 0.5]),
    (_mobile_arm, _box_sdf_3d, batch_traj_optimize_pose2_mobile_arm, collision_cost_pose2_mobile_arm,
     [-1.0, -0.8, 0.0, 0.0], [-0.4, -0.8, 0.3, 0.5]),
]


@pytest.mark.parametrize("make_robot, make_sdf, optimize, cost, start, end", INSTANTIATIONS)
def test_all_robot_instantiations(make_robot, make_sdf, optimize, cost, start, end):
    robot, sdf = make_robot(), make_sdf()
    setting = TrajOptimizerSetting(
        dof=robot.dof, total_time=1.0, total_step=4, obs_check_inter=1, max_iter=10,
    )
    start, end = jnp.array(start), jnp.array(end)
    zero = jnp.zeros(robot.dof)
    init = straight_line_trajectory(start, end, 1.0, 4, pose_space=robot.pose_space)

    traj = optimize(robot, sdf, start, zero, end, zero, init, setting)
    assert traj.poses.shape == (5, robot.pose_dim)
    assert traj.velocities.shape == (5, robot.dof)
    assert jnp.allclose(traj.poses[0], start, atol=1e-9)
    assert jnp.allclose(traj.poses[-1], end, atol=1e-9)

    score = cost(robot, sdf, traj, setting)
    assert np.isfinite(score) and score >= 0.0
    assert cost(robot, sdf, traj, setting) == score


def test_pairing_mismatch_rejected():
    setting = TrajOptimizerSetting(dof=2, total_step=2)
    arm = _planar_arm()
    start, zero = jnp.zeros(2), jnp.zeros(2)
    init = straight_line_trajectory(start, start, 1.0, 2)
    with pytest.raises(InvalidConfigurationError):
        batch_traj_optimize_3d_arm(arm, _disk_sdf(), start, zero, start, zero, init, setting)
    with pytest.raises(InvalidConfigurationError):
        batch_traj_optimize_pose2_mobile_arm_2d(arm, _disk_sdf(), start, zero, start, zero, init, setting)
    with pytest.raises(InvalidConfigurationError):
        collision_cost_3d_arm(arm, _disk_sdf(), init, setting)


def test_position_limits_bound_the_detour():
    robot, sdf, start, end, init, setting = _midpoint_problem(
        flag_pos_limit=True,
        joint_pos_limits_down=[-2.0, -0.2],
        joint_pos_limits_up=[2.0, 2.0],
    )
    zero = jnp.zeros(2)
    traj = batch_traj_optimize(robot, sdf, start, zero, end, zero, init, setting)
    assert float(jnp.min(traj.poses[:, 1])) > -0.25


def test_evaluator_rejects_trajectory_not_matching_settings():
    robot, sdf, start, end, _, _ = _midpoint_problem()
    setting = TrajOptimizerSetting(dof=2, total_step=10, obs_check_inter=3)
    short = straight_line_trajectory(start, end, 1.0, 3)
    with pytest.raises(InvalidConfigurationError):
        collision_cost(robot, sdf, short, setting)

    # right knot count, wrong widths
    wide = (jnp.zeros((11, 3)), jnp.zeros((11, 3)))
    with pytest.raises(InvalidConfigurationError):
        collision_cost(robot, sdf, wide, setting)
    with pytest.raises(InvalidConfigurationError):
        collision_cost(robot, sdf, short, setting.replace(dof=3, total_step=3))


def test_mobile_base_end_heading_kept_exactly():
    robot, sdf = _mobile_arm(), _disk_sdf()
    setting = TrajOptimizerSetting(dof=4, total_time=1.0, total_step=4, obs_check_inter=1, max_iter=10)
    start = jnp.array([-1.0, -0.8, 0.0, 0.0])
    end = jnp.array([-0.4, -0.8, 3.5, 0.5])         # heading outside (-pi, pi]
    zero = jnp.zeros(4)
    init = straight_line_trajectory(start, end, 1.0, 4, pose_space=robot.pose_space)

    traj = batch_traj_optimize_pose2_mobile_arm_2d(robot, sdf, start, zero, end, zero, init, setting)
    assert jnp.array_equal(traj.poses[0], start)
    assert jnp.array_equal(traj.poses[-1], end)
    assert float(traj.poses[-1, 2]) == 3.5


def test_interpolated_checks_score_no_worse_than_knots_only():
    robot, sdf, start, end, init, setting = _midpoint_problem(total_step=4)
    zero = jnp.zeros(2)
    dense = setting.replace(obs_check_inter=10)

    knots_only = batch_traj_optimize(
        robot, sdf, start, zero, end, zero, init, setting.replace(obs_check_inter=0)
    )
    interpolated = batch_traj_optimize(
        robot, sdf, start, zero, end, zero, init, setting.replace(obs_check_inter=3)
    )

    knots_score = collision_cost(robot, sdf, knots_only, dense)
    interpolated_score = collision_cost(robot, sdf, interpolated, dense)
    # with four intervals the knots alone let the path cut the disk between them
    assert knots_score > 0.0
    assert interpolated_score <= knots_score


def test_same_shaped_problems_reuse_compiled_kernels(monkeypatch):
    traces = []

    def counted_gp_prior(x, params):
        traces.append(1)
        return gp_prior_residual(x, params)

    monkeypatch.setattr(graph_module, "gp_prior_residual", counted_gp_prior)

    robot, sdf, start, end, init, setting = _midpoint_problem(max_iter=3)
    zero = jnp.zeros(2)
    batch_traj_optimize_result(robot, sdf, start, zero, end, zero, init, setting)
    first = len(traces)
    assert first > 0

    # new map of the same size and new boundary values: only traced inputs change
    other_sdf = _disk_sdf(center=(0.2, -0.1))
    start2, end2 = jnp.array([-1.0, 0.2]), jnp.array([1.0, -0.1])
    init2 = straight_line_trajectory(start2, end2, setting.total_time, setting.total_step)
    result = batch_traj_optimize_result(robot, other_sdf, start2, zero, end2, zero, init2, setting)

    assert len(traces) == first
    assert jnp.allclose(result.trajectory.poses[0], start2)
