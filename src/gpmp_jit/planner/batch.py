# Copyright (c) 2025.
# This file is part of gpmp-jit, released under the MIT License.
"""
Batch trajectory optimization entry points.

The generic pair :func:`batch_traj_optimize` / :func:`evaluator.collision_cost`
works for any robot model and SDF exposing the capability set described in
:mod:`kinematics.models` and :mod:`obstacle.sdf`. The typed wrappers below
only check that the robot / SDF pairing is the expected one and delegate:

    ===============================================  ==========================
    entry point                                      robot + field
    ===============================================  ==========================
    batch_traj_optimize_2d_arm                       ArmModel + PlanarSDF
    batch_traj_optimize_3d_arm                       ArmModel + SignedDistanceField
    batch_traj_optimize_pose2_mobile_arm_2d          Pose2MobileArmModel + PlanarSDF
    batch_traj_optimize_pose2_mobile_arm             Pose2MobileArmModel + SignedDistanceField
    ===============================================  ==========================

with matching ``collision_cost_*`` functions.
"""

from __future__ import annotations

from ..errors import InvalidConfigurationError
from ..kinematics.models import ArmModel, Pose2MobileArmModel
from ..obstacle.sdf import PlanarSDF, SignedDistanceField
from .evaluator import collision_cost
from .graph import build_trajectory_graph
from .optimizer import OptimizationResult, optimize_trajectory_graph
from .settings import TrajOptimizerSetting


def batch_traj_optimize_result(
    robot, sdf, start_conf, start_vel, end_conf, end_vel, init_values,
    setting: TrajOptimizerSetting,
) -> OptimizationResult:
    """Build and solve the graph, returning trajectory and solver report."""
    graph = build_trajectory_graph(
        robot, sdf, start_conf, start_vel, end_conf, end_vel, init_values, setting
    )
    return optimize_trajectory_graph(graph, setting)


def batch_traj_optimize(
    robot, sdf, start_conf, start_vel, end_conf, end_vel, init_values,
    setting: TrajOptimizerSetting,
):
    """Optimize a trajectory; returns the optimized :class:`Trajectory`."""
    return batch_traj_optimize_result(
        robot, sdf, start_conf, start_vel, end_conf, end_vel, init_values, setting
    ).trajectory


def _require(robot, sdf, robot_type, sdf_type) -> None:
    if not isinstance(robot, robot_type):
        raise InvalidConfigurationError(
            f"expected a {robot_type.__name__}, got {type(robot).__name__}"
        )
    if not isinstance(sdf, sdf_type):
        raise InvalidConfigurationError(
            f"expected a {sdf_type.__name__}, got {type(sdf).__name__}"
        )


def batch_traj_optimize_2d_arm(arm, sdf, start_conf, start_vel, end_conf, end_vel, init_values, setting):
    _require(arm, sdf, ArmModel, PlanarSDF)
    return batch_traj_optimize(arm, sdf, start_conf, start_vel, end_conf, end_vel, init_values, setting)


def batch_traj_optimize_3d_arm(arm, sdf, start_conf, start_vel, end_conf, end_vel, init_values, setting):
    _require(arm, sdf, ArmModel, SignedDistanceField)
    return batch_traj_optimize(arm, sdf, start_conf, start_vel, end_conf, end_vel, init_values, setting)


def batch_traj_optimize_pose2_mobile_arm_2d(marm, sdf, start_conf, start_vel, end_conf, end_vel, init_values, setting):
    _require(marm, sdf, Pose2MobileArmModel, PlanarSDF)
    return batch_traj_optimize(marm, sdf, start_conf, start_vel, end_conf, end_vel, init_values, setting)


def batch_traj_optimize_pose2_mobile_arm(marm, sdf, start_conf, start_vel, end_conf, end_vel, init_values, setting):
    _require(marm, sdf, Pose2MobileArmModel, SignedDistanceField)
    return batch_traj_optimize(marm, sdf, start_conf, start_vel, end_conf, end_vel, init_values, setting)


def collision_cost_2d_arm(arm, sdf, result, setting) -> float:
    _require(arm, sdf, ArmModel, PlanarSDF)
    return collision_cost(arm, sdf, result, setting)


def collision_cost_3d_arm(arm, sdf, result, setting) -> float:
    _require(arm, sdf, ArmModel, SignedDistanceField)
    return collision_cost(arm, sdf, result, setting)


def collision_cost_pose2_mobile_arm_2d(marm, sdf, result, setting) -> float:
    _require(marm, sdf, Pose2MobileArmModel, PlanarSDF)
    return collision_cost(marm, sdf, result, setting)


def collision_cost_pose2_mobile_arm(marm, sdf, result, setting) -> float:
    _require(marm, sdf, Pose2MobileArmModel, SignedDistanceField)
    return collision_cost(marm, sdf, result, setting)
