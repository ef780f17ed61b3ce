# Copyright (c) 2025.
# This file is part of gpmp-jit, released under the MIT License.
"""
gpmp-jit: Gaussian-process motion planning on a JAX factor graph.

Typical use::

    from gpmp_jit import (
        Arm, ArmModel, BodySphere, TrajOptimizerSetting,
        signed_distance_field_2d, straight_line_trajectory,
        batch_traj_optimize_2d_arm, collision_cost_2d_arm,
    )
"""

from .errors import InvalidConfigurationError
from .kinematics.arm import Arm, BodySphere
from .kinematics.models import ArmModel, PointRobotModel, Pose2MobileArmModel
from .obstacle.sdf import (
    PlanarSDF,
    SignedDistanceField,
    signed_distance_field_2d,
    signed_distance_field_3d,
)
from .optimization.solvers import OptimizerType, TerminationReason
from .planner.batch import (
    batch_traj_optimize,
    batch_traj_optimize_result,
    batch_traj_optimize_2d_arm,
    batch_traj_optimize_3d_arm,
    batch_traj_optimize_pose2_mobile_arm_2d,
    batch_traj_optimize_pose2_mobile_arm,
    collision_cost_2d_arm,
    collision_cost_3d_arm,
    collision_cost_pose2_mobile_arm_2d,
    collision_cost_pose2_mobile_arm,
)
from .planner.evaluator import collision_cost
from .planner.settings import TrajOptimizerSetting
from .planner.trajectory import Trajectory, interpolate_trajectory, straight_line_trajectory

__version__ = "0.1.0"
