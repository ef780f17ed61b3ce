# Copyright (c) 2025.
# This file is part of gpmp-jit, released under the MIT License.
"""
Trajectory factor graph: knot bookkeeping and graph assembly.

This module defines the *trajectory graph* abstraction: a thin layer on
top of :class:`core.factor_graph.FactorGraph` that knows about knots
(pose + velocity at a time step) and builds the full planning problem.

Key responsibilities
--------------------
- :class:`TrajectoryGraph`
    • Owns the underlying ``FactorGraph``.
    • Adds variables and factors with automatically assigned ids.
    • Keeps ``pose_ids[i]`` / ``vel_ids[i]`` maps from knot index to
      ``NodeId`` so callers never manipulate ``NodeId`` directly.
    • Packs state and extracts a :class:`Trajectory` with one gather.

- :func:`build_trajectory_graph`
    Validates inputs and assembles the graph:

    1. N+1 knots initialized from the warm start
    2. boundary priors on x(0), v(0), x(N), v(N)
    3. a GP prior between every pair of adjacent knots
    4. an obstacle factor at every knot
    5. M interpolated obstacle factors inside every interval
       (``τ = j / (M + 1)``, ``j = 1..M``)
    6. optional joint position / velocity limit factors on interior knots

The robot variant only changes the robot / SDF objects and the pose space
bound into the factors; the assembly itself never branches on it.
"""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import Dict, Tuple

import jax.numpy as jnp
import numpy as np

from ..core.factor_graph import FactorGraph, StateIndex
from ..core.measurements import isotropic_sqrt_info, prior_residual
from ..core.types import Factor, FactorId, NodeId, Variable
from ..errors import InvalidConfigurationError
from ..gp.interpolator import GPInterpolator
from ..gp.prior import gp_prior_params, gp_prior_residual
from ..kinematics.limits import joint_limit_params, joint_limit_residual, velocity_limit_params
from ..obstacle.cost import (
    count_out_of_range,
    obstacle_gp_residual,
    obstacle_params,
    obstacle_residual,
)
from .settings import TrajOptimizerSetting
from .trajectory import Trajectory

logger = getLogger(__name__)


@dataclass
class TrajectoryGraph:
    """Knot-aware wrapper around :class:`FactorGraph`."""

    fg: FactorGraph
    pose_space: object
    pose_ids: Dict[int, NodeId]
    vel_ids: Dict[int, NodeId]

    def __init__(self, pose_space) -> None:
        self.fg = FactorGraph()
        self.pose_space = pose_space
        self.pose_ids = {}
        self.vel_ids = {}

    @property
    def num_knots(self) -> int:
        return len(self.pose_ids)

    def add_variable(self, var_type: str, value: jnp.ndarray) -> NodeId:
        """
        Allocate a new variable id, create the Variable, add it to the graph,
        and return its NodeId.
        """
        nid = NodeId(len(self.fg.variables))
        self.fg.add_variable(Variable(id=nid, type=var_type, value=jnp.asarray(value)))
        return nid

    def add_knot(self, i: int, pose: jnp.ndarray, vel: jnp.ndarray) -> Tuple[NodeId, NodeId]:
        """Add the pose and velocity variables of knot ``i``."""
        if i in self.pose_ids:
            raise ValueError(f"Knot {i} already exists")
        self.pose_ids[i] = self.add_variable(self.pose_space.var_type, pose)
        self.vel_ids[i] = self.add_variable("velocity", vel)
        return self.pose_ids[i], self.vel_ids[i]

    def knot_ids(self, i: int) -> Tuple[NodeId, NodeId]:
        return self.pose_ids[i], self.vel_ids[i]

    def add_factor(self, f_type: str, var_ids, params: Dict) -> FactorId:
        """
        Allocate a new factor id, create the Factor, add it to the graph,
        and return its FactorId.
        """
        fid = FactorId(len(self.fg.factors))
        node_ids = tuple(NodeId(int(vid)) for vid in var_ids)
        self.fg.add_factor(Factor(id=fid, type=f_type, var_ids=node_ids, params=params))
        return fid

    def register_residual(self, f_type: str, fn) -> None:
        self.fg.register_residual(f_type, fn)

    def count_factors(self, f_type: str) -> int:
        return sum(1 for f in self.fg.factors.values() if f.type == f_type)

    def pack_state(self) -> Tuple[jnp.ndarray, StateIndex]:
        return self.fg.pack_state()

    def knot_columns(self, index: StateIndex) -> Tuple[np.ndarray, np.ndarray]:
        """
        Packed-state positions of every knot pose and velocity, shapes
        (N+1, pose_dim) and (N+1, dof), for single-op gathers and scatters.
        """
        def columns(ids):
            return np.stack([
                np.arange(index[ids[i]][0], index[ids[i]][0] + index[ids[i]][1])
                for i in range(self.num_knots)
            ])
        return columns(self.pose_ids), columns(self.vel_ids)

    def extract_trajectory(self, x: jnp.ndarray, index: StateIndex) -> Trajectory:
        pose_idx, vel_idx = self.knot_columns(index)
        return Trajectory(poses=x[pose_idx], velocities=x[vel_idx])


def as_trajectory(init_values) -> Trajectory:
    if isinstance(init_values, Trajectory):
        return init_values
    try:
        poses, velocities = init_values
    except (TypeError, ValueError):
        raise InvalidConfigurationError(
            "init_values must be a Trajectory or a (poses, velocities) pair"
        ) from None
    try:
        return Trajectory(poses=poses, velocities=velocities)
    except ValueError as exc:
        raise InvalidConfigurationError(str(exc)) from exc


def _check_vector(name: str, value, dim: int) -> jnp.ndarray:
    v = jnp.asarray(value) * 1.0
    if v.shape != (dim,):
        raise InvalidConfigurationError(f"{name} must have shape ({dim},), got {v.shape}")
    return v


def check_setting(robot, setting: TrajOptimizerSetting) -> None:
    """Validate ``setting`` on its own and against the robot's dimensions."""
    setting.validate()
    if setting.dof != robot.dof:
        raise InvalidConfigurationError(
            f"setting.dof={setting.dof} does not match robot dof={robot.dof}"
        )


def check_trajectory(robot, trajectory, setting: TrajOptimizerSetting, name: str = "trajectory") -> Trajectory:
    """
    Coerce ``trajectory`` and check it has ``total_step + 1`` knots of the
    robot's pose and velocity widths.
    """
    traj = as_trajectory(trajectory)
    if traj.num_knots != setting.total_step + 1:
        raise InvalidConfigurationError(
            f"{name} has {traj.num_knots} knots, expected {setting.total_step + 1}"
        )
    if traj.poses.shape[1] != robot.pose_dim or traj.velocities.shape[1] != robot.dof:
        raise InvalidConfigurationError(
            f"{name} knots have widths ({traj.poses.shape[1]}, "
            f"{traj.velocities.shape[1]}), expected ({robot.pose_dim}, {robot.dof})"
        )
    return traj


def validate_problem(robot, start_conf, start_vel, end_conf, end_vel, init_values, setting: TrajOptimizerSetting):
    """
    Fail fast on structural errors before any solving begins.

    Returns normalized (start_conf, start_vel, end_conf, end_vel, init_trajectory).
    """
    check_setting(robot, setting)
    start_conf = _check_vector("start_conf", start_conf, robot.pose_dim)
    end_conf = _check_vector("end_conf", end_conf, robot.pose_dim)
    start_vel = _check_vector("start_vel", start_vel, robot.dof)
    end_vel = _check_vector("end_vel", end_vel, robot.dof)

    init = check_trajectory(robot, init_values, setting, "initial trajectory")
    if setting.flag_pos_limit:
        for name in ("joint_pos_limits_down", "joint_pos_limits_up"):
            _check_vector(name, getattr(setting, name), robot.pose_dim)
    if setting.flag_vel_limit:
        _check_vector("vel_limits", setting.vel_limits, robot.dof)
    return start_conf, start_vel, end_conf, end_vel, init


def _add_boundary_prior(graph: TrajectoryGraph, nid: NodeId, target: jnp.ndarray, sigma: float, pose_space=None):
    if sigma == 0.0:
        # Pin the variable: write the target in and let the free mask hold it.
        graph.fg.variables[nid].value = target
        params = {"target": target, "constrained": True}
    else:
        params = {"target": target, "sqrt_info": isotropic_sqrt_info(sigma)}
    if pose_space is not None:
        params["pose_space"] = pose_space
    graph.add_factor("prior", (nid,), params)


def build_trajectory_graph(
    robot,
    sdf,
    start_conf,
    start_vel,
    end_conf,
    end_vel,
    init_values,
    setting: TrajOptimizerSetting,
) -> TrajectoryGraph:
    """Assemble the trajectory optimization factor graph."""
    start_conf, start_vel, end_conf, end_vel, init = validate_problem(
        robot, start_conf, start_vel, end_conf, end_vel, init_values, setting
    )
    pose_space = robot.pose_space
    N = setting.total_step
    M = setting.interpolated_checks
    delta_t = setting.delta_t
    outside = count_out_of_range(robot, sdf, init.poses)
    if outside:
        logger.warning(
            "initial trajectory places %d sphere centers outside the distance field", outside
        )

    graph = TrajectoryGraph(pose_space)
    graph.register_residual("prior", prior_residual)
    graph.register_residual("gp_prior", gp_prior_residual)
    graph.register_residual("obstacle", obstacle_residual)
    graph.register_residual("obstacle_gp", obstacle_gp_residual)
    graph.register_residual("joint_limit", joint_limit_residual)
    graph.register_residual("velocity_limit", joint_limit_residual)

    poses = np.asarray(init.poses, dtype=float)
    velocities = np.asarray(init.velocities, dtype=float)
    for i in range(N + 1):
        graph.add_knot(i, poses[i], velocities[i])

    # boundary conditions
    _add_boundary_prior(graph, graph.pose_ids[0], start_conf, setting.conf_prior_sigma, pose_space)
    _add_boundary_prior(graph, graph.vel_ids[0], start_vel, setting.vel_prior_sigma)
    _add_boundary_prior(graph, graph.pose_ids[N], end_conf, setting.conf_prior_sigma, pose_space)
    _add_boundary_prior(graph, graph.vel_ids[N], end_vel, setting.vel_prior_sigma)

    gp_params = gp_prior_params(pose_space, setting.qc, delta_t)
    obs_params = obstacle_params(robot, sdf, setting.epsilon, setting.cost_sigma)
    interpolators = [
        GPInterpolator.create(pose_space, delta_t, j / (M + 1)) for j in range(1, M + 1)
    ]

    for i in range(N):
        pair = graph.knot_ids(i) + graph.knot_ids(i + 1)
        graph.add_factor("gp_prior", pair, gp_params)
        for interp in interpolators:
            graph.add_factor("obstacle_gp", pair, dict(obs_params, interpolator=interp))

    for i in range(N + 1):
        graph.add_factor("obstacle", (graph.pose_ids[i],), obs_params)

    if setting.flag_pos_limit:
        pos_params = joint_limit_params(
            setting.joint_pos_limits_down,
            setting.joint_pos_limits_up,
            setting.pos_limit_thresh,
            setting.pos_limit_sigma,
        )
        for i in range(1, N):
            graph.add_factor("joint_limit", (graph.pose_ids[i],), pos_params)

    if setting.flag_vel_limit:
        vel_params = velocity_limit_params(
            setting.vel_limits, setting.vel_limit_thresh, setting.vel_limit_sigma
        )
        for i in range(1, N):
            graph.add_factor("velocity_limit", (graph.vel_ids[i],), vel_params)

    logger.debug(
        "assembled trajectory graph: %d knots, %d factors (%d interpolated obstacle)",
        N + 1, len(graph.fg.factors), graph.count_factors("obstacle_gp"),
    )
    return graph
