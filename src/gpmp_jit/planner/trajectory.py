# Copyright (c) 2025.
# This file is part of gpmp-jit, released under the MIT License.
"""
Trajectory container and helpers.

A :class:`Trajectory` is N+1 knots: ``poses`` of shape (N+1, pose_dim) and
``velocities`` of shape (N+1, dof), spaced evenly in time.

Helpers
-------
straight_line_trajectory
    Constant-velocity warm start between two configurations, evenly spaced
    in local coordinates (SE(2)-aware for mobile bases).

interpolate_trajectory
    Dense re-sampling of a trajectory with the GP interpolator, inserting
    ``inter_step`` states in every interval.
"""

from __future__ import annotations

from dataclasses import dataclass

import jax
import jax.numpy as jnp

from ..core.manifold import VectorSpace
from ..gp.interpolator import GPInterpolator


@dataclass(frozen=True)
class Trajectory:
    poses: jnp.ndarray        # (N+1, pose_dim)
    velocities: jnp.ndarray   # (N+1, dof)

    def __post_init__(self):
        poses = jnp.atleast_2d(jnp.asarray(self.poses))
        velocities = jnp.atleast_2d(jnp.asarray(self.velocities))
        if poses.shape[0] != velocities.shape[0]:
            raise ValueError(
                f"poses and velocities disagree on knot count: "
                f"{poses.shape[0]} vs {velocities.shape[0]}"
            )
        object.__setattr__(self, "poses", poses)
        object.__setattr__(self, "velocities", velocities)

    @property
    def num_knots(self) -> int:
        return int(self.poses.shape[0])

    @property
    def total_step(self) -> int:
        return self.num_knots - 1

    def knot(self, i: int):
        return self.poses[i], self.velocities[i]

    def __len__(self) -> int:
        return self.num_knots


def straight_line_trajectory(
    start_conf,
    end_conf,
    total_time: float,
    total_step: int,
    pose_space=None,
) -> Trajectory:
    """
    Initialize ``total_step + 1`` knots on the straight line (geodesic for
    SE(2) bases) from ``start_conf`` to ``end_conf`` with constant velocity.
    """
    start_conf = jnp.asarray(start_conf) * 1.0
    end_conf = jnp.asarray(end_conf) * 1.0
    if pose_space is None:
        pose_space = VectorSpace(dim=start_conf.shape[0])

    xi = pose_space.local(start_conf, end_conf)
    vel = xi / total_time
    fractions = jnp.arange(total_step + 1) / total_step
    poses = jax.vmap(lambda s: pose_space.retract(start_conf, s * xi))(fractions)
    return Trajectory(poses=poses, velocities=jnp.tile(vel, (total_step + 1, 1)))


def interpolate_trajectory(
    trajectory: Trajectory,
    delta_t: float,
    inter_step: int,
    pose_space=None,
) -> Trajectory:
    """
    Insert ``inter_step`` GP-interpolated states between every pair of knots.

    The result has ``N * (inter_step + 1) + 1`` states. The interpolated
    mean does not depend on ``Q_c``, only on ``delta_t``.
    """
    if inter_step < 0:
        raise ValueError(f"inter_step must be >= 0, got {inter_step}")
    if pose_space is None:
        pose_space = VectorSpace(dim=trajectory.poses.shape[1])

    interpolators = [
        GPInterpolator.create(pose_space, delta_t, j / (inter_step + 1))
        for j in range(1, inter_step + 1)
    ]

    poses, velocities = [], []
    for i in range(trajectory.total_step):
        p1, v1 = trajectory.knot(i)
        p2, v2 = trajectory.knot(i + 1)
        poses.append(p1)
        velocities.append(v1)
        for interp in interpolators:
            p, v = interp.interpolate(p1, v1, p2, v2)
            poses.append(p)
            velocities.append(v)
    p_last, v_last = trajectory.knot(trajectory.total_step)
    poses.append(p_last)
    velocities.append(v_last)
    return Trajectory(poses=jnp.stack(poses), velocities=jnp.stack(velocities))
