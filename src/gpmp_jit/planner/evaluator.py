# Copyright (c) 2025.
# This file is part of gpmp-jit, released under the MIT License.
"""
Collision cost of a finished trajectory.

:func:`collision_cost` re-scores any trajectory, optimized or not, with the
same hinge used by the obstacle factors, but *unweighted* and summed:

    cost = Σ_knots Σ_spheres max(ε + r − d, 0)
         + Σ_intervals Σ_τ Σ_spheres max(ε + r − d, 0)   (if M > 0)

A score of exactly 0 means every obstacle factor of the graph built with
the same settings is inactive. The trajectory must have the knot count and
widths the settings and robot imply; anything else raises
:class:`errors.InvalidConfigurationError` before scoring. The function is
pure: it holds no state between calls.
"""

from __future__ import annotations

from logging import getLogger

import jax
import jax.numpy as jnp

from ..gp.interpolator import GPInterpolator
from ..obstacle.cost import count_out_of_range, sphere_hinge_costs
from .graph import check_setting, check_trajectory
from .settings import TrajOptimizerSetting

logger = getLogger(__name__)


@jax.jit
def _knot_costs(robot, sdf, poses, epsilon):
    return jax.vmap(lambda p: jnp.sum(sphere_hinge_costs(robot, sdf, p, epsilon)))(poses)


@jax.jit
def _interpolated_costs(robot, sdf, interpolators, poses, velocities, epsilon):
    """(N, M) costs of the interpolated states; ``interpolators`` is stacked on axis 0."""
    def state_cost(interp, p1, v1, p2, v2):
        pose = interp.interpolate_pose(p1, v1, p2, v2)
        return jnp.sum(sphere_hinge_costs(robot, sdf, pose, epsilon))

    per_interval = jax.vmap(state_cost, in_axes=(0, None, None, None, None))
    return jax.vmap(per_interval, in_axes=(None, 0, 0, 0, 0))(
        interpolators, poses[:-1], velocities[:-1], poses[1:], velocities[1:]
    )


def collision_cost(robot, sdf, trajectory, setting: TrajOptimizerSetting) -> float:
    """Sum of unweighted obstacle hinge costs over knots and interpolated states."""
    check_setting(robot, setting)
    trajectory = check_trajectory(robot, trajectory, setting)
    poses, vels = trajectory.poses, trajectory.velocities

    outside = count_out_of_range(robot, sdf, poses)
    if outside:
        logger.warning(
            "%d knot sphere centers lie outside the distance field and are scored as colliding",
            outside,
        )

    cost = jnp.sum(_knot_costs(robot, sdf, poses, setting.epsilon))
    M = setting.interpolated_checks
    if M > 0:
        interpolators = [
            GPInterpolator.create(robot.pose_space, setting.delta_t, j / (M + 1))
            for j in range(1, M + 1)
        ]
        stacked = jax.tree_util.tree_map(lambda *leaves: jnp.stack(leaves), *interpolators)
        cost = cost + jnp.sum(
            _interpolated_costs(robot, sdf, stacked, poses, vels, setting.epsilon)
        )
    return float(cost)
