# Copyright (c) 2025.
# This file is part of gpmp-jit, released under the MIT License.
"""
Obstacle cost model and obstacle factors.

For every body sphere ``k`` with center ``c_k(q)`` and radius ``r_k``:

    d_k    = sdf.signed_distance(c_k(q))
    cost_k = ε + r_k − d_k    if d_k < ε + r_k
             0                otherwise

The hinge is one-sided: an inactive sphere contributes neither cost nor
gradient. The Jacobian w.r.t. the configuration is the chain rule through
forward kinematics and ``−∇d``, produced by JAX autodiff; ``jnp.where``
keeps it exactly zero on inactive spheres.

Residuals
---------
``obstacle_residual``
    ``"obstacle"`` factor on one knot pose: ``cost / cost_sigma``.

``obstacle_gp_residual``
    ``"obstacle_gp"`` factor on two adjacent knots: the pose at fraction
    ``τ`` is produced by the GP interpolator, then scored like a knot.

:func:`sphere_hinge_costs` is the single scoring function shared by both
residuals and by the planner's cost evaluator.
"""

from __future__ import annotations
from typing import Any, Dict

import jax
import jax.numpy as jnp

from ..gp.prior import split_knot_pair


def hinge_loss(distance: jnp.ndarray, threshold: jnp.ndarray) -> jnp.ndarray:
    """max(threshold − distance, 0) with an exactly-zero gradient when inactive."""
    violation = threshold - distance
    return jnp.where(violation > 0.0, violation, 0.0)


def sphere_signed_distances(robot, sdf, pose: jnp.ndarray) -> jnp.ndarray:
    """Signed distance of every sphere center, shape (K,)."""
    centers = robot.sphere_centers(pose)
    return jax.vmap(sdf.signed_distance)(centers)


def sphere_hinge_costs(robot, sdf, pose: jnp.ndarray, epsilon: float) -> jnp.ndarray:
    """Per-sphere hinge costs ``max(ε + r − d, 0)``, shape (K,)."""
    distances = sphere_signed_distances(robot, sdf, pose)
    return hinge_loss(distances, epsilon + robot.sphere_radii)


def obstacle_params(robot, sdf, epsilon: float, cost_sigma: float) -> Dict[str, Any]:
    return {
        "robot": robot,
        "sdf": sdf,
        "epsilon": float(epsilon),
        "cost_sigma": float(cost_sigma),
    }


def obstacle_residual(x: jnp.ndarray, params: Dict[str, Any]) -> jnp.ndarray:
    """Obstacle factor at a knot; ``x`` is the knot pose."""
    costs = sphere_hinge_costs(params["robot"], params["sdf"], x, params["epsilon"])
    return costs / params["cost_sigma"]


def obstacle_gp_residual(x: jnp.ndarray, params: Dict[str, Any]) -> jnp.ndarray:
    """
    Interpolated obstacle factor; ``x`` is [p_i, v_i, p_{i+1}, v_{i+1}] and
    ``params["interpolator"]`` a :class:`gp.interpolator.GPInterpolator`.
    """
    robot = params["robot"]
    p1, v1, p2, v2 = split_knot_pair(x, robot.pose_dim, robot.dof)
    pose = params["interpolator"].interpolate_pose(p1, v1, p2, v2)
    costs = sphere_hinge_costs(robot, params["sdf"], pose, params["epsilon"])
    return costs / params["cost_sigma"]


@jax.jit
def _inside_mask(robot, sdf, poses):
    centers = jax.vmap(robot.sphere_centers)(poses)            # (B, K, 3)
    return jax.vmap(jax.vmap(sdf.in_range))(centers)


def count_out_of_range(robot, sdf, poses: jnp.ndarray) -> int:
    """Number of sphere centers, over a batch of poses, that fall outside the grid."""
    inside = _inside_mask(robot, sdf, jnp.asarray(poses))
    return int(inside.size - jnp.sum(inside))
