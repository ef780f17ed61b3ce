# Copyright (c) 2025.
# This file is part of gpmp-jit, released under the MIT License.
"""
Gaussian-process motion prior factor.

A ``"gp_prior"`` factor connects two time-adjacent knots
``(x(i), v(i), x(i+1), v(i+1))``. Its squared residual is the negative
log-likelihood (up to a constant) of moving from knot ``i`` to knot
``i+1`` in ``Δt`` under the constant-velocity prior of
:mod:`gp.gp_utils`:

    e = [ local(p_i, p_{i+1}) − Δt v_i ;
          v_{i+1} − v_i ]
    r = W e,   Wᵀ W = Q(Δt)⁻¹

Working in local coordinates lets the same residual serve joint-angle
vectors (``local = b − a``) and mobile-base ``Pose2Vector`` states (SE(2)
logarithm on the base).
"""

from __future__ import annotations
from typing import Any, Dict

import jax.numpy as jnp

from .gp_utils import calc_sqrt_info, qc_matrix


def split_knot_pair(x: jnp.ndarray, pose_dim: int, dof: int):
    """Split a stacked [p1, v1, p2, v2] vector."""
    p1 = x[:pose_dim]
    v1 = x[pose_dim:pose_dim + dof]
    off = pose_dim + dof
    p2 = x[off:off + pose_dim]
    v2 = x[off + pose_dim:off + pose_dim + dof]
    return p1, v1, p2, v2


def gp_prior_params(pose_space, qc, delta_t: float) -> Dict[str, Any]:
    """Build the params dict of a ``"gp_prior"`` factor."""
    dof = pose_space.tangent_dim
    return {
        "pose_space": pose_space,
        "delta_t": float(delta_t),
        "sqrt_info": calc_sqrt_info(qc_matrix(qc, dof), delta_t),
    }


def gp_prior_error(x: jnp.ndarray, params: Dict[str, Any]) -> jnp.ndarray:
    """Unwhitened prior error e."""
    space = params["pose_space"]
    dt = params["delta_t"]
    p1, v1, p2, v2 = split_knot_pair(x, space.dim, space.tangent_dim)
    return jnp.concatenate([
        space.local(p1, p2) - dt * v1,
        v2 - v1,
    ])


def gp_prior_residual(x: jnp.ndarray, params: Dict[str, Any]) -> jnp.ndarray:
    """Whitened constant-velocity prior residual between two knots."""
    return params["sqrt_info"] @ gp_prior_error(x, params)
