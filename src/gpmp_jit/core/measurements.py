# Copyright (c) 2025.
# This file is part of gpmp-jit, released under the MIT License.
"""
Boundary prior factor and Gaussian noise whitening.

A soft boundary condition on knot 0 or knot N is a ``"prior"`` factor:

    r = S · local(target, x)

with ``S = 1 / σ`` (scalar or per coordinate) and ``local`` taken from
``params["pose_space"]`` when present (plain difference otherwise), so
mobile-base poses are compared on SE(2).

Hard boundary conditions (σ = 0) never reach :func:`prior_residual`; the
factor graph turns them into pinned entries of the solver's free mask.
"""

from __future__ import annotations
from typing import Any, Dict

import jax.numpy as jnp


def isotropic_sqrt_info(sigma) -> jnp.ndarray:
    """Whitening scale ``1 / σ`` of a diagonal Gaussian noise model."""
    return 1.0 / jnp.asarray(sigma, dtype=float)


def whiten(error: jnp.ndarray, params: Dict[str, Any]) -> jnp.ndarray:
    scale = params.get("sqrt_info")
    if scale is None:
        return error
    return scale * error


def prior_residual(x: jnp.ndarray, params: Dict[str, Any]) -> jnp.ndarray:
    """Whitened deviation of one variable from ``params["target"]``."""
    target = params["target"]
    space = params.get("pose_space")
    error = x - target if space is None else space.local(target, x)
    return whiten(error, params)
