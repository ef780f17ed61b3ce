# Copyright (c) 2025.
# This file is part of gpmp-jit, released under the MIT License.
"""
Joint position and velocity limit factors.

Both are per-coordinate hinges that start penalizing ``thresh`` before the
limit is reached:

    x < down + thresh  ->  (down + thresh) − x
    x > up − thresh    ->  x − (up − thresh)
    otherwise          ->  0

Velocity limits are symmetric, ``down = −limit``, ``up = +limit``. Residuals
are scaled by ``1 / sigma``.
"""

from __future__ import annotations
from typing import Any, Dict

import jax.numpy as jnp


def limit_hinge(x: jnp.ndarray, down: jnp.ndarray, up: jnp.ndarray, thresh: jnp.ndarray) -> jnp.ndarray:
    below = (down + thresh) - x
    above = x - (up - thresh)
    return jnp.where(below > 0.0, below, jnp.where(above > 0.0, above, 0.0))


def joint_limit_params(down, up, thresh, sigma: float) -> Dict[str, Any]:
    return {
        "down": jnp.asarray(down),
        "up": jnp.asarray(up),
        "thresh": jnp.asarray(thresh),
        "sigma": float(sigma),
    }


def velocity_limit_params(limits, thresh, sigma: float) -> Dict[str, Any]:
    limits = jnp.asarray(limits)
    return joint_limit_params(-limits, limits, thresh, sigma)


def joint_limit_residual(x: jnp.ndarray, params: Dict[str, Any]) -> jnp.ndarray:
    """``"joint_limit"`` / ``"velocity_limit"`` factor on one variable."""
    cost = limit_hinge(x, params["down"], params["up"], params["thresh"])
    return cost / params["sigma"]
