# Copyright (c) 2025.
# This file is part of gpmp-jit, released under the MIT License.
"""
Gaussian-process interpolation between two knots.

Given knots ``(p_i, v_i)`` and ``(p_{i+1}, v_{i+1})`` and a fraction
``τ`` of the interval ``Δt``, the conditional mean of the prior at
``t_i + τΔt`` is a closed-form linear function of the two knot states.
In local coordinates around ``p_i`` (``ξ = local(p_i, p_{i+1})``):

    p(τ) = retract(p_i, Λ₀₁ v_i + Ψ₀₀ ξ + Ψ₀₁ v_{i+1})
    v(τ) = Λ₁₁ v_i + Ψ₁₀ ξ + Ψ₁₁ v_{i+1}

where ``Λ``, ``Ψ`` are the scalar blocks from
:func:`gp.gp_utils.calc_lambda_psi_s`. The ``Λ`` pose column drops out
because ``Λ₀₀ + Ψ₀₀ = 1`` and the local coordinate of ``p_i`` is zero.

``τ = 0`` reproduces knot ``i`` and ``τ = 1`` reproduces knot ``i+1``.
This operator lets obstacle factors be attached between knots without
adding new unknowns.

Interpolators are pytrees: interpolators for different ``τ`` share a
structure and can be stacked and vmapped over.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Tuple

import jax
import jax.numpy as jnp

from .gp_utils import calc_lambda_psi_s


@jax.tree_util.register_pytree_node_class
@dataclass(frozen=True)
class GPInterpolator:
    pose_space: Any
    delta_t: float
    tau: float            # fraction of delta_t in [0, 1]
    lambda_s: Any
    psi_s: Any

    @staticmethod
    def create(pose_space, delta_t: float, tau: float) -> "GPInterpolator":
        if not 0.0 <= tau <= 1.0:
            raise ValueError(f"Interpolation fraction must be in [0, 1], got {tau}")
        lam, psi = calc_lambda_psi_s(float(delta_t), float(tau) * float(delta_t))
        return GPInterpolator(
            pose_space=pose_space,
            delta_t=float(delta_t),
            tau=float(tau),
            lambda_s=lam,
            psi_s=psi,
        )

    def tree_flatten(self):
        return (self.delta_t, self.tau, self.lambda_s, self.psi_s), self.pose_space

    @classmethod
    def tree_unflatten(cls, pose_space, children):
        return cls(pose_space, *children)

    def interpolate_pose(self, p1, v1, p2, v2) -> jnp.ndarray:
        xi = self.pose_space.local(p1, p2)
        delta = (
            self.lambda_s[0, 1] * v1
            + self.psi_s[0, 0] * xi
            + self.psi_s[0, 1] * v2
        )
        return self.pose_space.retract(p1, delta)

    def interpolate_velocity(self, p1, v1, p2, v2) -> jnp.ndarray:
        xi = self.pose_space.local(p1, p2)
        return (
            self.lambda_s[1, 1] * v1
            + self.psi_s[1, 0] * xi
            + self.psi_s[1, 1] * v2
        )

    def interpolate(self, p1, v1, p2, v2) -> Tuple[jnp.ndarray, jnp.ndarray]:
        return (
            self.interpolate_pose(p1, v1, p2, v2),
            self.interpolate_velocity(p1, v1, p2, v2),
        )
