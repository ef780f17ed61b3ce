# Copyright (c) 2025.
# This file is part of gpmp-jit, released under the MIT License.
"""
Closed-form matrices of the constant-velocity Gaussian-process prior.

The prior is the linear time-invariant SDE

    d/dt [p, v] = [[0, I], [0, 0]] [p, v] + [0, I] w(t),   w ~ GP(0, Q_c δ(t − t'))

i.e. white noise on acceleration. Every matrix below is a scalar 2×2 block
Kronecker an identity (``Φ``) or ``Q_c`` (``Q``); the scalar ``_s``
variants are what the interpolator needs, because ``Q_c`` cancels out of
``Ψ`` and ``Λ``.
"""

from __future__ import annotations

from typing import Tuple

import jax.numpy as jnp


def qc_matrix(qc, dof: int) -> jnp.ndarray:
    """Normalize a scalar, diagonal vector or full matrix into a dof×dof Q_c."""
    qc = jnp.asarray(qc)
    if qc.ndim == 0:
        return qc * jnp.eye(dof)
    if qc.ndim == 1:
        return jnp.diag(qc)
    return qc


def phi_s(t) -> jnp.ndarray:
    """Scalar state transition [[1, t], [0, 1]]."""
    return jnp.array([[1.0, t], [0.0, 1.0]])


def q_s(t) -> jnp.ndarray:
    """Scalar process covariance over an interval of length t."""
    return jnp.array([
        [t ** 3 / 3.0, t ** 2 / 2.0],
        [t ** 2 / 2.0, t],
    ])


def q_inv_s(t) -> jnp.ndarray:
    """Inverse of :func:`q_s`."""
    return jnp.array([
        [12.0 / t ** 3, -6.0 / t ** 2],
        [-6.0 / t ** 2, 4.0 / t],
    ])


def calc_phi(dof: int, t) -> jnp.ndarray:
    return jnp.kron(phi_s(t), jnp.eye(dof))


def calc_q(qc: jnp.ndarray, t) -> jnp.ndarray:
    return jnp.kron(q_s(t), qc)


def calc_q_inv(qc: jnp.ndarray, t) -> jnp.ndarray:
    return jnp.kron(q_inv_s(t), jnp.linalg.inv(qc))


def calc_lambda_psi_s(delta_t, tau) -> Tuple[jnp.ndarray, jnp.ndarray]:
    """
    Scalar interpolation blocks at time ``tau`` inside ``[0, delta_t]``:

        Ψ(τ) = Q(τ) Φ(Δt − τ)ᵀ Q(Δt)⁻¹
        Λ(τ) = Φ(τ) − Ψ(τ) Φ(Δt)

    so that the conditional mean is ``x(τ) = Λ x_i + Ψ x_{i+1}``.
    """
    psi = q_s(tau) @ phi_s(delta_t - tau).T @ q_inv_s(delta_t)
    lam = phi_s(tau) - psi @ phi_s(delta_t)
    return lam, psi


def calc_sqrt_info(qc: jnp.ndarray, delta_t) -> jnp.ndarray:
    """
    Whitening matrix W with ``‖W e‖² = eᵀ Q(Δt)⁻¹ e``.
    """
    L = jnp.linalg.cholesky(calc_q_inv(qc, delta_t))
    return L.T
