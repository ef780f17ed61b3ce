# Copyright (c) 2025.
# This file is part of gpmp-jit, released under the MIT License.
"""
Rigid-body math for gpmp-jit.

This module implements the minimal Lie-group and homogeneous-transform
mathematics needed by the kinematics models and the mobile-base manifold:

    • Elementary rotations and 4×4 homogeneous transforms
    • Denavit–Hartenberg link transforms
    • SE(2) exponential / logarithm, composition and inversion
    • Lifting planar SE(2) poses into SE(3)

All functions are written in JAX and support:
    - JIT compilation
    - Automatic differentiation
    - Numerically stable behavior near zero-rotation limits

Key Functions
-------------
dh_transform(a, alpha, d, theta)
    Standard DH link transform.

se2_exp(xi) / se2_log(p)
    Maps a twist ``(vx, vy, w)`` to a planar pose ``(x, y, θ)`` and back.

se2_compose(a, b), se2_inverse(p)
    Group operations on ``(x, y, θ)`` vectors.

se2_to_se3(p)
    Planar pose to a 4×4 transform about the world z axis.

Notes
-----
Small-angle branches use the "safe denominator" pattern: the unselected
branch of ``jnp.where`` is always evaluated by autodiff, so divisions are
guarded before they happen, not only selected away afterwards.
"""

from __future__ import annotations

import jax.numpy as jnp

_SMALL_ANGLE = 1e-6


def rot_z(theta: jnp.ndarray) -> jnp.ndarray:
    """3x3 rotation about z."""
    c, s = jnp.cos(theta), jnp.sin(theta)
    return jnp.array([
        [c, -s, 0.0],
        [s, c, 0.0],
        [0.0, 0.0, 1.0],
    ])


def make_transform(R: jnp.ndarray, t: jnp.ndarray) -> jnp.ndarray:
    """Assemble a 4x4 homogeneous transform from rotation and translation."""
    T = jnp.eye(4)
    T = T.at[:3, :3].set(R)
    T = T.at[:3, 3].set(t)
    return T


def dh_transform(a, alpha, d, theta) -> jnp.ndarray:
    """
    Standard Denavit–Hartenberg link transform:

        T = Rz(theta) · Tz(d) · Tx(a) · Rx(alpha)
    """
    ct, st = jnp.cos(theta), jnp.sin(theta)
    ca, sa = jnp.cos(alpha), jnp.sin(alpha)
    return jnp.array([
        [ct, -st * ca, st * sa, a * ct],
        [st, ct * ca, -ct * sa, a * st],
        [0.0, sa, ca, d],
        [0.0, 0.0, 0.0, 1.0],
    ])


# --- SE(2) ---

def wrap_angle(theta: jnp.ndarray) -> jnp.ndarray:
    """Wrap an angle to (-pi, pi]."""
    return jnp.arctan2(jnp.sin(theta), jnp.cos(theta))


def _se2_v_coeffs(w: jnp.ndarray) -> tuple[jnp.ndarray, jnp.ndarray]:
    """
    Coefficients of the SE(2) left Jacobian V(w) = [[A, -B], [B, A]]:
        A = sin(w) / w,  B = (1 - cos(w)) / w
    """
    small = jnp.abs(w) < _SMALL_ANGLE
    w_safe = jnp.where(small, 1.0, w)
    A = jnp.where(small, 1.0 - w * w / 6.0, jnp.sin(w_safe) / w_safe)
    B = jnp.where(small, 0.5 * w, (1.0 - jnp.cos(w_safe)) / w_safe)
    return A, B


def se2_exp(xi: jnp.ndarray) -> jnp.ndarray:
    """
    Exponential map se(2) -> SE(2).

    xi: [vx, vy, w]
    returns: [x, y, theta]
    """
    vx, vy, w = xi[0], xi[1], xi[2]
    A, B = _se2_v_coeffs(w)
    x = A * vx - B * vy
    y = B * vx + A * vy
    return jnp.stack([x, y, w])


def se2_log(p: jnp.ndarray) -> jnp.ndarray:
    """
    Logarithm map SE(2) -> se(2), inverse of :func:`se2_exp`.

    p: [x, y, theta]
    returns: [vx, vy, w] with w wrapped to (-pi, pi]
    """
    w = wrap_angle(p[2])
    A, B = _se2_v_coeffs(w)
    det = A * A + B * B
    vx = (A * p[0] + B * p[1]) / det
    vy = (-B * p[0] + A * p[1]) / det
    return jnp.stack([vx, vy, w])


def se2_compose(a: jnp.ndarray, b: jnp.ndarray) -> jnp.ndarray:
    """Group composition a ∘ b on [x, y, theta] vectors."""
    c, s = jnp.cos(a[2]), jnp.sin(a[2])
    x = a[0] + c * b[0] - s * b[1]
    y = a[1] + s * b[0] + c * b[1]
    return jnp.stack([x, y, wrap_angle(a[2] + b[2])])


def se2_inverse(p: jnp.ndarray) -> jnp.ndarray:
    """Group inverse on [x, y, theta] vectors."""
    c, s = jnp.cos(p[2]), jnp.sin(p[2])
    x = -(c * p[0] + s * p[1])
    y = -(-s * p[0] + c * p[1])
    return jnp.stack([x, y, -p[2]])


def se2_between(a: jnp.ndarray, b: jnp.ndarray) -> jnp.ndarray:
    """Relative pose a⁻¹ ∘ b."""
    return se2_compose(se2_inverse(a), b)


def se2_to_se3(p: jnp.ndarray) -> jnp.ndarray:
    """Lift a planar pose [x, y, theta] to a 4x4 transform (z = 0)."""
    t = jnp.stack([p[0], p[1], jnp.zeros_like(p[0])])
    return make_transform(rot_z(p[2]), t)
