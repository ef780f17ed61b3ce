# Copyright (c) 2025.
# This file is part of gpmp-jit, released under the MIT License.
"""
Denavit–Hartenberg arm forward kinematics and body-sphere geometry.

An :class:`Arm` maps a joint-angle vector to one 4×4 frame per link:

    T_0 = base_pose · DH(a_0, α_0, d_0, θ_0 + q_0)
    T_j = T_{j-1} · DH(a_j, α_j, d_j, θ_j + q_j)

A planar arm is simply an arm with ``alpha = d = 0``; its frames stay in
the ``z = 0`` plane and 2D signed distance fields read the ``x, y``
coordinates of its sphere centers.

Arms are JAX pytrees: the base pose is a leaf, the DH constants are static.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

import jax
import jax.numpy as jnp

from ..core.math3d import dh_transform


@dataclass(frozen=True)
class BodySphere:
    """Collision sphere rigidly attached to link ``link_id``."""
    link_id: int
    radius: float
    center: tuple = (0.0, 0.0, 0.0)   # in the link frame


@jax.tree_util.register_pytree_node_class
@dataclass(frozen=True)
class Arm:
    a: tuple
    alpha: tuple
    d: tuple
    theta: tuple = None                          # joint offsets, zero if omitted
    base_pose: jnp.ndarray = field(default=None)  # 4x4, identity if omitted

    def __post_init__(self):
        n = len(self.a)
        if len(self.alpha) != n or len(self.d) != n:
            raise ValueError("DH parameter vectors a, alpha, d must share a length")
        if self.theta is None:
            object.__setattr__(self, "theta", (0.0,) * n)
        elif len(self.theta) != n:
            raise ValueError("DH theta offsets must match the number of links")
        # DH constants are static pytree data and must stay hashable.
        for name in ("a", "alpha", "d", "theta"):
            object.__setattr__(self, name, tuple(float(v) for v in getattr(self, name)))
        if self.base_pose is None:
            object.__setattr__(self, "base_pose", jnp.eye(4))

    @staticmethod
    def planar(link_lengths: Sequence[float], base_pose=None) -> "Arm":
        """Planar serial arm rotating about z with the given link lengths."""
        n = len(link_lengths)
        return Arm(
            a=tuple(float(l) for l in link_lengths),
            alpha=(0.0,) * n,
            d=(0.0,) * n,
            base_pose=base_pose,
        )

    def tree_flatten(self):
        return (self.base_pose,), (self.a, self.alpha, self.d, self.theta)

    @classmethod
    def tree_unflatten(cls, dh, children):
        obj = object.__new__(cls)
        for name, value in zip(("a", "alpha", "d", "theta", "base_pose"), dh + tuple(children)):
            object.__setattr__(obj, name, value)
        return obj

    @property
    def dof(self) -> int:
        return len(self.a)

    def forward_kinematics(self, q: jnp.ndarray, base: jnp.ndarray | None = None) -> jnp.ndarray:
        """
        Link frames for joint angles ``q``.

        Returns an array of shape (dof, 4, 4). ``base`` overrides the
        arm's own base pose (used when the arm rides on a mobile base).
        """
        T = self.base_pose if base is None else base
        frames = []
        for j in range(self.dof):
            T = T @ dh_transform(self.a[j], self.alpha[j], self.d[j], self.theta[j] + q[j])
            frames.append(T)
        return jnp.stack(frames)
