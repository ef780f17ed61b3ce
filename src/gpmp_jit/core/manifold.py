# Copyright (c) 2025.
# This file is part of gpmp-jit, released under the MIT License.
"""
Manifold utilities for Euclidean and Pose2Vector variables in gpmp-jit.

This module centralizes the *geometric* logic needed by the motion prior,
the interpolator and the manifold-aware solvers:

    • Pose spaces: objects exposing ``local(a, b)`` (tangent vector taking
      ``a`` to ``b``) and ``retract(a, delta)`` (apply a tangent update).
        - ``VectorSpace``: joint-angle vectors, ``local = b − a``.
        - ``Pose2VectorSpace``: mobile-base ``[x, y, θ]`` on SE(2) stacked
          with arm joint angles.

    • Manifold metadata helpers:
        - ``TYPE_TO_MANIFOLD``           (variable type → manifold label)
        - ``get_manifold_for_var_type``
        - ``build_manifold_metadata``    (NodeId → slice, manifold type)
        - ``build_retraction``           (flat-state retraction for solvers)
        - ``retract_blocks``             (per-factor retraction of stacked blocks)

Pose spaces are JAX pytrees without leaves, so they can sit inside factor
params that are passed through ``jax.jit`` and ``jax.vmap``.

Integration with the Optimizer
------------------------------
The solvers linearize in the tangent space, ``J = ∂r(retract(x, δ))/∂δ``,
and apply updates through the retraction returned by
:func:`build_retraction`. Euclidean blocks are updated additively and
``pose2_vector`` blocks through the SE(2) group composition.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Dict, Optional, Tuple

import jax
import jax.numpy as jnp
import numpy as np

from .factor_graph import FactorGraph, StateIndex
from .math3d import se2_between, se2_compose, se2_exp, se2_log
from .types import NodeId

TYPE_TO_MANIFOLD: Dict[str, str] = {
    "pose": "euclidean",
    "velocity": "euclidean",
    "pose2_vector": "pose2_vector",
}


def get_manifold_for_var_type(var_type: str) -> str:
    return TYPE_TO_MANIFOLD.get(var_type, "euclidean")


@jax.tree_util.register_pytree_node_class
@dataclass(frozen=True)
class VectorSpace:
    """Euclidean configuration space of dimension ``dim``."""
    dim: int

    var_type = "pose"

    @property
    def tangent_dim(self) -> int:
        return self.dim

    def local(self, a: jnp.ndarray, b: jnp.ndarray) -> jnp.ndarray:
        return b - a

    def retract(self, a: jnp.ndarray, delta: jnp.ndarray) -> jnp.ndarray:
        return a + delta

    def tree_flatten(self):
        return (), self.dim

    @classmethod
    def tree_unflatten(cls, dim, children):
        return cls(dim)


@jax.tree_util.register_pytree_node_class
@dataclass(frozen=True)
class Pose2VectorSpace:
    """
    SE(2) base pose stacked with ``arm_dof`` joint angles:
        [x, y, theta, q_1, ..., q_n]

    The tangent vector is ``[vx, vy, w, dq_1, ..., dq_n]`` expressed in the
    body frame of the base.
    """
    arm_dof: int

    var_type = "pose2_vector"

    @property
    def dim(self) -> int:
        return 3 + self.arm_dof

    @property
    def tangent_dim(self) -> int:
        return 3 + self.arm_dof

    def local(self, a: jnp.ndarray, b: jnp.ndarray) -> jnp.ndarray:
        base = se2_log(se2_between(a[:3], b[:3]))
        return jnp.concatenate([base, b[3:] - a[3:]])

    def retract(self, a: jnp.ndarray, delta: jnp.ndarray) -> jnp.ndarray:
        base = se2_compose(a[:3], se2_exp(delta[:3]))
        return jnp.concatenate([base, a[3:] + delta[3:]])

    def tree_flatten(self):
        return (), self.arm_dof

    @classmethod
    def tree_unflatten(cls, arm_dof, children):
        return cls(arm_dof)


def pose_space_for_manifold(manifold: str, dim: int):
    if manifold == "pose2_vector":
        return Pose2VectorSpace(arm_dof=dim - 3)
    return VectorSpace(dim=dim)


def build_manifold_metadata(
    fg: FactorGraph,
    index: StateIndex | None = None,
) -> Tuple[Dict[NodeId, slice], Dict[NodeId, str]]:
    """
    Build metadata for manifold-aware solvers:

      - block_slices: NodeId -> slice in the flat state vector
      - manifold_types: NodeId -> 'pose2_vector' or 'euclidean'
    """
    if index is None:
        _, index = fg.pack_state()

    block_slices: Dict[NodeId, slice] = {}
    manifold_types: Dict[NodeId, str] = {}

    for nid, var in fg.variables.items():
        start, length = index[nid]
        block_slices[nid] = slice(start, start + length)
        manifold_types[nid] = get_manifold_for_var_type(var.type)

    return block_slices, manifold_types


RetractFn = Callable[[jnp.ndarray, jnp.ndarray], jnp.ndarray]


@partial(jax.jit, static_argnums=0)
def _retract_state(spaces, x, delta, block_indices, free_mask):
    x_new = x + delta
    for space, idx in zip(spaces, block_indices):
        x_new = x_new.at[idx].set(jax.vmap(space.retract)(x[idx], delta[idx]))
    # Pinned entries keep their stored value bit for bit (no angle wrapping).
    return jnp.where(free_mask > 0.0, x_new, x)


def build_retraction(
    block_slices: Dict[NodeId, slice],
    manifold_types: Dict[NodeId, str],
    free_mask: Optional[Any] = None,
) -> RetractFn:
    """
    Returns ``retract(x, delta)`` over the flat state.

    Euclidean blocks are updated additively. Curved blocks sharing a pose
    space are gathered and retracted in one vmapped call. Entries where
    ``free_mask`` is 0 are returned unchanged.

    The compiled kernel is shared by every retraction with the same block
    structure, so rebuilding a graph of the same shape does not recompile.
    """
    curved: Dict[Any, list] = {}
    for nid, sl in block_slices.items():
        if manifold_types[nid] != "euclidean":
            space = pose_space_for_manifold(manifold_types[nid], sl.stop - sl.start)
            curved.setdefault(space, []).append(np.arange(sl.start, sl.stop))

    spaces = tuple(curved)
    block_indices = tuple(jnp.asarray(np.stack(rows)) for rows in curved.values())
    if free_mask is None:
        size = max((sl.stop for sl in block_slices.values()), default=0)
        free_mask = np.ones(size)
    free_mask = jnp.asarray(free_mask)

    def retract(x: jnp.ndarray, delta: jnp.ndarray) -> jnp.ndarray:
        return _retract_state(spaces, x, delta, block_indices, free_mask)

    return retract


def retract_blocks(spaces: Tuple[Any, ...], x: jnp.ndarray, delta: jnp.ndarray) -> jnp.ndarray:
    """Retract a stacked ``[block_0, block_1, ...]`` vector block by block."""
    parts, offset = [], 0
    for space in spaces:
        n = space.dim
        parts.append(space.retract(x[offset:offset + n], delta[offset:offset + n]))
        offset += n
    return jnp.concatenate(parts)
