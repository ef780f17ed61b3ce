# Copyright (c) 2025.
# This file is part of gpmp-jit, released under the MIT License.
"""
JIT-compiled linearization wrappers for gpmp-jit.

The solvers in :mod:`optimization.solvers` repeatedly need, at the current
state ``x``:

    • the stacked residual ``r(x)``
    • its Jacobian with respect to a tangent-space update ``δ``:
          J = ∂ r(retract(x, δ)) / ∂δ   at δ = 0

For Euclidean states ``retract(x, δ) = x + δ`` and ``J`` is the ordinary
Jacobian. For SE(2) mobile-base blocks the tangent-space Jacobian is what
makes the Gauss–Newton step consistent with the retraction that applies it.

Two linearizers expose the same ``residual / linearize / retract / error``
interface:

JittedLinearizer
    Any residual function ``x -> r``; dense ``jacfwd`` over the full state.
    Meant for small problems and tests.

SparseLinearizer
    Built from a :class:`core.factor_graph.FactorGraph`. Every factor batch
    is differentiated only with respect to its own stacked blocks
    (``vmap(jacfwd)``, shape (F, m, d)), and the blocks are scattered into a
    ``scipy.sparse`` matrix whose block rows are factors and whose block
    columns are knot variables. The compiled kernels live at module level
    and are keyed on the batch structure, so repeated solves of same-shaped
    problems skip tracing and compilation.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from typing import Callable, Optional, Tuple

import jax
import jax.numpy as jnp
import numpy as np
from scipy import sparse

from ..core.factor_graph import FactorGraph, StateIndex, batch_arguments, merge_params, stacked_residual
from ..core.manifold import get_manifold_for_var_type, pose_space_for_manifold, retract_blocks

ResidualFn = Callable[[jnp.ndarray], jnp.ndarray]
RetractFn = Callable[[jnp.ndarray, jnp.ndarray], jnp.ndarray]


def _additive_retract(x: jnp.ndarray, delta: jnp.ndarray) -> jnp.ndarray:
    return x + delta


@dataclass
class JittedLinearizer:
    """
    Holds jitted residual / linearization functions for one residual.

    Usage:
        lin = JittedLinearizer.from_residual(residual_fn, retract_fn)
        r, J = lin.linearize(x)
        x_new = lin.retract(x, delta)
    """
    residual: ResidualFn
    linearize: Callable[[jnp.ndarray], Tuple[jnp.ndarray, jnp.ndarray]]
    retract: RetractFn

    def error(self, x: jnp.ndarray) -> float:
        r = self.residual(x)
        return float(jnp.sum(r ** 2))

    @staticmethod
    def from_residual(
        residual_fn: ResidualFn,
        retract_fn: Optional[RetractFn] = None,
    ) -> "JittedLinearizer":
        retract_fn = retract_fn or _additive_retract

        def linearize(x: jnp.ndarray) -> Tuple[jnp.ndarray, jnp.ndarray]:
            def local_residual(delta: jnp.ndarray) -> jnp.ndarray:
                return residual_fn(retract_fn(x, delta))

            zero = jnp.zeros_like(x)
            r = residual_fn(x)
            J = jax.jacfwd(local_residual)(zero)  # (m, n)
            return r, J

        return JittedLinearizer(
            residual=jax.jit(residual_fn),
            linearize=jax.jit(linearize),
            retract=jax.jit(retract_fn),
        )


def _block_spaces(blocks):
    return tuple(
        pose_space_for_manifold(get_manifold_for_var_type(var_type), length)
        for var_type, length in blocks
    )


@partial(jax.jit, static_argnums=0)
def _stacked_error(specs, x, indices, shared, stacked):
    return jnp.sum(stacked_residual(specs, x, indices, shared, stacked) ** 2)


@partial(jax.jit, static_argnums=0)
def _stacked_jacobians(specs, x, indices, shared, stacked):
    """Residual and per-factor tangent Jacobian blocks of every batch."""
    residuals, blocks = [], []
    for spec, idx, sh, st in zip(specs, indices, shared, stacked):
        spaces = _block_spaces(spec.blocks)

        def one(x_f, st_f, spec=spec, sh=sh, spaces=spaces):
            params = merge_params(spec, sh, st_f)

            def at(delta):
                return jnp.reshape(spec.fn(retract_blocks(spaces, x_f, delta), params), (-1,))

            r_f = jnp.reshape(spec.fn(x_f, params), (-1,))
            return r_f, jax.jacfwd(at)(jnp.zeros_like(x_f))

        r, J = jax.vmap(one)(x[idx], st)
        residuals.append(jnp.reshape(r, (-1,)))
        blocks.append(J)                                   # (F, m, d)
    r = jnp.concatenate(residuals) if residuals else jnp.zeros((0,), dtype=x.dtype)
    return r, tuple(blocks)


@dataclass
class SparseLinearizer:
    """
    Block-sparse linearization of a factor graph.

    Usage:
        lin = SparseLinearizer.from_graph(fg, index, retract_fn)
        r, J = lin.linearize(x)          # J is a scipy.sparse CSR matrix
    """
    specs: Tuple
    indices: Tuple
    shared: Tuple
    stacked: Tuple
    retract: RetractFn
    dim: int
    _pattern: Optional[Tuple[np.ndarray, np.ndarray, int]] = None

    @staticmethod
    def from_graph(
        fg: FactorGraph,
        index: StateIndex,
        retract_fn: Optional[RetractFn] = None,
    ) -> "SparseLinearizer":
        specs, indices, shared, stacked = batch_arguments(fg.build_factor_batches(index))
        return SparseLinearizer(
            specs=specs,
            indices=indices,
            shared=shared,
            stacked=stacked,
            retract=retract_fn or _additive_retract,
            dim=sum(length for _, length in index.values()),
        )

    def residual(self, x: jnp.ndarray) -> jnp.ndarray:
        return stacked_residual(self.specs, x, self.indices, self.shared, self.stacked)

    def error(self, x: jnp.ndarray) -> float:
        return float(_stacked_error(self.specs, x, self.indices, self.shared, self.stacked))

    def _sparsity(self, blocks) -> Tuple[np.ndarray, np.ndarray, int]:
        """(row, col) of every Jacobian block entry, and the row count."""
        if self._pattern is None:
            rows, cols, offset = [np.zeros(0, dtype=int)], [np.zeros(0, dtype=int)], 0
            for idx, block in zip(self.indices, blocks):
                F, m, d = block.shape
                r = offset + np.arange(F * m).reshape(F, m)
                rows.append(np.broadcast_to(r[:, :, None], (F, m, d)).ravel())
                cols.append(np.broadcast_to(np.asarray(idx)[:, None, :], (F, m, d)).ravel())
                offset += F * m
            self._pattern = (np.concatenate(rows), np.concatenate(cols), offset)
        return self._pattern

    def linearize(self, x: jnp.ndarray):
        r, blocks = _stacked_jacobians(self.specs, x, self.indices, self.shared, self.stacked)
        rows, cols, m = self._sparsity(blocks)
        data = np.concatenate([np.zeros(0)] + [np.asarray(b).ravel() for b in blocks])
        J = sparse.csr_matrix((data, (rows, cols)), shape=(m, self.dim))
        return r, J
