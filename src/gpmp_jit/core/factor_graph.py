# Copyright (c) 2025.
# This file is part of gpmp-jit, released under the MIT License.
"""
Factor graph over trajectory knot variables.

A :class:`FactorGraph` is purely structural: it records knot variables
(pose / velocity blocks with their initial values), the factors between
them and one residual callable per factor type. Numerical work happens in
the function it compiles:

    r(x) : ℝ^n → ℝ^m

where ``x`` is every variable block concatenated in ``NodeId`` order. Each
factor's rows depend only on the blocks of its own variables, so the
Jacobian of ``r`` has the block-sparse structure of the trajectory graph
(priors on single knots, motion priors and interpolated obstacle factors
on adjacent pairs).

Residual callables have the signature ``fn(x_factor, params)`` where
``x_factor`` is the factor's variable blocks stacked in ``var_ids`` order.

Factor batches
--------------
Factors of one type whose params share a pytree structure and leaf shapes
and whose variables have the same layout form a :class:`FactorBatch`. The
batch is evaluated with a single ``jax.vmap`` over the stacked gather
indices: a trajectory of N intervals yields one motion-prior term, one
knot obstacle term and one interpolated obstacle term over every
(interval, τ) pair, however large N is.

Params leaves that every factor of the batch shares (the robot, the
distance field, the noise scales) are passed once. The others (boundary
targets, interpolation coefficients) are stacked along a leading axis.
Both travel as traced arguments to a module-level ``jax.jit`` whose only
static argument is the tuple of :class:`TermSpec`, so two graphs with the
same structure reuse one compiled executable.

Constrained variables
---------------------
A factor whose params carry ``"constrained": True`` pins its variables to
their current values. It contributes no rows to ``r``;
:meth:`FactorGraph.build_free_mask` marks the pinned entries so solvers
leave them untouched.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Dict, List, Tuple

import jax
import jax.numpy as jnp
import numpy as np

from .types import Factor, FactorId, NodeId, Variable

ResidualFn = Callable[[jnp.ndarray, Dict[str, jnp.ndarray]], jnp.ndarray]
StateIndex = Dict[NodeId, Tuple[int, int]]


def _is_constrained(factor: Factor) -> bool:
    return bool(factor.params.get("constrained", False))


@dataclass(frozen=True)
class TermSpec:
    """Static (hashable) description of one factor batch."""
    factor_type: str
    fn: ResidualFn
    treedef: Any
    shared: Tuple[bool, ...]              # per params leaf: shared or stacked
    blocks: Tuple[Tuple[str, int], ...]   # (variable type, length) in var_ids order


@dataclass
class FactorBatch:
    spec: TermSpec
    factor_ids: List[FactorId]
    indices: np.ndarray                   # (F, d) positions in the packed state
    shared_leaves: Tuple
    stacked_leaves: Tuple


def merge_params(spec: TermSpec, shared: Tuple, stacked: Tuple):
    """Rebuild one factor's params pytree from shared and per-factor leaves."""
    shared_it, stacked_it = iter(shared), iter(stacked)
    leaves = [next(shared_it) if flag else next(stacked_it) for flag in spec.shared]
    return jax.tree_util.tree_unflatten(spec.treedef, leaves)


def batch_residuals(spec: TermSpec, x_rows: jnp.ndarray, shared: Tuple, stacked: Tuple) -> jnp.ndarray:
    """Residual rows of every factor in a batch, shape (F, m)."""
    def one(x_f, stacked_f):
        params = merge_params(spec, shared, stacked_f)
        return jnp.reshape(spec.fn(x_f, params), (-1,))
    return jax.vmap(one)(x_rows, stacked)


@partial(jax.jit, static_argnums=0)
def stacked_residual(specs, x, indices, shared, stacked):
    """``r(x)`` for a tuple of batches; rows are batch-major, then factor-major."""
    rows = [
        jnp.reshape(batch_residuals(spec, x[idx], sh, st), (-1,))
        for spec, idx, sh, st in zip(specs, indices, shared, stacked)
    ]
    if not rows:
        return jnp.zeros((0,), dtype=x.dtype)
    return jnp.concatenate(rows)


def batch_arguments(batches: List[FactorBatch]):
    """Split batches into the static specs and the traced arrays."""
    return (
        tuple(b.spec for b in batches),
        tuple(jnp.asarray(b.indices) for b in batches),
        tuple(b.shared_leaves for b in batches),
        tuple(b.stacked_leaves for b in batches),
    )


@dataclass
class FactorGraph:
    """
    Variables, factors and residual callables of one planning problem.

    The graph never owns a packed state: :meth:`pack_state` hands out a
    fresh vector and the caller (usually a solver) works on it.
    """
    variables: Dict[NodeId, Variable] = field(default_factory=dict)
    factors: Dict[FactorId, Factor] = field(default_factory=dict)
    residual_fns: Dict[str, ResidualFn] = field(default_factory=dict)

    def add_variable(self, var: Variable) -> None:
        if var.id in self.variables:
            raise ValueError(f"Variable {var.id} already exists")
        self.variables[var.id] = var

    def add_factor(self, factor: Factor) -> None:
        if factor.id in self.factors:
            raise ValueError(f"Factor {factor.id} already exists")
        missing = [nid for nid in factor.var_ids if nid not in self.variables]
        if missing:
            raise ValueError(f"Factor {factor.id} references unknown variables {missing}")
        self.factors[factor.id] = factor

    def register_residual(self, factor_type: str, fn: ResidualFn) -> None:
        self.residual_fns[factor_type] = fn

    # --- packed state ---

    def _ordered_ids(self) -> List[NodeId]:
        return sorted(self.variables)

    def _build_state_index(self) -> StateIndex:
        """NodeId -> (offset, length) of its block in the packed state."""
        index: StateIndex = {}
        offset = 0
        for nid in self._ordered_ids():
            length = int(jnp.shape(self.variables[nid].value)[0])
            index[nid] = (offset, length)
            offset += length
        return index

    def pack_state(self) -> Tuple[jnp.ndarray, StateIndex]:
        blocks = [np.asarray(self.variables[nid].value) for nid in self._ordered_ids()]
        return jnp.asarray(np.concatenate(blocks)), self._build_state_index()

    def unpack_state(self, x: jnp.ndarray, index: StateIndex) -> Dict[NodeId, jnp.ndarray]:
        return {nid: x[start:start + length] for nid, (start, length) in index.items()}

    def build_free_mask(self, index: StateIndex) -> jnp.ndarray:
        """
        0/1 mask over the packed state; 0 marks entries pinned by a
        constrained factor.
        """
        total = sum(length for _, length in index.values())
        mask = np.ones(total)
        for factor in filter(_is_constrained, self.factors.values()):
            for nid in factor.var_ids:
                start, length = index[nid]
                mask[start:start + length] = 0.0
        return jnp.asarray(mask)

    # --- compiled residual ---

    def _gather_indices(self, factor: Factor, index: StateIndex) -> np.ndarray:
        """Positions in the packed state of the factor's stacked variables."""
        spans = [np.arange(index[nid][0], index[nid][0] + index[nid][1]) for nid in factor.var_ids]
        return np.concatenate(spans)

    def build_factor_batches(self, index: StateIndex) -> List[FactorBatch]:
        """Group the unconstrained factors into vmappable batches."""
        groups: Dict[Tuple, List[Tuple[Factor, List]]] = {}
        for factor in self.factors.values():
            if _is_constrained(factor):
                continue
            if factor.type not in self.residual_fns:
                raise ValueError(f"No residual fn registered for factor type '{factor.type}'")
            leaves, treedef = jax.tree_util.tree_flatten(factor.params)
            blocks = tuple((self.variables[nid].type, index[nid][1]) for nid in factor.var_ids)
            key = (factor.type, treedef, tuple(jnp.shape(leaf) for leaf in leaves), blocks)
            groups.setdefault(key, []).append((factor, leaves))

        batches = []
        for (f_type, treedef, _, blocks), members in groups.items():
            columns = list(zip(*(leaves for _, leaves in members)))
            flags = tuple(all(leaf is column[0] for leaf in column) for column in columns)
            batches.append(FactorBatch(
                spec=TermSpec(f_type, self.residual_fns[f_type], treedef, flags, blocks),
                factor_ids=[f.id for f, _ in members],
                indices=np.stack([self._gather_indices(f, index) for f, _ in members]),
                shared_leaves=tuple(col[0] for col, flag in zip(columns, flags) if flag),
                stacked_leaves=tuple(
                    jnp.stack([jnp.asarray(leaf) for leaf in col])
                    for col, flag in zip(columns, flags) if not flag
                ),
            ))
        return batches

    def build_residual_function(self):
        """
        ``r(x)`` for the current structure.

        The structure (state layout, factor list, residual table) is frozen
        when this is called; later edits to the graph need a rebuild.
        """
        _, index = self.pack_state()
        specs, indices, shared, stacked = batch_arguments(self.build_factor_batches(index))

        def residual(x: jnp.ndarray) -> jnp.ndarray:
            return stacked_residual(specs, x, indices, shared, stacked)

        return residual
