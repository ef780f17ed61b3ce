# Copyright (c) 2025.
# This file is part of gpmp-jit, released under the MIT License.
"""
Optimization driver for trajectory graphs.

:func:`optimize_trajectory_graph` packs the graph's knot values into a flat
state, builds the block-sparse linearizer, the manifold retraction and the
free mask, and runs the solver family selected in the settings:

    - "gauss_newton"        : Gauss-Newton
    - "levenberg_marquardt" : Levenberg-Marquardt (default)
    - "dogleg"              : Powell's dogleg

The graph itself is never mutated; the solver owns the packed state for the
duration of the call. Running out of iterations or failing to improve is
not an error: the best iterate is returned with its termination reason.
"""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger

from ..core.manifold import build_manifold_metadata, build_retraction
from ..optimization.jit_wrappers import SparseLinearizer
from ..optimization.solvers import (
    OptimizerType,
    TerminationReason,
    dogleg,
    gauss_newton,
    levenberg_marquardt,
)
from .graph import TrajectoryGraph
from .settings import TrajOptimizerSetting
from .trajectory import Trajectory

logger = getLogger(__name__)

_SOLVERS = {
    OptimizerType.GAUSS_NEWTON: gauss_newton,
    OptimizerType.LEVENBERG_MARQUARDT: levenberg_marquardt,
    OptimizerType.DOGLEG: dogleg,
}


@dataclass(frozen=True)
class OptimizationResult:
    trajectory: Trajectory
    initial_error: float
    final_error: float
    iterations: int
    termination: TerminationReason

    @property
    def converged(self) -> bool:
        return self.termination.converged


def build_linearizer(graph: TrajectoryGraph):
    """
    Block-sparse linearizer, packed initial state, state index and free mask
    for ``graph``. The retraction leaves pinned entries untouched.
    """
    x0, index = graph.pack_state()
    free_mask = graph.fg.build_free_mask(index)
    block_slices, manifold_types = build_manifold_metadata(graph.fg, index)
    retract_fn = build_retraction(block_slices, manifold_types, free_mask)
    linearizer = SparseLinearizer.from_graph(graph.fg, index, retract_fn)
    return linearizer, x0, index, free_mask


def graph_error(graph: TrajectoryGraph, trajectory: Trajectory | None = None) -> float:
    """
    Total weighted squared residual ``‖r(x)‖²`` of the graph, at its current
    values or at ``trajectory``.
    """
    linearizer, x, index, _ = build_linearizer(graph)
    if trajectory is not None:
        x = _trajectory_to_state(graph, trajectory, x, index)
    return linearizer.error(x)


def _trajectory_to_state(graph: TrajectoryGraph, trajectory: Trajectory, x, index):
    pose_idx, vel_idx = graph.knot_columns(index)
    return x.at[pose_idx].set(trajectory.poses).at[vel_idx].set(trajectory.velocities)


def optimize_trajectory_graph(graph: TrajectoryGraph, setting: TrajOptimizerSetting) -> OptimizationResult:
    """Solve the assembled graph and return the optimized trajectory."""
    optimizer = OptimizerType(setting.optimizer)
    solver = _SOLVERS[optimizer]
    cfg = setting.solver_config()

    linearizer, x0, index, free_mask = build_linearizer(graph)

    result = solver(None, x0, cfg, free_mask=free_mask, linearizer=linearizer)

    log = logger.info if setting.verbose else logger.debug
    log(
        "%s finished after %d iterations: error %.6g -> %.6g (%s)",
        optimizer.value, result.iterations, result.initial_error, result.error,
        result.termination.value,
    )
    if not result.termination.converged:
        logger.warning(
            "trajectory optimization stopped without converging (%s); "
            "returning best iterate with error %.6g",
            result.termination.value, result.error,
        )

    return OptimizationResult(
        trajectory=graph.extract_trajectory(result.x, index),
        initial_error=result.initial_error,
        final_error=result.error,
        iterations=result.iterations,
        termination=result.termination,
    )
