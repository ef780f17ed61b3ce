# Copyright (c) 2025.
# This file is part of gpmp-jit, released under the MIT License.
"""
Nonlinear least-squares solvers for gpmp-jit.

This module implements the iterative solvers used by the trajectory
optimization driver. They operate on flat JAX state vectors and residual
functions produced by :class:`core.factor_graph.FactorGraph`, with optional
manifold-aware retraction (SE(2) mobile bases) and a free mask that keeps
constrained entries (hard-pinned boundary knots) fixed.

Key Concepts
------------
GNConfig / LMConfig / DoglegConfig
    Dataclasses holding solver configuration. All share the stopping rule:
    - max_iters: iteration cap
    - rel_tol: stop when the relative error decrease falls below this
    - abs_tol: stop when the error falls below this
    The first criterion reached wins.

gauss_newton(residual_fn, x0, cfg, ...)
    Classic Gauss–Newton on normal equations:
        (Jᵀ J + μ I) Δx = −Jᵀ r
    Stops with ``no_improvement`` as soon as a step fails to decrease
    the error.

levenberg_marquardt(residual_fn, x0, cfg, ...)
    Adaptive damping λ: shrink on success, grow on failure, give up once
    λ exceeds its upper bound.

dogleg(residual_fn, x0, cfg, ...)
    Powell's dogleg trust region mixing the steepest-descent and
    Gauss–Newton steps.

SolverResult
    Final state, final / initial error, iteration count and a
    :class:`TerminationReason`.

Notes
-----
The error reported everywhere is ``‖r(x)‖²``. Every solver only ever
accepts steps that do not increase it, so the returned state is the best
iterate found. Numerical failures (singular systems, non-finite steps)
are not raised: they end the solve with ``no_improvement``.

The normal equations are assembled and solved with ``scipy.sparse``
(``spsolve``). A :class:`jit_wrappers.SparseLinearizer` hands over a CSR
Jacobian whose ``JᵀJ`` is block-tridiagonal for a trajectory; a dense
Jacobian from :class:`jit_wrappers.JittedLinearizer` is converted first.
"""

from __future__ import annotations
import math
import warnings
from dataclasses import dataclass
from enum import Enum
from logging import getLogger
from typing import Callable, Optional, Union

import jax.numpy as jnp
import numpy as np
from scipy import sparse
from scipy.sparse.linalg import MatrixRankWarning, spsolve

from .jit_wrappers import JittedLinearizer, SparseLinearizer

logger = getLogger(__name__)

ResidualFn = Callable[[jnp.ndarray], jnp.ndarray]
RetractFn = Callable[[jnp.ndarray, jnp.ndarray], jnp.ndarray]
Linearizer = Union[JittedLinearizer, SparseLinearizer]


class OptimizerType(str, Enum):
    GAUSS_NEWTON = "gauss_newton"
    LEVENBERG_MARQUARDT = "levenberg_marquardt"
    DOGLEG = "dogleg"


class TerminationReason(str, Enum):
    CONVERGED_ABSOLUTE = "converged_absolute"
    CONVERGED_RELATIVE = "converged_relative"
    MAX_ITERATIONS = "max_iterations"
    NO_IMPROVEMENT = "no_improvement"

    @property
    def converged(self) -> bool:
        return self in (
            TerminationReason.CONVERGED_ABSOLUTE,
            TerminationReason.CONVERGED_RELATIVE,
        )


@dataclass
class GNConfig:
    max_iters: int = 100
    rel_tol: float = 1e-2
    abs_tol: float = 1e-5
    damping: float = 1e-9                   # keeps JᵀJ invertible
    max_step_norm: Optional[float] = None   # clamp step size for stability
    verbose: bool = False


@dataclass
class LMConfig:
    max_iters: int = 100
    rel_tol: float = 1e-2
    abs_tol: float = 1e-5
    lambda_initial: float = 1e-5
    lambda_factor: float = 10.0
    lambda_lower_bound: float = 1e-12
    lambda_upper_bound: float = 1e5
    verbose: bool = False


@dataclass
class DoglegConfig:
    max_iters: int = 100
    rel_tol: float = 1e-2
    abs_tol: float = 1e-5
    initial_radius: float = 1.0
    min_radius: float = 1e-9
    damping: float = 1e-9
    verbose: bool = False


@dataclass
class SolverResult:
    x: jnp.ndarray
    error: float
    initial_error: float
    iterations: int
    termination: TerminationReason


def _log(cfg, msg: str, *args) -> None:
    if cfg.verbose:
        logger.info(msg, *args)
    else:
        logger.debug(msg, *args)


def _normal_equations(J, r: jnp.ndarray, free_mask: Optional[np.ndarray]):
    """
    Returns (H, g) = (JᵀJ, Jᵀr) with H sparse. Pinned entries get an
    identity row/column and a zero gradient so their step is exactly zero.
    """
    J = J if sparse.issparse(J) else sparse.csr_matrix(np.asarray(J))
    H = (J.T @ J).tocsc()
    g = J.T @ np.asarray(r)
    if free_mask is not None:
        D = sparse.diags(free_mask)
        H = (D @ H @ D + sparse.diags(1.0 - free_mask)).tocsc()
        g = g * free_mask
    return H, g


def _solve(H, lam: float, rhs: np.ndarray) -> Optional[np.ndarray]:
    """Solve ``(H + lam I) delta = rhs``; None when the system is singular."""
    A = (H + lam * sparse.identity(H.shape[0], format="csc")).tocsc()
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", MatrixRankWarning)
        delta = np.atleast_1d(spsolve(A, rhs))
    if not np.all(np.isfinite(delta)):
        return None
    return delta


def _apply(lin, x: jnp.ndarray, delta: np.ndarray) -> jnp.ndarray:
    return lin.retract(x, jnp.asarray(delta, dtype=x.dtype))


def _check_convergence(cfg, current_error: float, new_error: float) -> Optional[TerminationReason]:
    if new_error <= cfg.abs_tol:
        return TerminationReason.CONVERGED_ABSOLUTE
    if current_error > 0.0:
        rel_decrease = (current_error - new_error) / current_error
        if rel_decrease <= cfg.rel_tol:
            return TerminationReason.CONVERGED_RELATIVE
    return None


def _setup(residual_fn, x0, free_mask, retract_fn, linearizer):
    if linearizer is None:
        linearizer = JittedLinearizer.from_residual(residual_fn, retract_fn)
    x = jnp.asarray(x0)
    if free_mask is not None:
        free_mask = np.asarray(free_mask, dtype=float)
    return linearizer, x, free_mask


def gauss_newton(
    residual_fn: ResidualFn,
    x0: jnp.ndarray,
    cfg: GNConfig,
    free_mask: Optional[jnp.ndarray] = None,
    retract_fn: Optional[RetractFn] = None,
    linearizer: Optional[Linearizer] = None,
) -> SolverResult:
    """
    Gauss-Newton on residual function r(x): R^n -> R^m.

    residual_fn: x -> r, with shapes:
        x.shape == (n,)
        r.shape == (m,)

    J = dr/dδ has shape (m, n), taken in the tangent space of ``retract_fn``.
    """
    lin, x, free_mask = _setup(residual_fn, x0, free_mask, retract_fn, linearizer)

    error = lin.error(x)
    initial_error = error
    if error <= cfg.abs_tol:
        return SolverResult(x, error, initial_error, 0, TerminationReason.CONVERGED_ABSOLUTE)

    termination = TerminationReason.MAX_ITERATIONS
    iterations = 0
    for it in range(1, cfg.max_iters + 1):
        iterations = it
        r, J = lin.linearize(x)
        H, g = _normal_equations(J, r, free_mask)

        delta = _solve(H, cfg.damping, -g)
        if delta is None:
            termination = TerminationReason.NO_IMPROVEMENT
            break

        # Optional step-size clamp to avoid huge jumps
        if cfg.max_step_norm is not None:
            step_norm = np.linalg.norm(delta)
            delta = delta * min(1.0, cfg.max_step_norm / (step_norm + 1e-9))

        x_new = _apply(lin, x, delta)
        new_error = lin.error(x_new)
        _log(cfg, "GN iter %d: error %.6g -> %.6g", it, error, new_error)

        if not math.isfinite(new_error) or new_error > error:
            termination = TerminationReason.NO_IMPROVEMENT
            break

        converged = _check_convergence(cfg, error, new_error)
        x, error = x_new, new_error
        if converged is not None:
            termination = converged
            break

    return SolverResult(x, error, initial_error, iterations, termination)


def levenberg_marquardt(
    residual_fn: ResidualFn,
    x0: jnp.ndarray,
    cfg: LMConfig,
    free_mask: Optional[jnp.ndarray] = None,
    retract_fn: Optional[RetractFn] = None,
    linearizer: Optional[Linearizer] = None,
) -> SolverResult:
    """
    Levenberg–Marquardt with isotropic damping:
        (Jᵀ J + λ I) Δx = −Jᵀ r
    """
    lin, x, free_mask = _setup(residual_fn, x0, free_mask, retract_fn, linearizer)

    error = lin.error(x)
    initial_error = error
    if error <= cfg.abs_tol:
        return SolverResult(x, error, initial_error, 0, TerminationReason.CONVERGED_ABSOLUTE)

    lam = cfg.lambda_initial
    termination = TerminationReason.MAX_ITERATIONS
    iterations = 0
    for it in range(1, cfg.max_iters + 1):
        iterations = it
        r, J = lin.linearize(x)
        H, g = _normal_equations(J, r, free_mask)

        accepted = None
        while lam <= cfg.lambda_upper_bound:
            delta = _solve(H, lam, -g)
            if delta is not None:
                x_new = _apply(lin, x, delta)
                new_error = lin.error(x_new)
                if math.isfinite(new_error) and new_error <= error:
                    accepted = (x_new, new_error)
                    lam = max(lam / cfg.lambda_factor, cfg.lambda_lower_bound)
                    break
            lam *= cfg.lambda_factor

        if accepted is None:
            _log(cfg, "LM iter %d: lambda exceeded %.3g", it, cfg.lambda_upper_bound)
            termination = TerminationReason.NO_IMPROVEMENT
            break

        x_new, new_error = accepted
        _log(cfg, "LM iter %d: error %.6g -> %.6g, lambda %.3g", it, error, new_error, lam)
        converged = _check_convergence(cfg, error, new_error)
        x, error = x_new, new_error
        if converged is not None:
            termination = converged
            break

    return SolverResult(x, error, initial_error, iterations, termination)


def _dogleg_step(h_gn: np.ndarray, h_sd: np.ndarray, radius: float) -> np.ndarray:
    gn_norm = float(np.linalg.norm(h_gn))
    if gn_norm <= radius:
        return h_gn
    sd_norm = float(np.linalg.norm(h_sd))
    if sd_norm >= radius:
        return h_sd * (radius / sd_norm)
    # Walk from the Cauchy point towards the GN point until the boundary.
    d = h_gn - h_sd
    a = float(d @ d)
    b = 2.0 * float(h_sd @ d)
    c = sd_norm ** 2 - radius ** 2
    beta = (-b + (b * b - 4.0 * a * c) ** 0.5) / (2.0 * a)
    return h_sd + beta * d


def dogleg(
    residual_fn: ResidualFn,
    x0: jnp.ndarray,
    cfg: DoglegConfig,
    free_mask: Optional[jnp.ndarray] = None,
    retract_fn: Optional[RetractFn] = None,
    linearizer: Optional[Linearizer] = None,
) -> SolverResult:
    """Powell's dogleg trust-region method."""
    lin, x, free_mask = _setup(residual_fn, x0, free_mask, retract_fn, linearizer)

    error = lin.error(x)
    initial_error = error
    if error <= cfg.abs_tol:
        return SolverResult(x, error, initial_error, 0, TerminationReason.CONVERGED_ABSOLUTE)

    radius = cfg.initial_radius
    termination = TerminationReason.MAX_ITERATIONS
    iterations = 0
    for it in range(1, cfg.max_iters + 1):
        iterations = it
        r, J = lin.linearize(x)
        H, g = _normal_equations(J, r, free_mask)

        h_gn = _solve(H, cfg.damping, -g)
        if h_gn is None:
            termination = TerminationReason.NO_IMPROVEMENT
            break
        gHg = float(g @ (H @ g))
        alpha = float(g @ g) / gHg if gHg > 0.0 else 0.0
        h_sd = -alpha * g

        accepted = None
        while radius >= cfg.min_radius:
            h = _dogleg_step(h_gn, h_sd, radius)
            # Predicted decrease of ||r||² under the linear model.
            predicted = float(-2.0 * (g @ h) - h @ (H @ h))
            x_new = _apply(lin, x, h)
            new_error = lin.error(x_new)
            if not math.isfinite(new_error):
                radius *= 0.5
                continue
            actual = error - new_error
            rho = actual / predicted if predicted > 0.0 else -1.0

            step_norm = float(np.linalg.norm(h))
            if rho > 0.75:
                radius = max(radius, 3.0 * step_norm)
            elif rho < 0.25:
                radius = 0.5 * min(radius, step_norm) if step_norm > 0.0 else 0.5 * radius

            if actual >= 0.0:
                accepted = (x_new, new_error)
                break

        if accepted is None:
            _log(cfg, "Dogleg iter %d: trust region collapsed", it)
            termination = TerminationReason.NO_IMPROVEMENT
            break

        x_new, new_error = accepted
        _log(cfg, "Dogleg iter %d: error %.6g -> %.6g, radius %.3g", it, error, new_error, radius)
        converged = _check_convergence(cfg, error, new_error)
        x, error = x_new, new_error
        if converged is not None:
            termination = converged
            break

    return SolverResult(x, error, initial_error, iterations, termination)

