# Copyright (c) 2025.
# This file is part of gpmp-jit, released under the MIT License.
"""
Trajectory optimizer settings.

:class:`TrajOptimizerSetting` is an immutable bundle consumed by the graph
assembler, the optimization driver and the cost evaluator. Use
:meth:`TrajOptimizerSetting.replace` to derive modified copies, e.g.::

    setting = TrajOptimizerSetting(dof=2, total_step=10, obs_check_inter=5)
    setting = setting.replace(optimizer=OptimizerType.DOGLEG, max_iter=50)

Noise sigmas of 0 for the boundary priors mean *constrained*: knot 0 and
knot N are pinned exactly to the supplied start/end values.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np

from ..errors import InvalidConfigurationError
from ..optimization.solvers import DoglegConfig, GNConfig, LMConfig, OptimizerType


@dataclass(frozen=True)
class TrajOptimizerSetting:
    dof: int
    total_time: float = 1.0
    total_step: int = 10                 # N, number of intervals
    obs_check_inter: int = 0             # M, interpolated checks per interval
    interpolate_obstacles: bool = True

    # obstacle cost
    epsilon: float = 0.1
    cost_sigma: float = 0.1

    # priors
    conf_prior_sigma: float = 0.0        # 0 = hard constraint
    vel_prior_sigma: float = 0.0         # 0 = hard constraint
    qc: Any = 1.0                        # scalar, (dof,) diagonal or (dof, dof)

    # limits
    flag_pos_limit: bool = False
    flag_vel_limit: bool = False
    joint_pos_limits_down: Optional[Any] = None
    joint_pos_limits_up: Optional[Any] = None
    vel_limits: Optional[Any] = None
    pos_limit_thresh: float = 0.0
    vel_limit_thresh: float = 0.0
    pos_limit_sigma: float = 1e-3
    vel_limit_sigma: float = 1e-3

    # optimizer
    optimizer: OptimizerType = OptimizerType.LEVENBERG_MARQUARDT
    max_iter: int = 100
    rel_thresh: float = 1e-2
    abs_thresh: float = 1e-5
    lambda_initial: float = 1e-5
    lambda_factor: float = 10.0
    lambda_upper_bound: float = 1e5
    dogleg_initial_radius: float = 1.0
    verbose: bool = False

    @property
    def delta_t(self) -> float:
        return self.total_time / self.total_step

    @property
    def interpolated_checks(self) -> int:
        """Effective M: 0 when interpolated checking is disabled."""
        return self.obs_check_inter if self.interpolate_obstacles else 0

    def replace(self, **changes) -> "TrajOptimizerSetting":
        return dataclasses.replace(self, **changes)

    def validate(self) -> None:
        """Raise :class:`InvalidConfigurationError` on inconsistent values."""
        if self.dof < 1:
            raise InvalidConfigurationError(f"dof must be >= 1, got {self.dof}")
        if self.total_step < 1:
            raise InvalidConfigurationError(f"total_step must be >= 1, got {self.total_step}")
        if self.obs_check_inter < 0:
            raise InvalidConfigurationError(
                f"obs_check_inter must be >= 0, got {self.obs_check_inter}"
            )
        if not self.total_time > 0.0:
            raise InvalidConfigurationError(f"total_time must be positive, got {self.total_time}")
        if self.epsilon < 0.0:
            raise InvalidConfigurationError(f"epsilon must be non-negative, got {self.epsilon}")
        for name in ("cost_sigma", "pos_limit_sigma", "vel_limit_sigma"):
            if not getattr(self, name) > 0.0:
                raise InvalidConfigurationError(f"{name} must be positive, got {getattr(self, name)}")
        for name in ("conf_prior_sigma", "vel_prior_sigma"):
            if getattr(self, name) < 0.0:
                raise InvalidConfigurationError(f"{name} must be non-negative, got {getattr(self, name)}")
        if self.max_iter < 1:
            raise InvalidConfigurationError(f"max_iter must be >= 1, got {self.max_iter}")

        qc = np.asarray(self.qc, dtype=float)
        if qc.ndim == 0:
            qc_ok = qc > 0.0
        elif qc.ndim == 1:
            qc_ok = qc.shape == (self.dof,) and bool(np.all(qc > 0.0))
        else:
            qc_ok = qc.shape == (self.dof, self.dof) and bool(np.all(np.linalg.eigvalsh(qc) > 0.0))
        if not qc_ok:
            raise InvalidConfigurationError("qc must be positive definite with dimension dof")

        if self.flag_pos_limit:
            if self.joint_pos_limits_down is None or self.joint_pos_limits_up is None:
                raise InvalidConfigurationError("flag_pos_limit requires joint position limits")
            down = np.asarray(self.joint_pos_limits_down, dtype=float)
            up = np.asarray(self.joint_pos_limits_up, dtype=float)
            if down.shape != up.shape or np.any(down > up):
                raise InvalidConfigurationError("joint position limits must satisfy down <= up")
        if self.flag_vel_limit:
            if self.vel_limits is None:
                raise InvalidConfigurationError("flag_vel_limit requires vel_limits")
            if np.any(np.asarray(self.vel_limits, dtype=float) < 0.0):
                raise InvalidConfigurationError("vel_limits must be non-negative")

    def solver_config(self):
        """Solver dataclass matching :attr:`optimizer`."""
        common = dict(
            max_iters=self.max_iter,
            rel_tol=self.rel_thresh,
            abs_tol=self.abs_thresh,
            verbose=self.verbose,
        )
        if self.optimizer == OptimizerType.GAUSS_NEWTON:
            return GNConfig(**common)
        if self.optimizer == OptimizerType.DOGLEG:
            return DoglegConfig(initial_radius=self.dogleg_initial_radius, **common)
        if self.optimizer == OptimizerType.LEVENBERG_MARQUARDT:
            return LMConfig(
                lambda_initial=self.lambda_initial,
                lambda_factor=self.lambda_factor,
                lambda_upper_bound=self.lambda_upper_bound,
                **common,
            )
        raise InvalidConfigurationError(f"Unknown optimizer '{self.optimizer}'")
