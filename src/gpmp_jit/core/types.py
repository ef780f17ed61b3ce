# Copyright (c) 2025.
# This file is part of gpmp-jit, released under the MIT License.
"""
Graph node and edge records.

Every trajectory knot contributes two :class:`Variable` records, a pose
(``"pose"`` for joint vectors, ``"pose2_vector"`` for a mobile base with
its arm) and a ``"velocity"``. A :class:`Factor` names the variables it
reads, in the order its residual expects them, plus a ``params`` dict
with whatever that residual needs (targets, noise scales, robot and field
handles, interpolation coefficients).

Records hold initial values only. Solvers work on a packed copy, so the
records are never back-filled during a solve.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, NewType, Tuple

NodeId = NewType("NodeId", int)
FactorId = NewType("FactorId", int)


@dataclass
class Variable:
    id: NodeId
    type: str          # "pose", "pose2_vector", "velocity"
    value: Any         # 1-D array


@dataclass
class Factor:
    id: FactorId
    type: str          # residual table key, e.g. "gp_prior"
    var_ids: Tuple[NodeId, ...]
    params: Dict[str, Any]
