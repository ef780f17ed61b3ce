# Copyright (c) 2025.
# This file is part of gpmp-jit, released under the MIT License.
"""
Grid signed distance fields.

Two fields share one query contract, ``signed_distance(point)``, returning a
distance that is negative inside obstacles:

PlanarSDF
    2D grid ``field[row, col]`` with row ↔ y and col ↔ x; bilinear
    interpolation. Queries read the first two coordinates of the point, so
    3D sphere centers of planar robots can be passed unchanged.

SignedDistanceField
    3D grid ``field[row, col, layer]`` with row ↔ y, col ↔ x, layer ↔ z;
    trilinear interpolation.

``origin`` is the world position of cell (0, 0[, 0]) in (x, y[, z]) order.
Gradients come from JAX autodiff of the interpolation.
Fields are JAX pytrees whose leaves are the grid and its geometry, so a
new map of the same size reuses already compiled planner kernels.

Out-of-grid queries
-------------------
A point outside the grid is clamped onto the nearest valid cell and its
distance replaced by ``min(clamped_distance, min(field_min, 0))``. An
out-of-grid sphere therefore always looks at least as unsafe as touching
an obstacle; it is never silently treated as free space.

Builders
--------
``signed_distance_field_2d`` / ``signed_distance_field_3d`` turn occupancy
grids into fields with ``scipy.ndimage.distance_transform_edt``. A map
without any occupied cell yields a constant large distance.
"""

from __future__ import annotations

from logging import getLogger

import jax
import jax.numpy as jnp
import numpy as np
from scipy.ndimage import distance_transform_edt

logger = getLogger(__name__)

EMPTY_MAP_DISTANCE = 1000.0
OCCUPANCY_THRESHOLD = 0.75


class _GridSDF:
    dim = 0
    _children = ("origin", "cell_size", "field", "unsafe_distance", "_upper")

    def __init__(self, origin, cell_size: float, field) -> None:
        field = np.asarray(field, dtype=float)
        origin = np.asarray(origin, dtype=float).reshape(-1)
        if field.ndim != self.dim:
            raise ValueError(f"{type(self).__name__} expects a {self.dim}-D field, got {field.ndim}-D")
        if origin.shape[0] != self.dim:
            raise ValueError(f"origin must have {self.dim} coordinates, got {origin.shape[0]}")
        if cell_size <= 0.0:
            raise ValueError(f"cell_size must be positive, got {cell_size}")
        if min(field.shape) < 2:
            raise ValueError("field must have at least 2 cells along every axis")
        self.origin = jnp.asarray(origin)
        self.cell_size = float(cell_size)
        self.field = jnp.asarray(field)
        self.unsafe_distance = min(float(field.min()), 0.0)
        # Grid extent in (x, y[, z]) order.
        shape_xyz = (field.shape[1], field.shape[0]) + tuple(field.shape[2:])
        self._upper = jnp.asarray([s - 1 for s in shape_xyz], dtype=self.origin.dtype)

    def tree_flatten(self):
        return tuple(getattr(self, name) for name in self._children), None

    @classmethod
    def tree_unflatten(cls, aux, children):
        obj = object.__new__(cls)
        for name, value in zip(cls._children, children):
            setattr(obj, name, value)
        return obj

    def _grid_coords(self, point: jnp.ndarray) -> jnp.ndarray:
        return (point[:self.dim] - self.origin) / self.cell_size

    def in_range(self, point) -> jnp.ndarray:
        g = self._grid_coords(jnp.asarray(point))
        return jnp.all((g >= 0.0) & (g <= self._upper))

    def _interpolate(self, g: jnp.ndarray) -> jnp.ndarray:
        raise NotImplementedError

    def signed_distance(self, point: jnp.ndarray) -> jnp.ndarray:
        g = self._grid_coords(point)
        inside = jnp.all((g >= 0.0) & (g <= self._upper))
        d = self._interpolate(jnp.clip(g, 0.0, self._upper))
        return jnp.where(inside, d, jnp.minimum(d, self.unsafe_distance))

    def gradient(self, point: jnp.ndarray) -> jnp.ndarray:
        return jax.grad(self.signed_distance)(jnp.asarray(point))


def _cell(g: jnp.ndarray, upper: jnp.ndarray):
    """Lower cell index (clamped so idx + 1 stays valid) and fraction."""
    idx = jnp.clip(jnp.floor(g), 0.0, upper - 1.0)
    return idx.astype(jnp.int32), g - idx


@jax.tree_util.register_pytree_node_class
class PlanarSDF(_GridSDF):
    dim = 2

    def _interpolate(self, g: jnp.ndarray) -> jnp.ndarray:
        idx, frac = _cell(g, self._upper)
        c, r = idx[0], idx[1]
        fx, fy = frac[0], frac[1]
        f = self.field
        return (
            (1 - fx) * (1 - fy) * f[r, c]
            + fx * (1 - fy) * f[r, c + 1]
            + (1 - fx) * fy * f[r + 1, c]
            + fx * fy * f[r + 1, c + 1]
        )


@jax.tree_util.register_pytree_node_class
class SignedDistanceField(_GridSDF):
    dim = 3

    def _interpolate(self, g: jnp.ndarray) -> jnp.ndarray:
        idx, frac = _cell(g, self._upper)
        c, r, k = idx[0], idx[1], idx[2]
        fx, fy, fz = frac[0], frac[1], frac[2]
        f = self.field

        def plane(layer):
            return (
                (1 - fx) * (1 - fy) * f[r, c, layer]
                + fx * (1 - fy) * f[r, c + 1, layer]
                + (1 - fx) * fy * f[r + 1, c, layer]
                + fx * fy * f[r + 1, c + 1, layer]
            )

        return (1 - fz) * plane(k) + fz * plane(k + 1)


def _signed_distance_grid(occupancy, cell_size: float) -> np.ndarray:
    occupied = np.asarray(occupancy) > OCCUPANCY_THRESHOLD
    if not occupied.any():
        logger.debug("occupancy map has no obstacles, using constant distance")
        return np.ones(occupied.shape) * EMPTY_MAP_DISTANCE
    outside = distance_transform_edt(~occupied)
    inside = distance_transform_edt(occupied)
    return (outside - inside) * cell_size


def signed_distance_field_2d(occupancy, origin, cell_size: float) -> PlanarSDF:
    """Build a :class:`PlanarSDF` from a 2D occupancy grid indexed [y, x]."""
    return PlanarSDF(origin, cell_size, _signed_distance_grid(occupancy, cell_size))


def signed_distance_field_3d(occupancy, origin, cell_size: float) -> SignedDistanceField:
    """Build a :class:`SignedDistanceField` from a 3D occupancy grid indexed [y, x, z]."""
    return SignedDistanceField(origin, cell_size, _signed_distance_grid(occupancy, cell_size))
