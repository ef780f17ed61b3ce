from __future__ import annotations

import jax.numpy as jnp
import numpy as np
import pytest

from gpmp_jit.obstacle.sdf import (
    EMPTY_MAP_DISTANCE,
    PlanarSDF,
    SignedDistanceField,
    signed_distance_field_2d,
    signed_distance_field_3d,
)


def _planar_ramp(cell_size=0.5, origin=(-1.0, 2.0), rows=6, cols=8):
    """Field whose value equals the world x coordinate of each cell."""
    xs = origin[0] + cell_size * np.arange(cols)
    field = np.tile(xs, (rows, 1))
    return PlanarSDF(origin, cell_size, field)


def test_planar_bilinear_interpolation_and_gradient():
    sdf = _planar_ramp()
    p = jnp.array([0.3, 3.1])
    assert float(sdf.signed_distance(p)) == pytest.approx(0.3)
    assert jnp.allclose(sdf.gradient(p), jnp.array([1.0, 0.0]), atol=1e-9)


def test_planar_query_ignores_z():
    sdf = _planar_ramp()
    assert float(sdf.signed_distance(jnp.array([0.3, 3.1, 5.0]))) == pytest.approx(0.3)


def test_volumetric_trilinear_interpolation():
    cell = 0.25
    rows, cols, layers = 5, 4, 6
    r, c, k = np.meshgrid(np.arange(rows), np.arange(cols), np.arange(layers), indexing="ij")
    field = cell * r + 2.0 * cell * k           # y + 2 z
    sdf = SignedDistanceField((0.0, 0.0, 0.0), cell, field)

    p = jnp.array([0.4, 0.6, 0.9])
    assert float(sdf.signed_distance(p)) == pytest.approx(0.6 + 1.8)
    assert jnp.allclose(sdf.gradient(p), jnp.array([0.0, 1.0, 2.0]), atol=1e-9)


def test_out_of_range_query_is_never_free():
    sdf = _planar_ramp()             # field min is -1.0
    far = jnp.array([100.0, 100.0])
    assert not bool(sdf.in_range(far))
    assert float(sdf.signed_distance(far)) <= -1.0

    positive = PlanarSDF((0.0, 0.0), 1.0, np.full((3, 3), 5.0))
    assert float(positive.signed_distance(jnp.array([-10.0, 1.0]))) <= 0.0
    assert bool(positive.in_range(jnp.array([1.0, 1.0])))


def test_occupancy_builder_2d():
    occupancy = np.zeros((10, 10))
    occupancy[4:6, 4:6] = 1.0
    sdf = signed_distance_field_2d(occupancy, origin=(0.0, 0.0), cell_size=0.1)

    # corner cell is sqrt(4² + 4²) cells from the nearest obstacle cell
    assert float(sdf.signed_distance(jnp.array([0.0, 0.0]))) == pytest.approx(0.1 * np.sqrt(32.0))
    assert float(sdf.signed_distance(jnp.array([0.45, 0.45]))) == pytest.approx(-0.1)


def test_occupancy_threshold():
    occupancy = np.zeros((5, 5))
    occupancy[2, 2] = 0.5        # below threshold: free
    sdf = signed_distance_field_2d(occupancy, origin=(0.0, 0.0), cell_size=1.0)
    assert float(sdf.signed_distance(jnp.array([2.0, 2.0]))) == pytest.approx(EMPTY_MAP_DISTANCE)


def test_occupancy_builder_3d():
    occupancy = np.zeros((6, 6, 6))
    occupancy[2:4, 2:4, 2:4] = 1.0
    sdf = signed_distance_field_3d(occupancy, origin=(0.0, 0.0, 0.0), cell_size=0.2)
    assert float(sdf.signed_distance(jnp.array([0.5, 0.5, 0.5]))) < 0.0
    assert float(sdf.signed_distance(jnp.array([0.0, 0.0, 0.0]))) > 0.0


def test_empty_map_is_constant_large_distance():
    sdf = signed_distance_field_3d(np.zeros((4, 4, 4)), origin=(0.0, 0.0, 0.0), cell_size=0.5)
    assert float(sdf.signed_distance(jnp.array([0.7, 1.1, 0.2]))) == pytest.approx(EMPTY_MAP_DISTANCE)
    assert jnp.allclose(sdf.gradient(jnp.array([0.7, 1.1, 0.2])), jnp.zeros(3))


def test_invalid_fields_rejected():
    with pytest.raises(ValueError):
        PlanarSDF((0.0, 0.0), 1.0, np.zeros((3, 3, 3)))
    with pytest.raises(ValueError):
        PlanarSDF((0.0, 0.0), 0.0, np.zeros((3, 3)))
    with pytest.raises(ValueError):
        SignedDistanceField((0.0, 0.0), 1.0, np.zeros((3, 3, 3)))
