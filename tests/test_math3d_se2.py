import jax.numpy as jnp
import pytest

from gpmp_jit.core.math3d import (
    dh_transform,
    se2_between,
    se2_compose,
    se2_exp,
    se2_log,
    se2_to_se3,
    wrap_angle,
)


def test_se2_log_exp_roundtrip():
    xi = jnp.array([0.3, -0.2, 0.7])
    assert jnp.allclose(se2_log(se2_exp(xi)), xi, atol=1e-9)


def test_se2_exp_pure_rotation_and_small_angle():
    p = se2_exp(jnp.array([0.0, 0.0, 0.5]))
    assert jnp.allclose(p, jnp.array([0.0, 0.0, 0.5]))

    xi = jnp.array([1.0, 0.0, 1e-12])
    p = se2_exp(xi)
    assert jnp.all(jnp.isfinite(p))
    assert jnp.allclose(p, jnp.array([1.0, 0.0, 1e-12]), atol=1e-9)


def test_se2_between_inverts_compose():
    a = jnp.array([1.0, 2.0, 0.4])
    b = jnp.array([-0.5, 0.3, -1.1])
    assert jnp.allclose(se2_between(a, se2_compose(a, b)), b, atol=1e-9)


def test_wrap_angle_range():
    assert float(wrap_angle(jnp.array(3.0 * jnp.pi))) == pytest.approx(jnp.pi)
    assert float(wrap_angle(jnp.array(-0.5 * jnp.pi))) == pytest.approx(-0.5 * jnp.pi)


def test_se2_to_se3_places_base_in_plane():
    T = se2_to_se3(jnp.array([1.0, 2.0, jnp.pi / 2]))
    assert jnp.allclose(T[:3, 3], jnp.array([1.0, 2.0, 0.0]))
    # x axis of the base points along world y
    assert jnp.allclose(T[:3, 0], jnp.array([0.0, 1.0, 0.0]), atol=1e-12)


def test_dh_transform_planar_link():
    T = dh_transform(2.0, 0.0, 0.0, jnp.pi / 2)
    assert jnp.allclose(T[:3, 3], jnp.array([0.0, 2.0, 0.0]), atol=1e-12)
