from __future__ import annotations

import jax.numpy as jnp
import pytest

from gpmp_jit.core.math3d import make_transform
from gpmp_jit.kinematics.arm import Arm, BodySphere
from gpmp_jit.kinematics.models import ArmModel, PointRobotModel, Pose2MobileArmModel


def _planar_two_link():
    arm = Arm.planar([1.0, 1.0])
    spheres = [
        BodySphere(link_id=0, radius=0.1, center=(-0.5, 0.0, 0.0)),
        BodySphere(link_id=0, radius=0.1),
        BodySphere(link_id=1, radius=0.1),
    ]
    return ArmModel(arm, spheres)


def test_planar_arm_sphere_centers():
    model = _planar_two_link()
    assert model.dof == 2 and model.pose_dim == 2 and model.nr_body_spheres == 3

    centers = model.sphere_centers(jnp.array([0.0, 0.0]))
    assert jnp.allclose(centers, jnp.array([[0.5, 0.0, 0.0], [1.0, 0.0, 0.0], [2.0, 0.0, 0.0]]), atol=1e-12)

    centers = model.sphere_centers(jnp.array([jnp.pi / 2, -jnp.pi / 2]))
    assert jnp.allclose(centers[2], jnp.array([1.0, 1.0, 0.0]), atol=1e-12)


def test_sphere_centers_jacobian():
    model = _planar_two_link()
    J = model.sphere_centers_jacobian(jnp.array([0.0, 0.0]))
    assert J.shape == (3, 3, 2)
    # rotating the first joint swings the tip along +y at a 2 m lever arm
    assert jnp.allclose(J[2, :, 0], jnp.array([0.0, 2.0, 0.0]), atol=1e-9)
    assert jnp.allclose(J[2, :, 1], jnp.array([0.0, 1.0, 0.0]), atol=1e-9)
    assert jnp.allclose(J[0, :, 1], jnp.zeros(3), atol=1e-12)


def test_spatial_arm_with_base_pose():
    base = make_transform(jnp.eye(3), jnp.array([0.0, 0.0, 1.0]))
    arm = Arm(a=(0.0, 1.0), alpha=(jnp.pi / 2, 0.0), d=(0.5, 0.0), base_pose=base)
    model = ArmModel(arm, [BodySphere(link_id=1, radius=0.05)])
    centers = model.sphere_centers(jnp.array([0.0, 0.0]))
    assert jnp.allclose(centers[0], jnp.array([1.0, 0.0, 1.5]), atol=1e-12)


def test_mobile_arm_base_and_arm_links():
    arm = Arm.planar([1.0])
    spheres = [BodySphere(link_id=0, radius=0.2), BodySphere(link_id=1, radius=0.1)]
    model = Pose2MobileArmModel(arm, spheres)
    assert model.pose_dim == 4 and model.dof == 4

    centers = model.sphere_centers(jnp.array([1.0, 2.0, jnp.pi / 2, 0.0]))
    assert jnp.allclose(centers[0], jnp.array([1.0, 2.0, 0.0]), atol=1e-12)
    assert jnp.allclose(centers[1], jnp.array([1.0, 3.0, 0.0]), atol=1e-12)


def test_mobile_arm_mount_offset():
    arm = Arm.planar([1.0])
    mount = make_transform(jnp.eye(3), jnp.array([0.5, 0.0, 0.2]))
    model = Pose2MobileArmModel(arm, [BodySphere(link_id=1, radius=0.1)], base_T_arm=mount)
    centers = model.sphere_centers(jnp.array([0.0, 0.0, 0.0, 0.0]))
    assert jnp.allclose(centers[0], jnp.array([1.5, 0.0, 0.2]), atol=1e-12)


def test_point_robot_default_sphere():
    model = PointRobotModel(dof=3)
    assert model.nr_body_spheres == 1
    assert float(model.sphere_radii[0]) == 0.0
    assert jnp.allclose(model.sphere_centers(jnp.array([1.0, 2.0, 3.0]))[0], jnp.array([1.0, 2.0, 3.0]))


def test_invalid_models_rejected():
    arm = Arm.planar([1.0, 1.0])
    with pytest.raises(ValueError):
        ArmModel(arm, [BodySphere(link_id=2, radius=0.1)])
    with pytest.raises(ValueError):
        ArmModel(arm, [BodySphere(link_id=0, radius=-0.1)])
    with pytest.raises(ValueError):
        ArmModel(arm, [])
    with pytest.raises(ValueError):
        Arm(a=(1.0, 1.0), alpha=(0.0,), d=(0.0, 0.0))
    with pytest.raises(ValueError):
        PointRobotModel(dof=4)
