# Copyright (c) 2025.
# This file is part of gpmp-jit, released under the MIT License.
"""
Robot body models: configuration → collision-sphere centers.

Every model exposes the same small capability set consumed by the obstacle
cost and the planner:

    - ``dof``               velocity / tangent dimension
    - ``pose_dim``          configuration vector length
    - ``pose_space``        ``VectorSpace`` or ``Pose2VectorSpace``
    - ``nr_body_spheres``   number of collision spheres K
    - ``sphere_radii``      (K,) radii
    - ``sphere_centers(pose)``            (K, 3) world positions
    - ``sphere_centers_jacobian(pose)``   (K, 3, dof) via autodiff

Models
------
PointRobotModel
    Configuration is the position of a single frame (2D or 3D).
ArmModel
    Fixed-base DH arm (planar or spatial).
Pose2MobileArmModel
    SE(2) base carrying a DH arm. Link 0 is the base frame, link ``j+1`` is
    arm link ``j``.
"""

from __future__ import annotations

from typing import Sequence

import jax
import jax.numpy as jnp

from ..core.manifold import Pose2VectorSpace, VectorSpace
from ..core.math3d import make_transform, se2_to_se3
from .arm import Arm, BodySphere


class RobotModel:
    """Shared sphere bookkeeping; subclasses implement ``link_frames``."""

    _children = ("_link_ids", "_centers_h", "sphere_radii")

    def __init__(self, spheres: Sequence[BodySphere], nr_links: int, pose_space) -> None:
        if len(spheres) == 0:
            raise ValueError("A robot model needs at least one body sphere")
        for s in spheres:
            if not 0 <= s.link_id < nr_links:
                raise ValueError(
                    f"Sphere link id {s.link_id} out of range for {nr_links} links"
                )
            if s.radius < 0.0:
                raise ValueError(f"Sphere radius must be non-negative, got {s.radius}")
        self.spheres = tuple(
            BodySphere(int(s.link_id), float(s.radius), tuple(float(c) for c in s.center))
            for s in spheres
        )
        self.pose_space = pose_space
        self._link_ids = jnp.asarray([s.link_id for s in spheres])
        self._centers_h = jnp.asarray(
            [tuple(float(c) for c in s.center) + (1.0,) for s in spheres]
        )
        self.sphere_radii = jnp.asarray(
            [float(s.radius) for s in spheres]
        )

    @property
    def dof(self) -> int:
        return self.pose_space.tangent_dim

    @property
    def pose_dim(self) -> int:
        return self.pose_space.dim

    @property
    def nr_body_spheres(self) -> int:
        return len(self.spheres)

    def tree_flatten(self):
        return tuple(getattr(self, name) for name in self._children), (self.pose_space, self.spheres)

    @classmethod
    def tree_unflatten(cls, aux, children):
        obj = object.__new__(cls)
        obj.pose_space, obj.spheres = aux
        for name, value in zip(cls._children, children):
            setattr(obj, name, value)
        return obj

    def link_frames(self, pose: jnp.ndarray) -> jnp.ndarray:
        raise NotImplementedError

    def sphere_centers(self, pose: jnp.ndarray) -> jnp.ndarray:
        frames = self.link_frames(pose)[self._link_ids]               # (K, 4, 4)
        return jnp.einsum("kij,kj->ki", frames, self._centers_h)[:, :3]

    def sphere_centers_jacobian(self, pose: jnp.ndarray) -> jnp.ndarray:
        """
        d(sphere centers)/d(tangent update) at ``pose``: shape (K, 3, dof).
        """
        def centers_at(delta):
            return self.sphere_centers(self.pose_space.retract(pose, delta))
        return jax.jacfwd(centers_at)(jnp.zeros(self.dof, dtype=jnp.asarray(pose).dtype))


@jax.tree_util.register_pytree_node_class
class PointRobotModel(RobotModel):
    """Point robot whose configuration is its 2D or 3D position."""

    def __init__(self, dof: int, spheres: Sequence[BodySphere] | None = None) -> None:
        if dof not in (2, 3):
            raise ValueError(f"Point robot dof must be 2 or 3, got {dof}")
        if spheres is None:
            spheres = [BodySphere(link_id=0, radius=0.0)]
        super().__init__(spheres, nr_links=1, pose_space=VectorSpace(dim=dof))

    def link_frames(self, pose: jnp.ndarray) -> jnp.ndarray:
        t = jnp.zeros(3, dtype=pose.dtype).at[:pose.shape[0]].set(pose)
        return make_transform(jnp.eye(3), t)[None]


@jax.tree_util.register_pytree_node_class
class ArmModel(RobotModel):
    """Fixed-base arm with body spheres."""

    _children = RobotModel._children + ("arm",)

    def __init__(self, arm: Arm, spheres: Sequence[BodySphere]) -> None:
        self.arm = arm
        super().__init__(spheres, nr_links=arm.dof, pose_space=VectorSpace(dim=arm.dof))

    def link_frames(self, pose: jnp.ndarray) -> jnp.ndarray:
        return self.arm.forward_kinematics(pose)


@jax.tree_util.register_pytree_node_class
class Pose2MobileArmModel(RobotModel):
    """Planar mobile base carrying an arm mounted at ``base_T_arm``."""

    _children = RobotModel._children + ("arm", "base_T_arm")

    def __init__(
        self,
        arm: Arm,
        spheres: Sequence[BodySphere],
        base_T_arm: jnp.ndarray | None = None,
    ) -> None:
        self.arm = arm
        self.base_T_arm = jnp.eye(4) if base_T_arm is None else jnp.asarray(base_T_arm)
        super().__init__(
            spheres,
            nr_links=arm.dof + 1,
            pose_space=Pose2VectorSpace(arm_dof=arm.dof),
        )

    def link_frames(self, pose: jnp.ndarray) -> jnp.ndarray:
        T_base = se2_to_se3(pose[:3])
        arm_frames = self.arm.forward_kinematics(pose[3:], base=T_base @ self.base_T_arm)
        return jnp.concatenate([T_base[None], arm_frames], axis=0)
