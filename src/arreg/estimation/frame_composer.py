"""Frame conversions and composition of the registration transform.

Devices report their pose in a left-handed, y-up convention (x right, y up,
z forward). Everything in this package uses a right-handed, z-up convention
(x forward, y left, z up). `convert_device_pose` bridges the two, including
the fixed rotations between the device's tracking frame and its camera
optical frame.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from ..errors import GeometryInvalidError
from ..pose import Pose

# Left-handed (x right, y up, z forward) -> right-handed (x forward, y left, z up)
HANDEDNESS_CHANGE = np.array(
    [
        [0.0, 0.0, 1.0],
        [-1.0, 0.0, 0.0],
        [0.0, 1.0, 0.0],
    ]
)

_ROT_X_180 = Pose.from_axis_angle(np.array([1.0, 0.0, 0.0]), np.pi)
_ROT_Z_90 = Pose.from_axis_angle(np.array([0.0, 0.0, 1.0]), np.pi / 2)


def change_handedness(pose: Pose) -> Pose:
    """Express a left-handed device pose in the right-handed convention.

    t' = M t and R' = M R M^T.
    """
    M = HANDEDNESS_CHANGE
    return Pose(
        rotation=M @ pose.rotation @ M.T,
        translation=M @ pose.translation,
    )


def convert_device_pose(pose: Pose) -> Pose:
    """Convert a device-reported pose into the device camera optical frame.

    After the handedness change the pose is split into its rotation and
    translation, and the mounting corrections are applied between them:

        converted = T(t') @ Rx(180) @ (R' @ Rz(90))

    Args:
        pose: Device pose in its native tracking convention

    Returns:
        Pose of the device camera optical frame in the device tracking frame
    """
    converted = change_handedness(pose)
    rotation = converted.rotation_only() @ _ROT_Z_90
    return converted.translation_only() @ _ROT_X_180 @ rotation


@dataclass
class Composition:
    """Every frame relation produced for one solved update.

    Attributes:
        device_in_fixed: T_fixed_device, device camera pose in the fixed
            camera optical frame
        world_from_device: T_world_device, device camera pose in world
        device_in_tracking: T_tracking_device, the converted self-reported
            device pose
        world_from_tracking_origin: T_world_tracking, the registration
            transform: maps the device's tracking frame into world
    """

    device_in_fixed: Pose
    world_from_device: Pose
    device_in_tracking: Pose
    world_from_tracking_origin: Pose


class FrameComposer:
    """Turns a PnP solution into the device tracking origin -> world transform.

    The composer only holds the static fixed camera -> world transform;
    it is stateless across updates.
    """

    def __init__(self, fixed_camera_to_world: Pose) -> None:
        """Initialize composer.

        Args:
            fixed_camera_to_world: T_world_fixed, pose of the fixed camera
                optical frame in world

        Raises:
            GeometryInvalidError: If the transform is not a rigid motion
        """
        if not fixed_camera_to_world.is_valid():
            raise GeometryInvalidError(
                f"Invalid fixed camera to world transform: {fixed_camera_to_world!r}"
            )
        self._fixed_camera_to_world = fixed_camera_to_world

    def compose(self, solver_pose: Pose, device_pose: Pose) -> Composition:
        """Compose the registration transform.

        With A the wanted transform, Pa the converted device pose and Pr the
        device pose in world, A @ Pa = Pr so A = Pr @ inverse(Pa).

        Args:
            solver_pose: T_device_fixed as returned by the PnP solver
            device_pose: Device pose in its native tracking convention

        Returns:
            Composition of all intermediate frames

        Raises:
            GeometryInvalidError: If any produced transform is not finite or
                its rotation is not orthonormal
        """
        device_in_fixed = solver_pose.inverse()
        world_from_device = self._fixed_camera_to_world @ device_in_fixed
        device_in_tracking = convert_device_pose(device_pose)
        world_from_tracking_origin = world_from_device @ device_in_tracking.inverse()

        for name, pose in (
            ("device pose in fixed camera frame", device_in_fixed),
            ("device pose in world", world_from_device),
            ("converted device pose", device_in_tracking),
            ("tracking origin to world transform", world_from_tracking_origin),
        ):
            if not pose.is_valid(tolerance=1e-5):
                raise GeometryInvalidError(f"Invalid {name}: {pose!r}")

        return Composition(
            device_in_fixed=device_in_fixed,
            world_from_device=world_from_device,
            device_in_tracking=device_in_tracking,
            world_from_tracking_origin=world_from_tracking_origin,
        )

    @property
    def fixed_camera_to_world(self) -> Pose:
        return self._fixed_camera_to_world
