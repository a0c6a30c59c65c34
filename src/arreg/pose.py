"""Rigid body pose type used for all frame algebra."""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np
from scipy.spatial.transform import Rotation

_Z_AXIS = np.array([0.0, 0.0, 1.0])


def vector_angle(a: np.ndarray, b: np.ndarray) -> float:
    """Return the unsigned angle between two 3D vectors in radians."""
    a = np.asarray(a, dtype=np.float64).flatten()
    b = np.asarray(b, dtype=np.float64).flatten()
    norm = np.linalg.norm(a) * np.linalg.norm(b)
    if norm == 0.0:
        return 0.0
    # Clamp for numerical stability
    cos_theta = np.clip(np.dot(a, b) / norm, -1.0, 1.0)
    return float(np.arccos(cos_theta))


@dataclass
class Pose:
    """Rigid body transformation (rotation + translation).

    A pose T_a_b maps points expressed in frame b into frame a:

        p_a = R @ p_b + t

    Naming in this package follows that convention, e.g. `world_from_camera`
    takes camera-frame points to world-frame points.

    Attributes:
        rotation: 3x3 rotation matrix (det = +1)
        translation: 3D translation vector
    """

    rotation: np.ndarray  # 3x3 rotation matrix
    translation: np.ndarray  # (3,) translation vector

    def __post_init__(self) -> None:
        """Validate and normalize inputs."""
        self.rotation = np.asarray(self.rotation, dtype=np.float64)
        self.translation = np.asarray(self.translation, dtype=np.float64).flatten()

        if self.rotation.shape != (3, 3):
            raise ValueError(f"Rotation must be 3x3, got {self.rotation.shape}")
        if self.translation.shape != (3,):
            raise ValueError(
                f"Translation must be (3,), got {self.translation.shape}"
            )

    @classmethod
    def identity(cls) -> Pose:
        """Create the identity transformation."""
        return cls(rotation=np.eye(3), translation=np.zeros(3))

    @classmethod
    def from_matrix(cls, T: np.ndarray) -> Pose:
        """Create a pose from a 4x4 homogeneous matrix [[R, t], [0, 1]]."""
        T = np.asarray(T)
        if T.shape != (4, 4):
            raise ValueError(f"Transform must be 4x4, got {T.shape}")
        return cls(rotation=T[:3, :3], translation=T[:3, 3])

    @classmethod
    def from_rvec_tvec(cls, rvec: np.ndarray, tvec: np.ndarray) -> Pose:
        """Create a pose from an OpenCV Rodrigues vector and translation.

        cv2.solvePnP output converted this way maps object (reference)
        points into the camera frame.
        """
        R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).flatten())
        return cls(rotation=R, translation=np.asarray(tvec).flatten())

    @classmethod
    def from_quaternion(
        cls,
        qw: float,
        qx: float,
        qy: float,
        qz: float,
        translation: np.ndarray | None = None,
    ) -> Pose:
        """Create a pose from a Hamilton quaternion (w, x, y, z) and translation.

        The quaternion is normalized before conversion.

        Raises:
            ValueError: If the quaternion has zero norm
        """
        quat = np.array([qx, qy, qz, qw], dtype=np.float64)
        if not np.isfinite(quat).all() or np.linalg.norm(quat) == 0.0:
            raise ValueError(f"Invalid quaternion (w={qw}, x={qx}, y={qy}, z={qz})")
        R = Rotation.from_quat(quat).as_matrix()
        if translation is None:
            translation = np.zeros(3)
        return cls(rotation=R, translation=translation)

    @classmethod
    def from_axis_angle(
        cls,
        axis: np.ndarray,
        angle: float,
        translation: np.ndarray | None = None,
    ) -> Pose:
        """Create a pose rotating by `angle` radians around `axis`."""
        axis = np.asarray(axis, dtype=np.float64).flatten()
        axis = axis / np.linalg.norm(axis)
        R = Rotation.from_rotvec(axis * angle).as_matrix()
        if translation is None:
            translation = np.zeros(3)
        return cls(rotation=R, translation=translation)

    @classmethod
    def from_translation(cls, translation: np.ndarray) -> Pose:
        """Create a pure translation."""
        return cls(rotation=np.eye(3), translation=translation)

    def to_matrix(self) -> np.ndarray:
        """Return the 4x4 homogeneous matrix [[R, t], [0, 1]]."""
        T = np.eye(4, dtype=np.float64)
        T[:3, :3] = self.rotation
        T[:3, 3] = self.translation
        return T

    def to_rvec_tvec(self) -> tuple[np.ndarray, np.ndarray]:
        """Return (rvec, tvec) as (3, 1) float64 arrays for OpenCV."""
        rvec, _ = cv2.Rodrigues(self.rotation)
        return rvec.reshape(3, 1), self.translation.reshape(3, 1).copy()

    @property
    def quaternion(self) -> np.ndarray:
        """Return the rotation as a Hamilton quaternion (w, x, y, z)."""
        x, y, z, w = Rotation.from_matrix(self.rotation).as_quat()
        return np.array([w, x, y, z], dtype=np.float64)

    def rotation_only(self) -> Pose:
        """Return the rotational part of this pose (zero translation)."""
        return Pose(rotation=self.rotation.copy(), translation=np.zeros(3))

    def translation_only(self) -> Pose:
        """Return the translational part of this pose (identity rotation)."""
        return Pose.from_translation(self.translation.copy())

    def inverse(self) -> Pose:
        """Compute the inverse transformation.

        For T = [R, t], the inverse is [R^T, -R^T @ t].
        """
        R_inv = self.rotation.T
        return Pose(rotation=R_inv, translation=-R_inv @ self.translation)

    def compose(self, other: Pose) -> Pose:
        """Compose with another transformation: self @ other.

        world_from_camera.compose(camera_from_device) gives world_from_device.
        """
        R = self.rotation @ other.rotation
        t = self.rotation @ other.translation + self.translation
        return Pose(rotation=R, translation=t)

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Map Nx3 points from the source frame into the target frame."""
        points = np.asarray(points, dtype=np.float64)
        if points.ndim == 1:
            points = points.reshape(1, 3)
        if points.shape[1] != 3:
            raise ValueError(f"Points must be Nx3, got {points.shape}")
        return (self.rotation @ points.T).T + self.translation

    @property
    def position(self) -> np.ndarray:
        """Return the origin of the source frame in target coordinates."""
        return self.translation.copy()

    @property
    def optical_axis(self) -> np.ndarray:
        """Return the source frame's Z axis (camera viewing direction)."""
        return self.rotation @ _Z_AXIS

    def angle_between(self, other: Pose) -> float:
        """Return the angle between the optical axes of two poses (radians)."""
        return vector_angle(self.optical_axis, other.optical_axis)

    def rotation_angle(self) -> float:
        """Return the magnitude of this pose's rotation in radians [0, pi]."""
        cos_theta = np.clip((np.trace(self.rotation) - 1) / 2, -1.0, 1.0)
        return float(np.arccos(cos_theta))

    def is_valid(self, tolerance: float = 1e-6) -> bool:
        """Return True if finite with an orthonormal, right-handed rotation."""
        if not (np.isfinite(self.rotation).all() and np.isfinite(self.translation).all()):
            return False
        should_be_identity = self.rotation @ self.rotation.T
        if not np.allclose(should_be_identity, np.eye(3), atol=tolerance):
            return False
        return abs(np.linalg.det(self.rotation) - 1.0) < tolerance

    def is_close(self, other: Pose, atol: float = 1e-6) -> bool:
        """Return True if both poses match element-wise within `atol`."""
        return bool(
            np.allclose(self.rotation, other.rotation, atol=atol)
            and np.allclose(self.translation, other.translation, atol=atol)
        )

    def __repr__(self) -> str:
        """Return string representation."""
        pos = self.translation
        if not self.is_valid():
            return f"Pose(position={pos.tolist()}, rotation=<invalid>)"
        w, x, y, z = self.quaternion
        return (
            f"Pose(position=[{pos[0]:.3f}, {pos[1]:.3f}, {pos[2]:.3f}], "
            f"quaternion=[{w:.3f}, {x:.3f}, {y:.3f}, {z:.3f}])"
        )

    def __matmul__(self, other: Pose) -> Pose:
        """Allow T_a_c = T_a_b @ T_b_c."""
        return self.compose(other)
