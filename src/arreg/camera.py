"""Pinhole camera intrinsics."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class CameraIntrinsics:
    """Camera intrinsic parameters (pinhole model, no distortion)."""

    fx: float  # Focal length x (pixels)
    fy: float  # Focal length y (pixels)
    cx: float  # Principal point x (pixels)
    cy: float  # Principal point y (pixels)

    def __post_init__(self) -> None:
        values = (self.fx, self.fy, self.cx, self.cy)
        if not np.isfinite(values).all():
            raise ValueError(f"Intrinsics must be finite, got {values}")
        if self.fx <= 0 or self.fy <= 0:
            raise ValueError(
                f"Focal lengths must be positive, got fx={self.fx}, fy={self.fy}"
            )

    @classmethod
    def from_matrix(cls, K: np.ndarray) -> CameraIntrinsics:
        """Build intrinsics from a 3x3 K matrix (or the left 3x3 of a 3x4 P)."""
        K = np.asarray(K, dtype=np.float64)
        if K.shape not in ((3, 3), (3, 4)):
            raise ValueError(f"Camera matrix must be 3x3 or 3x4, got {K.shape}")
        return cls(
            fx=float(K[0, 0]),
            fy=float(K[1, 1]),
            cx=float(K[0, 2]),
            cy=float(K[1, 2]),
        )

    def to_matrix(self) -> np.ndarray:
        """Return 3x3 camera intrinsic matrix K."""
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    def unproject(self, pixels: np.ndarray, depths: np.ndarray) -> np.ndarray:
        """Back-project pixels with known depth into camera-frame 3D points.

        Args:
            pixels: Nx2 array of (x, y) pixel coordinates
            depths: (N,) array of depths along the optical axis

        Returns:
            Nx3 array of points in the camera optical frame
        """
        pixels = np.asarray(pixels, dtype=np.float64).reshape(-1, 2)
        depths = np.asarray(depths, dtype=np.float64).flatten()
        if len(pixels) != len(depths):
            raise ValueError(
                f"Got {len(pixels)} pixels but {len(depths)} depth values"
            )

        x = (pixels[:, 0] - self.cx) * depths / self.fx
        y = (pixels[:, 1] - self.cy) * depths / self.fy
        return np.column_stack([x, y, depths])

    def project(self, points: np.ndarray) -> np.ndarray:
        """Project Nx3 camera-frame points to Nx2 pixel coordinates."""
        points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        z = points[:, 2]
        u = self.fx * points[:, 0] / z + self.cx
        v = self.fy * points[:, 1] / z + self.cy
        return np.column_stack([u, v])
