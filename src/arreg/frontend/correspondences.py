"""3D-2D correspondence construction from depth-resolved matches."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from ..camera import CameraIntrinsics
from .depth_resolver import ResolvedMatches


@dataclass
class Correspondences:
    """Parallel arrays of fixed-camera 3D points and device pixels.

    Attributes:
        points_3d: Nx3 points in the fixed camera optical frame
        points_2d: Nx2 pixel coordinates in the device image
    """

    points_3d: np.ndarray  # (N, 3) float64
    points_2d: np.ndarray  # (N, 2) float64

    def __post_init__(self) -> None:
        self.points_3d = np.asarray(self.points_3d, dtype=np.float64).reshape(-1, 3)
        self.points_2d = np.asarray(self.points_2d, dtype=np.float64).reshape(-1, 2)
        if len(self.points_3d) != len(self.points_2d):
            raise ValueError(
                f"Got {len(self.points_3d)} 3D points but {len(self.points_2d)} 2D points"
            )

    def __len__(self) -> int:
        return len(self.points_3d)

    def subset(self, indices: np.ndarray) -> Correspondences:
        return Correspondences(
            points_3d=self.points_3d[indices],
            points_2d=self.points_2d[indices],
        )


class CorrespondenceBuilder:
    """Unprojects fixed-camera match pixels and pairs them with device pixels."""

    def __init__(self, depth_scale: float = 1.0) -> None:
        """Initialize builder.

        Args:
            depth_scale: Factor applied to raw depth samples before
                unprojection (e.g. 0.001 for millimetre depth maps)
        """
        self._depth_scale = depth_scale

    def build(
        self,
        resolved: ResolvedMatches,
        query_points: np.ndarray,
        train_points: np.ndarray,
        fixed_intrinsics: CameraIntrinsics,
    ) -> Correspondences:
        """Build correspondences for every depth-resolved match.

        Uses the pinhole inverse projection:
            X = (px - cx) * z / fx,  Y = (py - cy) * z / fy,  Z = z

        Args:
            resolved: Matches with their depth values
            query_points: Nx2 device keypoint coordinates
            train_points: Mx2 fixed-camera keypoint coordinates
            fixed_intrinsics: Fixed camera intrinsics

        Returns:
            Correspondences of the same length as `resolved`
        """
        if len(resolved) == 0:
            return Correspondences(
                points_3d=np.empty((0, 3), dtype=np.float64),
                points_2d=np.empty((0, 2), dtype=np.float64),
            )

        fixed_pixels = np.asarray(train_points, dtype=np.float64)[
            resolved.matches.train_indices
        ]
        device_pixels = np.asarray(query_points, dtype=np.float64)[
            resolved.matches.query_indices
        ]
        points_3d = fixed_intrinsics.unproject(
            fixed_pixels, resolved.depths * self._depth_scale
        )
        return Correspondences(points_3d=points_3d, points_2d=device_pixels)

    @property
    def depth_scale(self) -> float:
        return self._depth_scale
