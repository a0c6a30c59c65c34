"""Device camera pose from fixed-camera 3D points using PnP with RANSAC."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import cv2
import numpy as np

from ..camera import CameraIntrinsics
from ..errors import InsufficientCorrespondencesError
from ..frontend.correspondences import Correspondences
from ..pose import Pose

logger = logging.getLogger(__name__)

MIN_CORRESPONDENCES = 4


@dataclass
class PnPResult:
    """Result of PnP pose estimation.

    Attributes:
        success: True if the solver produced a finite pose with inliers
        pose: T_device_fixed, mapping fixed-camera points into the device
            camera frame (the raw cv2.solvePnP convention). When the solve
            fails this is the seed pose, or identity without a seed.
        inliers: Indices of the inlier correspondences (possibly empty)
    """

    success: bool
    pose: Pose
    inliers: np.ndarray  # (K,) int

    @property
    def num_inliers(self) -> int:
        return len(self.inliers)

    def inlier_mask(self, n_points: int) -> np.ndarray:
        """Return the inliers as an (n_points,) boolean mask."""
        mask = np.zeros(n_points, dtype=bool)
        mask[self.inliers] = True
        return mask


class PoseSolver:
    """Solves the device camera pose relative to the fixed camera.

    Given 3D points in the fixed camera frame and the pixels where the device
    saw them, finds T_device_fixed with cv2.solvePnPRansac. The previous
    accepted solution can be passed as a seed; RANSAC then refines from it.
    """

    def __init__(
        self,
        reprojection_threshold: float = 5.0,
        ransac_confidence: float = 0.99,
        max_iterations: int = 1000,
        refine_with_all_inliers: bool = True,
    ) -> None:
        """Initialize pose solver.

        Args:
            reprojection_threshold: RANSAC inlier threshold in pixels
            ransac_confidence: Probability at which RANSAC stops early (0-1)
            max_iterations: Maximum RANSAC iterations
            refine_with_all_inliers: If True, refine the RANSAC pose with an
                iterative PnP over all inliers
        """
        self._reprojection_threshold = reprojection_threshold
        self._ransac_confidence = ransac_confidence
        self._max_iterations = int(max_iterations)
        self._refine = refine_with_all_inliers

    def solve(
        self,
        correspondences: Correspondences,
        intrinsics: CameraIntrinsics,
        seed: Pose | None = None,
    ) -> PnPResult:
        """Estimate T_device_fixed from 3D-2D correspondences.

        Args:
            correspondences: Fixed-camera 3D points and device pixels
            intrinsics: Device camera intrinsics
            seed: Optional T_device_fixed initial guess

        Returns:
            PnPResult. Never raises for degenerate input with 4+ points;
            `success` is False and `inliers` empty instead.

        Raises:
            InsufficientCorrespondencesError: With fewer than 4 correspondences
        """
        n_points = len(correspondences)
        if n_points < MIN_CORRESPONDENCES:
            raise InsufficientCorrespondencesError(
                f"PnP needs at least {MIN_CORRESPONDENCES} correspondences, "
                f"got {n_points}"
            )

        points_3d = correspondences.points_3d.reshape(-1, 1, 3)
        points_2d = correspondences.points_2d.reshape(-1, 1, 2)
        camera_matrix = intrinsics.to_matrix()

        fallback = seed if seed is not None else Pose.identity()
        failed = PnPResult(
            success=False, pose=fallback, inliers=np.empty(0, dtype=np.int64)
        )

        use_extrinsic_guess = seed is not None
        rvec_init = tvec_init = None
        if seed is not None:
            rvec_init, tvec_init = seed.to_rvec_tvec()

        try:
            success, rvec, tvec, inliers = cv2.solvePnPRansac(
                objectPoints=points_3d,
                imagePoints=points_2d,
                cameraMatrix=camera_matrix,
                distCoeffs=None,
                rvec=rvec_init,
                tvec=tvec_init,
                useExtrinsicGuess=use_extrinsic_guess,
                iterationsCount=self._max_iterations,
                reprojectionError=self._reprojection_threshold,
                confidence=self._ransac_confidence,
                flags=cv2.SOLVEPNP_ITERATIVE,
            )
        except cv2.error as e:
            logger.debug("solvePnPRansac failed: %s", e)
            return failed

        if not success or inliers is None or len(inliers) == 0:
            logger.debug("solvePnPRansac found no consensus")
            return failed

        inlier_indices = np.sort(inliers.flatten().astype(np.int64))

        if self._refine and len(inlier_indices) >= MIN_CORRESPONDENCES:
            try:
                ok, rvec_refined, tvec_refined = cv2.solvePnP(
                    objectPoints=points_3d[inlier_indices],
                    imagePoints=points_2d[inlier_indices],
                    cameraMatrix=camera_matrix,
                    distCoeffs=None,
                    rvec=rvec.copy(),
                    tvec=tvec.copy(),
                    useExtrinsicGuess=True,
                    flags=cv2.SOLVEPNP_ITERATIVE,
                )
                if ok and np.isfinite(rvec_refined).all() and np.isfinite(tvec_refined).all():
                    rvec, tvec = rvec_refined, tvec_refined
            except cv2.error as e:
                # Keep the RANSAC result
                logger.debug("Inlier refinement failed: %s", e)

        if not np.isfinite(rvec).all() or not np.isfinite(tvec).all():
            return failed

        logger.debug(
            "PnP used %d/%d inliers: rvec=%s tvec=%s",
            len(inlier_indices),
            n_points,
            rvec.flatten(),
            tvec.flatten(),
        )
        return PnPResult(
            success=True,
            pose=Pose.from_rvec_tvec(rvec, tvec),
            inliers=inlier_indices,
        )

    @property
    def reprojection_threshold(self) -> float:
        """Return RANSAC inlier threshold."""
        return self._reprojection_threshold

    @property
    def ransac_confidence(self) -> float:
        return self._ransac_confidence

    @property
    def max_iterations(self) -> int:
        return self._max_iterations
