"""Per-frame registration of a device's tracking frame against the world."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Sequence

import cv2
import numpy as np

from ..camera import CameraIntrinsics
from ..config import RegistrationConfig
from ..errors import FeatureError, GeometryInvalidError, InputDecodeError
from ..frontend.correspondences import CorrespondenceBuilder, Correspondences
from ..frontend.depth_resolver import DepthResolver
from ..frontend.feature_detector import FeatureDetector, Features
from ..frontend.feature_matcher import FeatureMatcher, Matches
from ..frontend.frame_input import FixedCameraFrame, FrameInput, KeypointData
from ..pose import Pose
from .frame_composer import Composition, FrameComposer
from .pose_solver import PnPResult, PoseSolver
from .quality_gate import QualityGate, reprojection_error
from .status import RegistrationStatus

logger = logging.getLogger(__name__)


@dataclass
class RegistrationTiming:
    """Timing breakdown for a single update."""

    features_ms: float = 0.0
    matching_ms: float = 0.0
    correspondences_ms: float = 0.0
    pnp_ms: float = 0.0
    gating_ms: float = 0.0
    total_ms: float = 0.0


@dataclass
class RegistrationResult:
    """Output of one registration update.

    Attributes:
        status: Outcome of the update
        timestamp: Device frame capture time (seconds)
        transform: Device tracking origin -> world transform, set only when
            the update was accepted
        device_in_world: Device camera pose in world, set once the solve
            got as far as composition
        num_matches: Descriptor matches below the matching threshold
        num_correspondences: Matches that kept a valid depth
        num_inliers: PnP inliers
        reprojection_error: Pixels, None if the solve did not get that far
        orientation_difference_deg: Angle between device and fixed camera
            optical axes, None if not computed
        smoothed_transform: Transform with a filtered translation, filled in
            by the device estimator when smoothing is enabled
    """

    status: RegistrationStatus
    timestamp: float
    transform: Pose | None = None
    device_in_world: Pose | None = None
    num_matches: int = 0
    num_correspondences: int = 0
    num_inliers: int = 0
    reprojection_error: float | None = None
    orientation_difference_deg: float | None = None
    smoothed_transform: Pose | None = None
    timing: RegistrationTiming = field(default_factory=RegistrationTiming)

    @property
    def is_accepted(self) -> bool:
        """Return True if the estimate was accepted."""
        return self.status == RegistrationStatus.ACCEPTED

    @property
    def code(self) -> int:
        return int(self.status)


@dataclass
class PersistentEstimatorState:
    """What an estimator keeps between updates.

    Only replaced when an update is accepted.
    """

    last_estimate: Pose | None = None  # world_from_tracking_origin
    last_solver_pose: Pose | None = None  # T_device_fixed, seeds the next PnP
    last_inlier_count: int = 0
    last_match_count: int = 0
    last_reprojection_error: float | None = None
    last_timestamp: float | None = None

    @property
    def has_estimate(self) -> bool:
        return self.last_estimate is not None


def _elapsed_ms(t0: float) -> float:
    return (time.perf_counter() - t0) * 1000


class RegistrationEstimator:
    """Estimates where a device's tracking origin sits in the world.

    Pipeline for each update:
    1. ORB features on the fixed camera image (device features come in the
       FrameInput)
    2. Hamming matching, device = query, fixed camera = train
    3. Depth lookup with hole repair and pinhole unprojection
    4. PnP + RANSAC seeded with the last accepted solve
    5. Quality gate and composition with the fixed camera -> world transform

    Data-dependent failures never raise; they are reported by the status of
    the returned RegistrationResult and leave the persistent state unchanged.
    """

    def __init__(
        self,
        fixed_camera_to_world: Pose,
        config: RegistrationConfig | None = None,
    ) -> None:
        """Initialize estimator.

        Args:
            fixed_camera_to_world: Pose of the fixed camera optical frame in
                world
            config: Pipeline options (defaults if None)

        Raises:
            GeometryInvalidError: If fixed_camera_to_world is not rigid
        """
        self._config = config or RegistrationConfig()
        cfg = self._config

        self._detector = FeatureDetector(
            max_points=cfg.orb_max_points,
            scale_factor=cfg.orb_scale_factor,
            n_levels=cfg.orb_levels_number,
        )
        self._matcher = FeatureMatcher(matching_threshold=cfg.matching_threshold)
        self._depth_resolver = DepthResolver(
            search_radius=cfg.depth_search_radius,
            ring_width=cfg.depth_ring_width,
        )
        self._correspondence_builder = CorrespondenceBuilder(depth_scale=cfg.depth_scale)
        self._solver = PoseSolver(
            reprojection_threshold=cfg.pnp_reprojection_error_px,
            ransac_confidence=cfg.pnp_confidence,
            max_iterations=cfg.pnp_iterations,
            refine_with_all_inliers=cfg.pnp_refine_with_inliers,
        )
        self._gate = QualityGate(
            minimum_matches=cfg.minimum_matches_number,
            reprojection_error_threshold=cfg.reprojection_error_discard_threshold,
            orientation_threshold_deg=cfg.phone_orientation_difference_threshold_deg,
            min_height=cfg.min_pose_height,
            max_height=cfg.max_pose_height,
        )
        self._composer = FrameComposer(fixed_camera_to_world)

        self._state = PersistentEstimatorState()

    def update(self, device: FrameInput, fixed: FixedCameraFrame) -> RegistrationResult:
        """Register one device frame against one fixed camera frame."""
        timing = RegistrationTiming()
        t_start = time.perf_counter()

        def finish(result: RegistrationResult) -> RegistrationResult:
            timing.total_ms = _elapsed_ms(t_start)
            result.timing = timing
            self._log_outcome(result)
            return result

        # Stage 1: Fixed camera features
        t0 = time.perf_counter()
        try:
            fixed_features = self._detector.detect(fixed.image)
        except InputDecodeError as e:
            logger.error("Fixed camera image unusable: %s", e)
            return finish(RegistrationResult(RegistrationStatus.INPUT_INVALID, device.timestamp))
        except FeatureError as e:
            logger.error("Fixed camera feature extraction failed: %s", e)
            return finish(
                RegistrationResult(RegistrationStatus.FIXED_FEATURES_FAILED, device.timestamp)
            )
        timing.features_ms = _elapsed_ms(t0)

        if len(device.features) == 0:
            logger.error("Device frame carries no features")
            return finish(
                RegistrationResult(RegistrationStatus.DEVICE_FEATURES_FAILED, device.timestamp)
            )

        # Stage 2: Matching
        t0 = time.perf_counter()
        try:
            matches = self._matcher.match_and_filter(device.features, fixed_features)
        except InputDecodeError as e:
            logger.error("Device descriptors unusable: %s", e)
            return finish(RegistrationResult(RegistrationStatus.INPUT_INVALID, device.timestamp))
        timing.matching_ms = _elapsed_ms(t0)

        # Stage 3: Depth repair + unprojection
        t0 = time.perf_counter()
        correspondences = self._build_correspondences(
            matches, device.features, fixed_features, fixed
        )
        timing.correspondences_ms = _elapsed_ms(t0)

        result = RegistrationResult(
            status=RegistrationStatus.INSUFFICIENT_MATCHES,
            timestamp=device.timestamp,
            num_matches=len(matches),
            num_correspondences=len(correspondences),
        )

        rejection = self._gate.check_match_count(len(correspondences))
        if rejection is not None:
            result.status = rejection
            return finish(result)

        # Stage 4: PnP
        t0 = time.perf_counter()
        pnp_result = self._solver.solve(
            correspondences, device.intrinsics, seed=self._state.last_solver_pose
        )
        timing.pnp_ms = _elapsed_ms(t0)

        # Stage 5: Gating + composition
        t0 = time.perf_counter()
        status, composition = self._evaluate(pnp_result, correspondences, device, result)
        timing.gating_ms = _elapsed_ms(t0)

        result.status = status
        if composition is not None:
            result.device_in_world = composition.world_from_device

        if status == RegistrationStatus.ACCEPTED:
            result.transform = composition.world_from_tracking_origin
            self._state = PersistentEstimatorState(
                last_estimate=composition.world_from_tracking_origin,
                last_solver_pose=pnp_result.pose,
                last_inlier_count=pnp_result.num_inliers,
                last_match_count=len(matches),
                last_reprojection_error=result.reprojection_error,
                last_timestamp=device.timestamp,
            )

        return finish(result)

    def process_images(
        self,
        device_image: np.ndarray | bytes,
        device_intrinsics: CameraIntrinsics,
        device_pose: Pose,
        timestamp: float,
        fixed: FixedCameraFrame,
    ) -> RegistrationResult:
        """Run the pipeline from a raw or compressed device image.

        A bytes payload is decoded as a compressed device image (monochrome
        frame in the red channel, upside down).
        """
        t_start = time.perf_counter()
        try:
            if isinstance(device_image, (bytes, bytearray)):
                device = FrameInput.from_encoded_image(
                    bytes(device_image),
                    self._detector,
                    device_intrinsics,
                    device_pose,
                    timestamp,
                )
            else:
                device = FrameInput.from_image(
                    device_image, self._detector, device_intrinsics, device_pose, timestamp
                )
        except InputDecodeError as e:
            logger.error("Device image unusable: %s", e)
            return self._early_result(RegistrationStatus.INPUT_INVALID, timestamp, t_start)
        except FeatureError as e:
            logger.error("Device feature extraction failed: %s", e)
            return self._early_result(
                RegistrationStatus.DEVICE_FEATURES_FAILED, timestamp, t_start
            )

        return self.update(device, fixed)

    def process_features(
        self,
        keypoints: Sequence[KeypointData | cv2.KeyPoint],
        descriptors: np.ndarray | bytes,
        image_size: tuple[int, int],
        device_intrinsics: CameraIntrinsics,
        device_pose: Pose,
        timestamp: float,
        fixed: FixedCameraFrame,
    ) -> RegistrationResult:
        """Run the pipeline from features extracted on the device.

        Descriptors may be an (N, 32) uint8 array or the same bytes flattened.
        """
        t_start = time.perf_counter()
        try:
            device = FrameInput.from_features(
                keypoints,
                descriptors,
                image_size,
                device_intrinsics,
                device_pose,
                timestamp,
            )
        except InputDecodeError as e:
            logger.error("Device features unusable: %s", e)
            return self._early_result(RegistrationStatus.INPUT_INVALID, timestamp, t_start)

        return self.update(device, fixed)

    def reset(self) -> None:
        """Forget the last accepted estimate."""
        self._state = PersistentEstimatorState()

    def _build_correspondences(
        self,
        matches: Matches,
        device_features: Features,
        fixed_features: Features,
        fixed: FixedCameraFrame,
    ) -> Correspondences:
        resolved = self._depth_resolver.resolve(matches, fixed_features.points, fixed.depth)
        logger.debug(
            "%d/%d matches kept a depth (%d repaired)",
            len(resolved),
            len(matches),
            resolved.num_repaired,
        )
        return self._correspondence_builder.build(
            resolved,
            device_features.points,
            fixed_features.points,
            fixed.intrinsics,
        )

    def _evaluate(
        self,
        pnp_result: PnPResult,
        correspondences: Correspondences,
        device: FrameInput,
        result: RegistrationResult,
    ) -> tuple[RegistrationStatus, Composition | None]:
        """Apply the acceptance checks in order, filling diagnostics on `result`."""
        result.num_inliers = pnp_result.num_inliers if pnp_result.success else 0

        rejection = self._gate.check_match_count(result.num_inliers)
        if rejection is not None:
            return rejection, None

        result.reprojection_error = reprojection_error(
            correspondences, pnp_result, device.intrinsics
        )
        rejection = self._gate.check_reprojection(result.reprojection_error)
        if rejection is not None:
            return rejection, None

        try:
            composition = self._composer.compose(pnp_result.pose, device.device_pose)
        except GeometryInvalidError as e:
            logger.error("Discarding solve: %s", e)
            return RegistrationStatus.GEOMETRY_INVALID, None

        angle_deg, rejection = self._gate.check_orientation(composition.device_in_fixed)
        result.orientation_difference_deg = angle_deg
        if rejection is not None:
            return rejection, composition

        rejection = self._gate.check_height(composition.world_from_device)
        if rejection is not None:
            return rejection, composition

        return RegistrationStatus.ACCEPTED, composition

    def _early_result(
        self, status: RegistrationStatus, timestamp: float, t_start: float
    ) -> RegistrationResult:
        """Result for a frame rejected before update() could run."""
        result = RegistrationResult(status, timestamp)
        result.timing.total_ms = _elapsed_ms(t_start)
        self._log_outcome(result)
        return result

    def _log_outcome(self, result: RegistrationResult) -> None:
        if result.is_accepted:
            logger.info(
                "Accepted estimate: %d inliers, reprojection error %.3f px, "
                "orientation difference %.1f deg",
                result.num_inliers,
                result.reprojection_error,
                result.orientation_difference_deg,
            )
        elif result.status.is_soft_reject:
            logger.warning(
                "Rejected frame (%s): %d matches, %d correspondences, %d inliers",
                result.status.name,
                result.num_matches,
                result.num_correspondences,
                result.num_inliers,
            )
        logger.debug(
            "Timing: features %.1f ms, matching %.1f ms, correspondences %.1f ms, "
            "pnp %.1f ms, gating %.1f ms, total %.1f ms",
            result.timing.features_ms,
            result.timing.matching_ms,
            result.timing.correspondences_ms,
            result.timing.pnp_ms,
            result.timing.gating_ms,
            result.timing.total_ms,
        )

    @property
    def config(self) -> RegistrationConfig:
        return self._config

    @property
    def detector(self) -> FeatureDetector:
        """Return the ORB detector shared by both image paths."""
        return self._detector

    @property
    def state(self) -> PersistentEstimatorState:
        return self._state

    @property
    def has_estimate(self) -> bool:
        return self._state.has_estimate

    @property
    def last_estimate(self) -> Pose | None:
        return self._state.last_estimate

    @property
    def last_inlier_count(self) -> int:
        return self._state.last_inlier_count

    @property
    def last_reprojection_error(self) -> float | None:
        return self._state.last_reprojection_error

    @property
    def fixed_camera_to_world(self) -> Pose:
        return self._composer.fixed_camera_to_world
