"""Tests for the RegistrationEstimator pipeline."""

import logging

import numpy as np
import pytest

from arreg.config import RegistrationConfig
from arreg.estimation.frame_composer import convert_device_pose
from arreg.estimation.registration_estimator import RegistrationEstimator
from arreg.estimation.status import RegistrationStatus
from arreg.frontend.correspondences import Correspondences
from arreg.frontend.feature_detector import Features
from arreg.frontend.frame_input import FrameInput
from arreg.pose import Pose

from conftest import SyntheticScene, make_texture, project_points, random_points_in_front


@pytest.fixture
def estimator(scene: SyntheticScene) -> RegistrationEstimator:
    return RegistrationEstimator(scene.fixed_camera_to_world)


def _device_frame(
    estimator: RegistrationEstimator, scene: SyntheticScene, device_pose: Pose | None = None
) -> FrameInput:
    return FrameInput.from_image(
        scene.device_image,
        estimator.detector,
        scene.intrinsics,
        scene.device_pose if device_pose is None else device_pose,
        scene.timestamp,
    )


def _fail_if_called(*args, **kwargs):
    raise AssertionError("PnP must not run")


class TestAcceptance:
    """Test suite for accepted updates on the synthetic scene."""

    def test_accepts_synthetic_scene(self, estimator: RegistrationEstimator, scene: SyntheticScene):
        """Test that the shifted-plane scene is registered with status 0."""
        result = estimator.update(_device_frame(estimator, scene), scene.fixed_frame())

        assert result.status == RegistrationStatus.ACCEPTED
        assert result.code == 0
        assert result.num_inliers >= 4
        assert result.num_correspondences <= result.num_matches
        assert result.reprojection_error <= 5.0
        assert result.orientation_difference_deg == pytest.approx(0.0, abs=1.0)
        assert result.timing.total_ms > 0

        expected_device_in_world = scene.fixed_camera_to_world @ scene.solver_pose.inverse()
        assert result.device_in_world.is_close(expected_device_in_world, atol=5e-3)

    def test_transform_maps_device_pose_to_world(
        self, estimator: RegistrationEstimator, scene: SyntheticScene
    ):
        """Test that transform @ converted device pose = device pose in world."""
        result = estimator.update(_device_frame(estimator, scene), scene.fixed_frame())

        assert result.is_accepted
        mapped = result.transform @ convert_device_pose(scene.device_pose)
        assert mapped.is_close(result.device_in_world, atol=1e-9)

    def test_state_updated_on_acceptance(
        self, estimator: RegistrationEstimator, scene: SyntheticScene
    ):
        assert not estimator.has_estimate

        result = estimator.update(_device_frame(estimator, scene), scene.fixed_frame())

        assert estimator.has_estimate
        assert estimator.last_estimate is result.transform
        assert estimator.last_inlier_count == result.num_inliers
        assert estimator.last_reprojection_error == result.reprojection_error
        assert estimator.state.last_solver_pose.is_close(scene.solver_pose, atol=5e-3)
        assert estimator.state.last_timestamp == scene.timestamp

    def test_seeded_second_update(self, estimator: RegistrationEstimator, scene: SyntheticScene):
        """Test that a second update, seeded by the first, is accepted too."""
        first = estimator.update(_device_frame(estimator, scene), scene.fixed_frame())
        second = estimator.update(_device_frame(estimator, scene), scene.fixed_frame())

        assert first.is_accepted and second.is_accepted
        assert second.transform.is_close(first.transform, atol=5e-3)

    def test_precomputed_features_path(
        self, estimator: RegistrationEstimator, scene: SyntheticScene
    ):
        """Test that features shipped by the device give the same outcome."""
        frame = _device_frame(estimator, scene)

        result = estimator.process_features(
            list(frame.features.keypoints),
            frame.features.descriptors,
            frame.image_size,
            scene.intrinsics,
            scene.device_pose,
            scene.timestamp,
            scene.fixed_frame(),
        )

        assert result.is_accepted

    def test_flat_descriptor_buffer(
        self, estimator: RegistrationEstimator, scene: SyntheticScene
    ):
        """Test that descriptors sent as one flat byte buffer are accepted."""
        frame = _device_frame(estimator, scene)

        result = estimator.process_features(
            list(frame.features.keypoints),
            frame.features.descriptors.tobytes(),
            frame.image_size,
            scene.intrinsics,
            scene.device_pose,
            scene.timestamp,
            scene.fixed_frame(),
        )

        assert result.is_accepted

    def test_reset(self, estimator: RegistrationEstimator, scene: SyntheticScene):
        estimator.update(_device_frame(estimator, scene), scene.fixed_frame())

        estimator.reset()

        assert not estimator.has_estimate
        assert estimator.state.last_solver_pose is None


class TestRejections:
    """Test suite for rejected updates."""

    def test_three_matches_skip_solver(
        self, estimator: RegistrationEstimator, scene: SyntheticScene, monkeypatch
    ):
        """Test that 3 correspondences give status 1 without solving or state change."""
        estimator.update(_device_frame(estimator, scene), scene.fixed_frame())
        state_before = estimator.state

        points_3d = random_points_in_front(3)
        three = Correspondences(
            points_3d=points_3d,
            points_2d=project_points(scene.solver_pose, scene.intrinsics, points_3d),
        )
        monkeypatch.setattr(estimator, "_build_correspondences", lambda *args: three)
        monkeypatch.setattr(estimator._solver, "solve", _fail_if_called)

        result = estimator.update(_device_frame(estimator, scene), scene.fixed_frame())

        assert result.status == RegistrationStatus.INSUFFICIENT_MATCHES
        assert result.num_correspondences == 3
        assert result.transform is None
        assert estimator.state is state_before

    def test_minimum_matches_option(self, scene: SyntheticScene, monkeypatch):
        """Test that the configured minimum applies before solving."""
        estimator = RegistrationEstimator(
            scene.fixed_camera_to_world, RegistrationConfig(minimum_matches_number=10)
        )
        points_3d = random_points_in_front(8)
        eight = Correspondences(
            points_3d=points_3d,
            points_2d=project_points(scene.solver_pose, scene.intrinsics, points_3d),
        )
        monkeypatch.setattr(estimator, "_build_correspondences", lambda *args: eight)
        monkeypatch.setattr(estimator._solver, "solve", _fail_if_called)

        result = estimator.update(_device_frame(estimator, scene), scene.fixed_frame())

        assert result.status == RegistrationStatus.INSUFFICIENT_MATCHES

    def test_orientation_divergence(
        self, estimator: RegistrationEstimator, scene: SyntheticScene, monkeypatch
    ):
        """Test that 60 degrees between optical axes is rejected at 45 degrees."""
        tilted = Pose.from_axis_angle(
            np.array([0.0, 1.0, 0.0]), np.radians(60), np.array([0.0, 0.0, 1.0])
        )
        points_3d = random_points_in_front(50)
        corr = Correspondences(
            points_3d=points_3d,
            points_2d=project_points(tilted, scene.intrinsics, points_3d),
        )
        monkeypatch.setattr(estimator, "_build_correspondences", lambda *args: corr)

        result = estimator.update(_device_frame(estimator, scene), scene.fixed_frame())

        assert result.status == RegistrationStatus.ORIENTATION_DIVERGENCE
        assert result.reprojection_error == pytest.approx(0.0, abs=1e-3)
        assert result.orientation_difference_deg == pytest.approx(60.0, abs=0.1)
        assert result.transform is None
        assert not estimator.has_estimate

    def test_reprojection_too_high(
        self, scene: SyntheticScene, monkeypatch
    ):
        """Test that a noisy solve is rejected before composition, keeping the state."""
        estimator = RegistrationEstimator(
            scene.fixed_camera_to_world,
            RegistrationConfig(reprojection_error_discard_threshold=0.5),
        )
        points_3d = random_points_in_front(60)
        exact_2d = project_points(scene.solver_pose, scene.intrinsics, points_3d)
        exact = Correspondences(points_3d=points_3d, points_2d=exact_2d)
        monkeypatch.setattr(estimator, "_build_correspondences", lambda *args: exact)
        assert estimator.update(_device_frame(estimator, scene), scene.fixed_frame()).is_accepted
        state_before = estimator.state

        rng = np.random.default_rng(5)
        noisy = Correspondences(
            points_3d=points_3d,
            points_2d=exact_2d + rng.normal(0.0, 2.0, exact_2d.shape),
        )
        monkeypatch.setattr(estimator, "_build_correspondences", lambda *args: noisy)

        result = estimator.update(_device_frame(estimator, scene), scene.fixed_frame())

        assert result.status == RegistrationStatus.REPROJECTION_TOO_HIGH
        assert result.code == 2
        assert result.num_inliers >= 4
        assert result.reprojection_error > 0.5
        assert result.transform is None
        assert result.device_in_world is None
        assert result.orientation_difference_deg is None
        assert estimator.state is state_before

    def test_height_window(self, scene: SyntheticScene):
        """Test that a device above maxPoseHeight is rejected."""
        estimator = RegistrationEstimator(
            scene.fixed_camera_to_world, RegistrationConfig(max_pose_height=1.0)
        )

        result = estimator.update(_device_frame(estimator, scene), scene.fixed_frame())

        assert result.status == RegistrationStatus.POSE_HEIGHT_OUT_OF_RANGE
        assert result.device_in_world is not None
        assert not estimator.has_estimate

    def test_default_height_window(self, scene: SyntheticScene):
        """Test that a device 3 m above the floor is rejected with default options."""
        raised = Pose(
            rotation=scene.fixed_camera_to_world.rotation,
            translation=scene.fixed_camera_to_world.translation + np.array([0.0, 0.0, 1.5]),
        )
        estimator = RegistrationEstimator(raised)

        result = estimator.update(_device_frame(estimator, scene), scene.fixed_frame())

        assert result.status == RegistrationStatus.POSE_HEIGHT_OUT_OF_RANGE
        assert result.device_in_world.translation[2] == pytest.approx(3.0, abs=0.01)
        assert not estimator.has_estimate

    def test_invalid_device_pose(self, estimator: RegistrationEstimator, scene: SyntheticScene):
        """Test that a non-finite device pose is an internal error, not a crash."""
        broken = Pose(rotation=np.full((3, 3), np.nan), translation=np.zeros(3))

        result = estimator.update(_device_frame(estimator, scene, broken), scene.fixed_frame())

        assert result.status == RegistrationStatus.GEOMETRY_INVALID
        assert result.status.is_error
        assert not estimator.has_estimate


class TestInputFailures:
    """Test suite for input and feature failures mapped to status codes."""

    def test_flat_fixed_image(self, estimator: RegistrationEstimator, scene: SyntheticScene):
        scene.fixed_image = np.full_like(scene.fixed_image, 90)

        result = estimator.update(_device_frame(estimator, scene), scene.fixed_frame())

        assert result.status == RegistrationStatus.FIXED_FEATURES_FAILED

    def test_device_without_features(self, estimator: RegistrationEstimator, scene: SyntheticScene):
        result = estimator.process_features(
            [],
            np.empty((0, 32), dtype=np.uint8),
            (640, 480),
            scene.intrinsics,
            scene.device_pose,
            scene.timestamp,
            scene.fixed_frame(),
        )

        assert result.status == RegistrationStatus.DEVICE_FEATURES_FAILED

    def test_flat_device_image(self, estimator: RegistrationEstimator, scene: SyntheticScene):
        result = estimator.process_images(
            np.zeros((480, 640), dtype=np.uint8),
            scene.intrinsics,
            scene.device_pose,
            scene.timestamp,
            scene.fixed_frame(),
        )

        assert result.status == RegistrationStatus.DEVICE_FEATURES_FAILED

    def test_undecodable_device_payload(
        self, estimator: RegistrationEstimator, scene: SyntheticScene
    ):
        result = estimator.process_images(
            b"\x00\x01garbage",
            scene.intrinsics,
            scene.device_pose,
            scene.timestamp,
            scene.fixed_frame(),
        )

        assert result.status == RegistrationStatus.INPUT_INVALID

    def test_unrelated_images_never_accepted(self, estimator: RegistrationEstimator, scene: SyntheticScene):
        """Test that a device looking at a different texture is not accepted."""
        scene.device_image = make_texture(640, 480, seed=99)

        result = estimator.update(_device_frame(estimator, scene), scene.fixed_frame())

        assert not result.is_accepted
        assert not estimator.has_estimate

    def test_wrong_descriptor_width(self, estimator: RegistrationEstimator, scene: SyntheticScene):
        """Test that 16-byte descriptors give status -1 instead of raising."""
        frame = _device_frame(estimator, scene)

        result = estimator.process_features(
            list(frame.features.keypoints),
            frame.features.descriptors[:, :16].copy(),
            frame.image_size,
            scene.intrinsics,
            scene.device_pose,
            scene.timestamp,
            scene.fixed_frame(),
        )

        assert result.status == RegistrationStatus.INPUT_INVALID
        assert result.transform is None

    def test_unmatchable_descriptors_in_update(
        self, estimator: RegistrationEstimator, scene: SyntheticScene
    ):
        """Test that descriptors the matcher cannot compare map to status -1."""
        estimator.update(_device_frame(estimator, scene), scene.fixed_frame())
        state_before = estimator.state
        frame = _device_frame(estimator, scene)
        frame.features = Features(
            keypoints=frame.features.keypoints,
            descriptors=frame.features.descriptors[:, :16].copy(),
        )

        result = estimator.update(frame, scene.fixed_frame())

        assert result.status == RegistrationStatus.INPUT_INVALID
        assert result.timing.total_ms > 0
        assert estimator.state is state_before

    def test_early_failures_are_timed_and_logged(
        self, estimator: RegistrationEstimator, scene: SyntheticScene, caplog
    ):
        """Test that failures before update() still carry timing and a log line."""
        caplog.set_level(logging.DEBUG, logger="arreg.estimation.registration_estimator")

        result = estimator.process_images(
            np.zeros((480, 640), dtype=np.uint8),
            scene.intrinsics,
            scene.device_pose,
            scene.timestamp,
            scene.fixed_frame(),
        )

        assert result.status == RegistrationStatus.DEVICE_FEATURES_FAILED
        assert result.timing.total_ms > 0
        assert "Timing:" in caplog.text
