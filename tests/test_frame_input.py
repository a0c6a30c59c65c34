"""Tests for frame inputs, input adapters and correspondence construction."""

import cv2
import numpy as np
import pytest

from arreg.camera import CameraIntrinsics
from arreg.errors import InputDecodeError, NoKeypointsError
from arreg.frontend.correspondences import CorrespondenceBuilder, Correspondences
from arreg.frontend.depth_resolver import ResolvedMatches
from arreg.frontend.feature_detector import FeatureDetector
from arreg.frontend.feature_matcher import Matches
from arreg.frontend.frame_input import (
    FixedCameraFrame,
    FrameInput,
    KeypointData,
    decode_device_image,
    descriptors_from_buffer,
)
from arreg.pose import Pose

from conftest import SyntheticScene, make_texture


@pytest.fixture
def detector() -> FeatureDetector:
    return FeatureDetector()


def _encode_device_payload(mono: np.ndarray) -> bytes:
    """Pack a mono image the way devices send it: flipped, in the red channel."""
    flipped = cv2.flip(mono, 0)
    bgr = np.zeros((*mono.shape, 3), dtype=np.uint8)
    bgr[:, :, 2] = flipped
    ok, buf = cv2.imencode(".png", bgr)
    assert ok
    return buf.tobytes()


class TestDeviceImageDecoding:
    """Test suite for compressed device image payloads."""

    def test_decode_roundtrip(self):
        """Test that the red channel is extracted and flipped back."""
        mono = make_texture(64, 48, seed=2)

        decoded = decode_device_image(_encode_device_payload(mono))

        np.testing.assert_array_equal(decoded, mono)

    def test_empty_payload(self):
        with pytest.raises(InputDecodeError, match="empty"):
            decode_device_image(b"")

    def test_garbage_payload(self):
        with pytest.raises(InputDecodeError, match="Could not decode"):
            decode_device_image(b"not an image at all")

    def test_single_channel_payload_rejected(self):
        ok, buf = cv2.imencode(".png", np.zeros((8, 8), dtype=np.uint8))
        assert ok
        with pytest.raises(InputDecodeError, match="3-channel"):
            decode_device_image(buf.tobytes())


class TestDescriptorBuffer:
    """Test suite for flat descriptor payloads."""

    def test_reshape(self):
        flat = bytes(range(64))
        descriptors = descriptors_from_buffer(flat, 2, 32)

        assert descriptors.shape == (2, 32)
        assert descriptors[1, 0] == 32

    def test_size_mismatch(self):
        with pytest.raises(InputDecodeError, match="does not match"):
            descriptors_from_buffer(bytes(10), 1, 32)


class TestFrameInput:
    """Test suite for the two FrameInput adapters."""

    def test_image_and_feature_paths_agree(
        self, detector: FeatureDetector, scene: SyntheticScene, intrinsics: CameraIntrinsics
    ):
        """Test that shipping features gives the same frame as shipping the image."""
        from_image = FrameInput.from_image(
            scene.device_image, detector, intrinsics, scene.device_pose, 1.0
        )
        keypoints = [KeypointData.from_cv(kp) for kp in from_image.features.keypoints]

        from_features = FrameInput.from_features(
            keypoints,
            from_image.features.descriptors,
            from_image.image_size,
            intrinsics,
            scene.device_pose,
            1.0,
        )

        assert from_image.image_size == (640, 480)
        np.testing.assert_allclose(from_features.features.points, from_image.features.points)
        np.testing.assert_array_equal(
            from_features.features.descriptors, from_image.features.descriptors
        )

    def test_encoded_image_path(
        self, detector: FeatureDetector, scene: SyntheticScene, intrinsics: CameraIntrinsics
    ):
        frame = FrameInput.from_encoded_image(
            _encode_device_payload(scene.device_image),
            detector,
            intrinsics,
            scene.device_pose,
            2.0,
        )

        np.testing.assert_array_equal(frame.image, scene.device_image)
        assert len(frame.features) > 0

    def test_flat_image_has_no_features(self, detector: FeatureDetector, intrinsics):
        with pytest.raises(NoKeypointsError):
            FrameInput.from_image(
                np.zeros((100, 100), dtype=np.uint8), detector, intrinsics, Pose.identity(), 0.0
            )

    def test_feature_count_mismatch(self, intrinsics: CameraIntrinsics):
        """Test that inconsistent precomputed features are rejected."""
        keypoints = [KeypointData(x=1.0, y=2.0, size=31.0)]
        with pytest.raises(InputDecodeError, match="1 keypoints but 2 descriptors"):
            FrameInput.from_features(
                keypoints,
                np.zeros((2, 32), dtype=np.uint8),
                (640, 480),
                intrinsics,
                Pose.identity(),
                0.0,
            )

    def test_wrong_descriptor_dtype(self, intrinsics: CameraIntrinsics):
        with pytest.raises(InputDecodeError, match="uint8"):
            FrameInput.from_features(
                [KeypointData(x=1.0, y=2.0, size=31.0)],
                np.zeros((1, 32), dtype=np.float32),
                (640, 480),
                intrinsics,
                Pose.identity(),
                0.0,
            )

    def test_wrong_descriptor_width(self, intrinsics: CameraIntrinsics):
        """Test that descriptors other than 32 bytes wide are rejected."""
        with pytest.raises(InputDecodeError, match="32 bytes wide, got 16"):
            FrameInput.from_features(
                [KeypointData(x=1.0, y=2.0, size=31.0)],
                np.zeros((1, 16), dtype=np.uint8),
                (640, 480),
                intrinsics,
                Pose.identity(),
                0.0,
            )

    def test_flat_descriptor_bytes(
        self, detector: FeatureDetector, scene: SyntheticScene, intrinsics: CameraIntrinsics
    ):
        """Test that a flat byte buffer is read as one 32-byte row per keypoint."""
        features = detector.detect(scene.device_image)

        frame = FrameInput.from_features(
            features.keypoints,
            features.descriptors.tobytes(),
            (640, 480),
            intrinsics,
            scene.device_pose,
            0.0,
        )

        np.testing.assert_array_equal(frame.features.descriptors, features.descriptors)

    def test_flat_descriptor_bytes_wrong_length(self, intrinsics: CameraIntrinsics):
        with pytest.raises(InputDecodeError, match="does not match 2x32"):
            FrameInput.from_features(
                [KeypointData(x=1.0, y=2.0, size=31.0)] * 2,
                bytes(40),
                (640, 480),
                intrinsics,
                Pose.identity(),
                0.0,
            )


class TestFixedCameraFrame:
    """Test suite for FixedCameraFrame validation."""

    def test_size_mismatch(self, intrinsics: CameraIntrinsics):
        with pytest.raises(InputDecodeError, match="sizes differ"):
            FixedCameraFrame(
                image=np.zeros((10, 10), dtype=np.uint8),
                depth=np.zeros((10, 12), dtype=np.float32),
                intrinsics=intrinsics,
                timestamp=0.0,
            )

    def test_empty_depth(self, intrinsics: CameraIntrinsics):
        with pytest.raises(InputDecodeError, match="depth image is empty"):
            FixedCameraFrame(
                image=np.zeros((10, 10), dtype=np.uint8),
                depth=np.zeros((0, 0), dtype=np.float32),
                intrinsics=intrinsics,
                timestamp=0.0,
            )

    def test_image_size(self, scene: SyntheticScene):
        assert scene.fixed_frame().image_size == (640, 480)


class TestCorrespondenceBuilder:
    """Test suite for 3D-2D correspondence construction."""

    def test_unprojects_fixed_pixels(self, intrinsics: CameraIntrinsics):
        """Test that fixed pixels become 3D points paired with device pixels."""
        matches = Matches(
            query_indices=np.array([1, 0]),
            train_indices=np.array([0, 1]),
            distances=np.zeros(2, dtype=np.float32),
        )
        resolved = ResolvedMatches(
            matches=matches,
            depths=np.array([2000.0, 1000.0]),
            repaired=np.zeros(2, dtype=bool),
        )
        query_points = np.array([[10.0, 20.0], [30.0, 40.0]])
        train_points = np.array([[320.0, 240.0], [820.0, 240.0]])

        corr = CorrespondenceBuilder(depth_scale=0.001).build(
            resolved, query_points, train_points, intrinsics
        )

        np.testing.assert_allclose(corr.points_3d, [[0.0, 0.0, 2.0], [1.0, 0.0, 1.0]])
        np.testing.assert_allclose(corr.points_2d, [[30.0, 40.0], [10.0, 20.0]])

    def test_empty(self, intrinsics: CameraIntrinsics):
        resolved = ResolvedMatches(
            matches=Matches.empty(), depths=np.empty(0), repaired=np.empty(0, dtype=bool)
        )

        corr = CorrespondenceBuilder().build(resolved, np.empty((0, 2)), np.empty((0, 2)), intrinsics)

        assert len(corr) == 0

    def test_length_mismatch(self):
        with pytest.raises(ValueError, match="3 3D points but 2 2D points"):
            Correspondences(points_3d=np.zeros((3, 3)), points_2d=np.zeros((2, 2)))
