"""Inputs to one registration update.

A device can either stream camera images (features are extracted here) or
ship precomputed ORB features. Both paths produce the same `FrameInput`
so the pipeline downstream does not care which one was used.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import cv2
import numpy as np

from ..camera import CameraIntrinsics
from ..errors import InputDecodeError
from ..pose import Pose
from .feature_detector import DESCRIPTOR_SIZE, FeatureDetector, Features, to_grayscale


@dataclass(frozen=True)
class KeypointData:
    """Serializable keypoint as sent by devices with on-board extraction."""

    x: float
    y: float
    size: float
    angle: float = -1.0
    response: float = 0.0
    octave: int = 0
    class_id: int = -1

    def to_cv(self) -> cv2.KeyPoint:
        return cv2.KeyPoint(
            float(self.x),
            float(self.y),
            float(self.size),
            float(self.angle),
            float(self.response),
            int(self.octave),
            int(self.class_id),
        )

    @classmethod
    def from_cv(cls, kp: cv2.KeyPoint) -> KeypointData:
        return cls(
            x=kp.pt[0],
            y=kp.pt[1],
            size=kp.size,
            angle=kp.angle,
            response=kp.response,
            octave=kp.octave,
            class_id=kp.class_id,
        )


def decode_device_image(data: bytes | np.ndarray) -> np.ndarray:
    """Decode a compressed device camera image into a monochrome image.

    Devices send their monochrome camera frame packed into the red channel of
    a 3-channel PNG, upside down. This returns the red channel flipped back.

    Raises:
        InputDecodeError: On empty or undecodable buffers, or if the image
            does not have 3 channels
    """
    buffer = np.frombuffer(data, dtype=np.uint8) if isinstance(data, bytes) else data
    if buffer is None or buffer.size == 0:
        raise InputDecodeError("Device image buffer is empty")

    image = cv2.imdecode(np.asarray(buffer, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
    if image is None:
        raise InputDecodeError("Could not decode device image")
    if image.ndim != 3 or image.shape[2] != 3:
        channels = 1 if image.ndim == 2 else image.shape[2]
        raise InputDecodeError(
            f"Expected a 3-channel device image, got {channels} channel(s)"
        )

    red = image[:, :, 2]
    return cv2.flip(red, 0)


def descriptors_from_buffer(
    data: bytes | np.ndarray, rows: int, cols: int
) -> np.ndarray:
    """Rebuild an (rows, cols) uint8 descriptor matrix from a flat buffer.

    Raises:
        InputDecodeError: If the buffer size does not match rows * cols
    """
    if isinstance(data, bytes):
        flat = np.frombuffer(data, dtype=np.uint8)
    else:
        flat = np.asarray(data, dtype=np.uint8).ravel()
    if rows < 0 or cols <= 0 or flat.size != rows * cols:
        raise InputDecodeError(
            f"Descriptor buffer of {flat.size} bytes does not match {rows}x{cols}"
        )
    return flat.reshape(rows, cols).copy()


@dataclass
class FrameInput:
    """Device-side data for one update.

    Attributes:
        features: Device keypoints and descriptors
        image_size: (width, height) of the device image in pixels
        intrinsics: Device camera intrinsics
        device_pose: Device pose as reported by its own tracking, in the
            device's native (left-handed) convention
        timestamp: Capture time in seconds
        image: Monochrome device image when available (not required)
    """

    features: Features
    image_size: tuple[int, int]
    intrinsics: CameraIntrinsics
    device_pose: Pose
    timestamp: float
    image: np.ndarray | None = None

    @classmethod
    def from_image(
        cls,
        image: np.ndarray,
        detector: FeatureDetector,
        intrinsics: CameraIntrinsics,
        device_pose: Pose,
        timestamp: float,
    ) -> FrameInput:
        """Build a frame from a raw device image by extracting ORB features.

        Raises:
            InputDecodeError: If the image is unusable
            FeatureError: If no features are found
        """
        gray = to_grayscale(image)
        features = detector.detect(gray)
        height, width = gray.shape
        return cls(
            features=features,
            image_size=(width, height),
            intrinsics=intrinsics,
            device_pose=device_pose,
            timestamp=timestamp,
            image=gray,
        )

    @classmethod
    def from_encoded_image(
        cls,
        data: bytes | np.ndarray,
        detector: FeatureDetector,
        intrinsics: CameraIntrinsics,
        device_pose: Pose,
        timestamp: float,
    ) -> FrameInput:
        """Build a frame from a compressed device image payload."""
        return cls.from_image(
            decode_device_image(data), detector, intrinsics, device_pose, timestamp
        )

    @classmethod
    def from_features(
        cls,
        keypoints: Sequence[KeypointData | cv2.KeyPoint],
        descriptors: np.ndarray | bytes,
        image_size: tuple[int, int],
        intrinsics: CameraIntrinsics,
        device_pose: Pose,
        timestamp: float,
    ) -> FrameInput:
        """Build a frame from features computed on the device.

        Args:
            keypoints: Device keypoints
            descriptors: (N, 32) uint8 array, or the same bytes as a flat
                buffer of N * 32 bytes
            image_size: (width, height) of the device image
            intrinsics: Device camera intrinsics
            device_pose: Device-reported pose
            timestamp: Capture time in seconds

        Raises:
            InputDecodeError: If keypoints and descriptors are inconsistent
        """
        cv_keypoints = tuple(
            kp.to_cv() if isinstance(kp, KeypointData) else kp for kp in keypoints
        )
        if isinstance(descriptors, (bytes, bytearray)):
            descriptors = descriptors_from_buffer(
                bytes(descriptors), len(cv_keypoints), DESCRIPTOR_SIZE
            )
        descriptors = np.asarray(descriptors)
        if descriptors.size == 0 and len(cv_keypoints) == 0:
            descriptors = np.empty((0, DESCRIPTOR_SIZE), dtype=np.uint8)
        if descriptors.ndim != 2 or descriptors.dtype != np.uint8:
            raise InputDecodeError(
                f"Descriptors must be a 2D uint8 array, got {descriptors.dtype} "
                f"with shape {descriptors.shape}"
            )
        if descriptors.shape[1] != DESCRIPTOR_SIZE:
            raise InputDecodeError(
                f"Descriptors must be {DESCRIPTOR_SIZE} bytes wide, "
                f"got {descriptors.shape[1]}"
            )
        if len(descriptors) != len(cv_keypoints):
            raise InputDecodeError(
                f"Got {len(cv_keypoints)} keypoints but {len(descriptors)} descriptors"
            )
        width, height = image_size
        if width <= 0 or height <= 0:
            raise InputDecodeError(f"Invalid device image size {image_size}")

        return cls(
            features=Features(keypoints=cv_keypoints, descriptors=descriptors),
            image_size=(int(width), int(height)),
            intrinsics=intrinsics,
            device_pose=device_pose,
            timestamp=timestamp,
        )


@dataclass
class FixedCameraFrame:
    """Fixed RGB-D camera data for one update.

    Attributes:
        image: Colour or monochrome image (uint8)
        depth: Depth image on the same pixel grid, 0 = unknown
        intrinsics: Fixed camera intrinsics
        timestamp: Capture time in seconds
        frame_id: Name of the camera optical frame
    """

    image: np.ndarray
    depth: np.ndarray
    intrinsics: CameraIntrinsics
    timestamp: float
    frame_id: str = "fixed_camera_optical_frame"

    def __post_init__(self) -> None:
        if self.image is None or self.image.size == 0:
            raise InputDecodeError("Fixed camera image is empty")
        if self.depth is None or self.depth.size == 0:
            raise InputDecodeError("Fixed camera depth image is empty")
        if self.depth.ndim != 2:
            raise InputDecodeError(
                f"Depth image must be single channel, got shape {self.depth.shape}"
            )
        if self.image.shape[:2] != self.depth.shape:
            raise InputDecodeError(
                f"Image {self.image.shape[:2]} and depth {self.depth.shape} "
                f"sizes differ"
            )

    @property
    def image_size(self) -> tuple[int, int]:
        """Return (width, height)."""
        height, width = self.depth.shape
        return width, height
