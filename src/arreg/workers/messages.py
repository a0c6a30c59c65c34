"""Message types for device worker inter-process communication.

Messages only hold picklable data: numpy arrays, dataclasses and
`KeypointData` instead of cv2.KeyPoint.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import cv2
import numpy as np

from ..camera import CameraIntrinsics
from ..frontend.feature_detector import DESCRIPTOR_SIZE, FeatureDetector
from ..frontend.frame_input import FixedCameraFrame, FrameInput, KeypointData
from ..pose import Pose


@dataclass
class FrameMessage:
    """One device frame paired with a fixed camera frame.

    Sent from the caller to a device worker. Exactly one of `image` or
    (`keypoints`, `descriptors`, `image_size`) describes the device side.

    Attributes:
        frame_id: Caller-chosen id echoed in the result
        timestamp: Device capture time (seconds, wall clock)
        intrinsics: Device camera intrinsics
        device_rotation: 3x3 device-reported rotation (native convention)
        device_translation: (3,) device-reported translation
        fixed_frame: Fixed camera image, depth and intrinsics
        image: Monochrome device image or compressed payload bytes
        keypoints: Keypoints extracted on the device
        descriptors: (N, 32) uint8 descriptors extracted on the device, or
            the same N * 32 bytes as a flat buffer
        image_size: (width, height) of the device image
    """

    frame_id: int
    timestamp: float
    intrinsics: CameraIntrinsics
    device_rotation: np.ndarray  # (3, 3)
    device_translation: np.ndarray  # (3,)
    fixed_frame: FixedCameraFrame
    image: np.ndarray | bytes | None = None
    keypoints: list[KeypointData] = field(default_factory=list)
    descriptors: np.ndarray | bytes | None = None  # (N, 32) or N * 32 bytes
    image_size: tuple[int, int] | None = None

    @classmethod
    def from_frame_input(
        cls, frame_id: int, device: FrameInput, fixed: FixedCameraFrame
    ) -> FrameMessage:
        """Pack an already built FrameInput (its features are sent)."""
        return cls(
            frame_id=frame_id,
            timestamp=device.timestamp,
            intrinsics=device.intrinsics,
            device_rotation=device.device_pose.rotation.copy(),
            device_translation=device.device_pose.translation.copy(),
            fixed_frame=fixed,
            keypoints=keypoints_to_data(device.features.keypoints),
            descriptors=device.features.descriptors.copy(),
            image_size=device.image_size,
        )

    @property
    def device_pose(self) -> Pose:
        return Pose(rotation=self.device_rotation, translation=self.device_translation)

    def to_frame_input(self, detector: FeatureDetector) -> FrameInput:
        """Rebuild the FrameInput on the worker side.

        Raises:
            InputDecodeError: If the payload is inconsistent
            FeatureError: If feature extraction on `image` fails
        """
        if self.image is not None:
            if isinstance(self.image, (bytes, bytearray)):
                return FrameInput.from_encoded_image(
                    bytes(self.image),
                    detector,
                    self.intrinsics,
                    self.device_pose,
                    self.timestamp,
                )
            return FrameInput.from_image(
                self.image, detector, self.intrinsics, self.device_pose, self.timestamp
            )

        descriptors = self.descriptors
        if descriptors is None:
            descriptors = np.empty((0, DESCRIPTOR_SIZE), dtype=np.uint8)
        return FrameInput.from_features(
            self.keypoints,
            descriptors,
            self.image_size or (0, 0),
            self.intrinsics,
            self.device_pose,
            self.timestamp,
        )


@dataclass
class ResultMessage:
    """Outcome of one frame, sent from a device worker back to the caller.

    Attributes:
        device_id: Device the worker serves
        frame_id: Id of the FrameMessage this answers
        status: Numeric RegistrationStatus
        timestamp: Device capture time
        transform: 4x4 tracking origin -> world matrix when accepted
        smoothed_transform: 4x4 smoothed matrix when accepted and smoothing
            is enabled
        num_inliers: PnP inlier count
        reprojection_error: Pixels, None if not computed
        error: Description of an unexpected worker failure
    """

    device_id: str
    frame_id: int
    status: int
    timestamp: float
    transform: np.ndarray | None = None  # (4, 4)
    smoothed_transform: np.ndarray | None = None  # (4, 4)
    num_inliers: int = 0
    reprojection_error: float | None = None
    error: str | None = None

    @property
    def is_accepted(self) -> bool:
        return self.status == 0

    def transform_pose(self) -> Pose | None:
        """Return `transform` as a Pose."""
        if self.transform is None:
            return None
        return Pose.from_matrix(self.transform)


@dataclass
class ShutdownMessage:
    """Signal to stop a device worker."""

    pass


def keypoints_to_data(keypoints: tuple[cv2.KeyPoint, ...]) -> list[KeypointData]:
    """Convert cv2 keypoints into picklable KeypointData."""
    return [KeypointData.from_cv(kp) for kp in keypoints]
