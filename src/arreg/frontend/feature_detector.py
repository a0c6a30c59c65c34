"""ORB feature extraction for device and fixed-camera images."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import cv2
import numpy as np

from ..errors import InputDecodeError, NoDescriptorsError, NoKeypointsError

logger = logging.getLogger(__name__)

DESCRIPTOR_SIZE = 32  # Bytes per ORB descriptor


@dataclass
class Features:
    """Keypoints and their binary descriptors.

    Attributes:
        keypoints: Tuple of OpenCV KeyPoint objects
        descriptors: Nx32 array of ORB binary descriptors (uint8), one row
            per keypoint
    """

    keypoints: tuple[cv2.KeyPoint, ...]
    descriptors: np.ndarray

    def __post_init__(self) -> None:
        self.keypoints = tuple(self.keypoints)
        if self.descriptors is None:
            self.descriptors = np.empty((0, DESCRIPTOR_SIZE), dtype=np.uint8)
        self.descriptors = np.asarray(self.descriptors)
        if self.descriptors.ndim != 2:
            raise ValueError(
                f"Descriptors must be a 2D array, got shape {self.descriptors.shape}"
            )
        if len(self.keypoints) != len(self.descriptors):
            raise ValueError(
                f"Got {len(self.keypoints)} keypoints but "
                f"{len(self.descriptors)} descriptors"
            )

    @property
    def points(self) -> np.ndarray:
        """Return Nx2 array of keypoint (x, y) coordinates."""
        if len(self.keypoints) == 0:
            return np.empty((0, 2), dtype=np.float32)
        return np.array([kp.pt for kp in self.keypoints], dtype=np.float32)

    def __len__(self) -> int:
        """Return number of features."""
        return len(self.keypoints)


def to_grayscale(image: np.ndarray) -> np.ndarray:
    """Return a single-channel uint8 view of `image`.

    Raises:
        InputDecodeError: If the image is empty or has an unsupported layout
    """
    if image is None or image.size == 0:
        raise InputDecodeError("Image is empty")
    if image.ndim == 2:
        gray = image
    elif image.ndim == 3 and image.shape[2] == 1:
        gray = image[:, :, 0]
    elif image.ndim == 3 and image.shape[2] == 3:
        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    elif image.ndim == 3 and image.shape[2] == 4:
        gray = cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    else:
        raise InputDecodeError(f"Unsupported image shape {image.shape}")

    if gray.dtype != np.uint8:
        raise InputDecodeError(f"Expected uint8 image, got {gray.dtype}")
    return gray


class FeatureDetector:
    """ORB keypoint detector and descriptor extractor.

    The ORB object is created once and reused for every image, so repeated
    calls on identical pixels give identical features.
    """

    def __init__(
        self,
        max_points: int = 500,
        scale_factor: float = 1.2,
        n_levels: int = 8,
    ) -> None:
        """Initialize ORB detector.

        Args:
            max_points: Maximum number of features to retain (sorted by score)
            scale_factor: Pyramid decimation ratio (>1.0)
            n_levels: Number of pyramid levels
        """
        self._orb = cv2.ORB_create(
            nfeatures=max_points,
            scaleFactor=scale_factor,
            nlevels=n_levels,
        )
        self._max_points = max_points

    def detect(self, image: np.ndarray) -> Features:
        """Detect keypoints and compute their descriptors.

        Args:
            image: Grayscale uint8 image. Colour images are converted.

        Returns:
            Features with at least one keypoint

        Raises:
            InputDecodeError: If the image cannot be used
            NoKeypointsError: If no keypoints are found
            NoDescriptorsError: If no descriptors could be computed
        """
        gray = to_grayscale(image)

        keypoints = self._orb.detect(gray, None)
        if not keypoints:
            raise NoKeypointsError("No keypoints found")

        # compute() may drop keypoints too close to the border
        keypoints, descriptors = self._orb.compute(gray, keypoints)
        if descriptors is None or len(descriptors) == 0:
            raise NoDescriptorsError("No descriptors computed")

        logger.debug("Detected %d ORB features", len(keypoints))
        return Features(keypoints=tuple(keypoints), descriptors=descriptors)

    @property
    def max_points(self) -> int:
        """Return maximum number of features to detect."""
        return self._max_points
