"""Descriptor matching between device and fixed-camera features."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import cv2
import numpy as np

from ..errors import InputDecodeError
from .feature_detector import Features

logger = logging.getLogger(__name__)


@dataclass
class Matches:
    """Descriptor matches stored as parallel arrays.

    Attributes:
        query_indices: Indices into the device (query) keypoints
        train_indices: Indices into the fixed-camera (train) keypoints
        distances: Hamming distances between matched descriptors
    """

    query_indices: np.ndarray  # (N,) int
    train_indices: np.ndarray  # (N,) int
    distances: np.ndarray  # (N,) float32

    @classmethod
    def empty(cls) -> Matches:
        return cls(
            query_indices=np.empty(0, dtype=np.int32),
            train_indices=np.empty(0, dtype=np.int32),
            distances=np.empty(0, dtype=np.float32),
        )

    def __len__(self) -> int:
        """Return number of matches."""
        return len(self.query_indices)

    def subset(self, mask: np.ndarray) -> Matches:
        """Return the matches selected by a boolean mask or index array."""
        return Matches(
            query_indices=self.query_indices[mask],
            train_indices=self.train_indices[mask],
            distances=self.distances[mask],
        )

    def filter_by_distance(self, max_distance: float) -> Matches:
        """Return new Matches keeping only distance <= max_distance."""
        return self.subset(self.distances <= max_distance)


class FeatureMatcher:
    """Brute-force Hamming matcher from device features to fixed-camera features.

    Every device descriptor gets its single nearest fixed-camera descriptor;
    there is no ratio test, quality is controlled by the distance threshold.
    """

    def __init__(self, matching_threshold: float = 25.0) -> None:
        """Initialize matcher.

        Args:
            matching_threshold: Maximum Hamming distance kept by filter().
                ORB descriptors are 256 bits, so max possible is 256.
        """
        self._bf_matcher = cv2.BFMatcher(cv2.NORM_HAMMING, crossCheck=False)
        self._matching_threshold = matching_threshold

    def match(self, query: Features, train: Features) -> Matches:
        """Find the nearest train descriptor for every query descriptor.

        Args:
            query: Device features
            train: Fixed-camera features

        Returns:
            Unfiltered Matches, one per query descriptor

        Raises:
            InputDecodeError: If the two descriptor sets cannot be compared
                (different widths or types)
        """
        if len(query) == 0 or len(train) == 0:
            return Matches.empty()

        try:
            raw = self._bf_matcher.match(query.descriptors, train.descriptors)
        except cv2.error as e:
            raise InputDecodeError(
                f"Cannot match descriptors of shape {query.descriptors.shape} "
                f"against {train.descriptors.shape}"
            ) from e
        if len(raw) == 0:
            return Matches.empty()

        matches = Matches(
            query_indices=np.array([m.queryIdx for m in raw], dtype=np.int32),
            train_indices=np.array([m.trainIdx for m in raw], dtype=np.int32),
            distances=np.array([m.distance for m in raw], dtype=np.float32),
        )
        logger.debug(
            "Best/worst match distance = %.1f/%.1f over %d matches",
            float(matches.distances.min()),
            float(matches.distances.max()),
            len(matches),
        )
        return matches

    def filter(self, matches: Matches) -> Matches:
        """Keep matches whose distance is within the matching threshold."""
        return matches.filter_by_distance(self._matching_threshold)

    def match_and_filter(self, query: Features, train: Features) -> Matches:
        """Run match() then filter()."""
        return self.filter(self.match(query, train))

    @property
    def matching_threshold(self) -> float:
        """Return the maximum Hamming distance threshold."""
        return self._matching_threshold
