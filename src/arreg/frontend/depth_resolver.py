"""Depth lookup with repair of missing samples at matched pixels.

Depth sensors leave holes (value 0) around object edges and on dark or
specular surfaces, which is exactly where ORB likes to put keypoints. A match
landing on a hole is repaired in two steps:

1. find the nearest nonzero sample within `search_radius` pixels;
2. scan the ring between that distance and `ring_width` pixels further out
   and take the lowest (closest to the camera) nonzero depth in it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from .feature_matcher import Matches

logger = logging.getLogger(__name__)


@dataclass
class ResolvedMatches:
    """Matches whose fixed-camera pixel has a usable depth.

    Attributes:
        matches: Kept matches (subset of the input, same order)
        depths: (N,) raw depth value used for each kept match
        repaired: (N,) bool, True where the depth came from a neighbour
    """

    matches: Matches
    depths: np.ndarray  # (N,) float64
    repaired: np.ndarray  # (N,) bool

    def __len__(self) -> int:
        return len(self.matches)

    @property
    def num_repaired(self) -> int:
        return int(np.count_nonzero(self.repaired))


def _valid_depth_mask(depth: np.ndarray) -> np.ndarray:
    if np.issubdtype(depth.dtype, np.floating):
        return np.isfinite(depth) & (depth > 0)
    return depth > 0


def _window(depth: np.ndarray, x: int, y: int, radius: float):
    """Return (window, x0, y0) clipped to the image around (x, y)."""
    r = int(np.ceil(radius))
    h, w = depth.shape
    x0, x1 = max(0, x - r), min(w, x + r + 1)
    y0, y1 = max(0, y - r), min(h, y + r + 1)
    return depth[y0:y1, x0:x1], x0, y0


def find_nearest_nonzero(
    depth: np.ndarray, x: int, y: int, max_radius: float
) -> tuple[int, int, int] | None:
    """Find the nonzero depth pixel nearest to (x, y).

    Ties are broken in row-major order, so the result is deterministic.

    Args:
        depth: HxW depth grid, 0 = unknown
        x: Column of the query pixel
        y: Row of the query pixel
        max_radius: Search radius in pixels (inclusive)

    Returns:
        (x, y, squared_distance) of the nearest valid pixel, or None if there
        is none within max_radius
    """
    window, x0, y0 = _window(depth, x, y, max_radius)
    ys, xs = np.nonzero(_valid_depth_mask(window))
    if len(xs) == 0:
        return None

    dx = xs + x0 - x
    dy = ys + y0 - y
    dist2 = dx * dx + dy * dy
    within = np.flatnonzero(dist2 <= max_radius * max_radius)
    if len(within) == 0:
        return None

    best = within[np.argmin(dist2[within])]
    return int(xs[best] + x0), int(ys[best] + y0), int(dist2[best])


def find_lowest_nonzero_in_ring(
    depth: np.ndarray,
    x: int,
    y: int,
    inner_radius: float,
    outer_radius: float,
) -> tuple[int, int] | None:
    """Find the pixel with the lowest nonzero depth in a ring around (x, y).

    The ring includes both boundaries. Ties are broken in row-major order.

    Returns:
        (x, y) of the selected pixel, or None if the ring has no valid depth
    """
    window, x0, y0 = _window(depth, x, y, outer_radius)
    ys, xs = np.nonzero(_valid_depth_mask(window))
    if len(xs) == 0:
        return None

    dx = xs + x0 - x
    dy = ys + y0 - y
    dist2 = dx * dx + dy * dy
    in_ring = np.flatnonzero(
        (dist2 >= inner_radius * inner_radius) & (dist2 <= outer_radius * outer_radius)
    )
    if len(in_ring) == 0:
        return None

    values = window[ys[in_ring], xs[in_ring]]
    best = in_ring[np.argmin(values)]
    return int(xs[best] + x0), int(ys[best] + y0)


class DepthResolver:
    """Looks up (and where needed repairs) depth for matched fixed-camera pixels."""

    def __init__(self, search_radius: int = 100, ring_width: int = 10) -> None:
        """Initialize depth resolver.

        Args:
            search_radius: Maximum distance (pixels) to look for a nonzero
                depth sample around a hole
            ring_width: Width (pixels) of the ring scanned past the first
                nonzero sample
        """
        self._search_radius = search_radius
        self._ring_width = ring_width

    def depth_at(self, depth: np.ndarray, x: float, y: float) -> tuple[float, bool]:
        """Return (depth, repaired) for a sub-pixel location.

        The location is rounded to the nearest pixel. Returns depth 0.0 when
        the sample is unknown and cannot be repaired.
        """
        h, w = depth.shape
        px = min(max(int(np.rint(x)), 0), w - 1)
        py = min(max(int(np.rint(y)), 0), h - 1)

        value = depth[py, px]
        if _valid_depth_mask(np.asarray(value)):
            return float(value), False

        nearest = find_nearest_nonzero(depth, px, py, self._search_radius)
        if nearest is None:
            return 0.0, False

        _, _, dist2 = nearest
        inner = float(np.sqrt(dist2))
        lowest = find_lowest_nonzero_in_ring(
            depth, px, py, inner, inner + self._ring_width
        )
        if lowest is None:
            # The first hit lies on the inner boundary, so this only happens
            # through floating point rounding of the radius.
            nx, ny, _ = nearest
            return float(depth[ny, nx]), True

        lx, ly = lowest
        return float(depth[ly, lx]), True

    def resolve(
        self,
        matches: Matches,
        train_points: np.ndarray,
        depth: np.ndarray,
    ) -> ResolvedMatches:
        """Attach a depth to every match, dropping those without one.

        Args:
            matches: Filtered matches (train side = fixed camera)
            train_points: Nx2 fixed-camera keypoint coordinates
            depth: HxW depth grid of the fixed camera, 0 = unknown. It is
                not modified.

        Returns:
            ResolvedMatches holding only matches with nonzero depth
        """
        if depth.ndim != 2:
            raise ValueError(f"Depth image must be 2D, got shape {depth.shape}")

        keep = np.zeros(len(matches), dtype=bool)
        depths = np.zeros(len(matches), dtype=np.float64)
        repaired = np.zeros(len(matches), dtype=bool)

        for i, train_idx in enumerate(matches.train_indices):
            x, y = train_points[int(train_idx)]
            value, was_repaired = self.depth_at(depth, x, y)
            if value > 0:
                keep[i] = True
                depths[i] = value
                repaired[i] = was_repaired

        resolved = ResolvedMatches(
            matches=matches.subset(keep),
            depths=depths[keep],
            repaired=repaired[keep],
        )
        logger.debug(
            "Depth resolved for %d/%d matches (%d repaired)",
            len(resolved),
            len(matches),
            resolved.num_repaired,
        )
        return resolved

    @property
    def search_radius(self) -> int:
        return self._search_radius

    @property
    def ring_width(self) -> int:
        return self._ring_width
