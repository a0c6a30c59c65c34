"""Frontend: from images to 3D-2D correspondences.

Components:
- FeatureDetector: ORB feature extraction
- FeatureMatcher: Hamming nearest-neighbour matching + distance filter
- DepthResolver: Depth lookup with hole repair at matched pixels
- CorrespondenceBuilder: Pinhole unprojection into fixed-camera 3D points
- FrameInput / FixedCameraFrame: Per-update inputs
"""

from .correspondences import CorrespondenceBuilder, Correspondences
from .depth_resolver import (
    DepthResolver,
    ResolvedMatches,
    find_lowest_nonzero_in_ring,
    find_nearest_nonzero,
)
from .feature_detector import FeatureDetector, Features, to_grayscale
from .feature_matcher import FeatureMatcher, Matches
from .frame_input import (
    FixedCameraFrame,
    FrameInput,
    KeypointData,
    decode_device_image,
    descriptors_from_buffer,
)

__all__ = [
    # Features
    "FeatureDetector",
    "Features",
    "to_grayscale",
    # Matching
    "FeatureMatcher",
    "Matches",
    # Depth
    "DepthResolver",
    "ResolvedMatches",
    "find_nearest_nonzero",
    "find_lowest_nonzero_in_ring",
    # Correspondences
    "CorrespondenceBuilder",
    "Correspondences",
    # Inputs
    "FrameInput",
    "FixedCameraFrame",
    "KeypointData",
    "decode_device_image",
    "descriptors_from_buffer",
]
