"""Estimation: from correspondences to an accepted registration transform.

Components:
- PoseSolver: PnP + RANSAC on fixed-camera 3D points and device pixels
- QualityGate: Inlier, reprojection, orientation and height checks
- FrameComposer: Device pose conversion and transform composition
- RegistrationEstimator: The per-frame pipeline with persistent state
"""

from .frame_composer import (
    HANDEDNESS_CHANGE,
    Composition,
    FrameComposer,
    change_handedness,
    convert_device_pose,
)
from .pose_solver import MIN_CORRESPONDENCES, PnPResult, PoseSolver
from .quality_gate import QualityGate, reprojection_error
from .registration_estimator import (
    PersistentEstimatorState,
    RegistrationEstimator,
    RegistrationResult,
    RegistrationTiming,
)
from .status import RegistrationStatus

__all__ = [
    # Solver
    "MIN_CORRESPONDENCES",
    "PnPResult",
    "PoseSolver",
    # Gate
    "QualityGate",
    "reprojection_error",
    # Frames
    "HANDEDNESS_CHANGE",
    "Composition",
    "FrameComposer",
    "change_handedness",
    "convert_device_pose",
    # Pipeline
    "PersistentEstimatorState",
    "RegistrationEstimator",
    "RegistrationResult",
    "RegistrationStatus",
    "RegistrationTiming",
]
