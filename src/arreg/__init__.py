"""AR device registration - place AR devices' tracking frames in a fixed RGB-D camera's world."""

__version__ = "0.1.0"

# Re-export main classes for convenient imports
from .camera import CameraIntrinsics
from .config import DeviceConfig, RegistrationConfig, SmootherConfig, load_config
from .device_estimator import DeviceEstimator
from .errors import (
    ConfigError,
    FeatureError,
    GeometryInvalidError,
    InputDecodeError,
    InsufficientCorrespondencesError,
    NoDescriptorsError,
    NoKeypointsError,
    RegistrationError,
    SmootherNotInitializedError,
)
from .estimation import (
    FrameComposer,
    PersistentEstimatorState,
    PnPResult,
    PoseSolver,
    QualityGate,
    RegistrationEstimator,
    RegistrationResult,
    RegistrationStatus,
    RegistrationTiming,
    convert_device_pose,
)
from .frontend import (
    CorrespondenceBuilder,
    Correspondences,
    DepthResolver,
    FeatureDetector,
    FeatureMatcher,
    Features,
    FixedCameraFrame,
    FrameInput,
    KeypointData,
    Matches,
)
from .pose import Pose
from .smoothing import Position3DKalmanFilter
from .workers import DeviceWorkerPool, DeviceWorkerProcess, FrameMessage, ResultMessage

__all__ = [
    "__version__",
    # Geometry
    "Pose",
    "CameraIntrinsics",
    # Configuration
    "RegistrationConfig",
    "SmootherConfig",
    "DeviceConfig",
    "load_config",
    # Frontend
    "FeatureDetector",
    "Features",
    "FeatureMatcher",
    "Matches",
    "DepthResolver",
    "CorrespondenceBuilder",
    "Correspondences",
    "FrameInput",
    "FixedCameraFrame",
    "KeypointData",
    # Estimation
    "PoseSolver",
    "PnPResult",
    "QualityGate",
    "FrameComposer",
    "convert_device_pose",
    "RegistrationEstimator",
    "RegistrationResult",
    "RegistrationStatus",
    "RegistrationTiming",
    "PersistentEstimatorState",
    # Smoothing
    "Position3DKalmanFilter",
    # Devices
    "DeviceEstimator",
    "DeviceWorkerProcess",
    "DeviceWorkerPool",
    "FrameMessage",
    "ResultMessage",
    # Errors
    "RegistrationError",
    "ConfigError",
    "InputDecodeError",
    "FeatureError",
    "NoKeypointsError",
    "NoDescriptorsError",
    "InsufficientCorrespondencesError",
    "GeometryInvalidError",
    "SmootherNotInitializedError",
]
