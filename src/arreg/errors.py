"""Exception types raised inside the registration core.

Components raise these; `RegistrationEstimator` and `DeviceEstimator`
translate them into `RegistrationStatus` codes so that callers of the
public pipeline only ever see status values.
"""


class RegistrationError(Exception):
    """Base class for all registration errors."""


class ConfigError(RegistrationError, ValueError):
    """Invalid or unknown configuration value."""


class InputDecodeError(RegistrationError):
    """Malformed image or feature payload (empty buffer, bad channels...)."""


class FeatureError(RegistrationError):
    """Feature extraction produced nothing usable."""


class NoKeypointsError(FeatureError):
    """Keypoint detection found zero keypoints."""


class NoDescriptorsError(FeatureError):
    """Descriptor computation returned no descriptors."""


class InsufficientCorrespondencesError(RegistrationError):
    """PnP requested with fewer than 4 correspondences."""


class GeometryInvalidError(RegistrationError):
    """A composed transform is non-finite or not a proper rigid motion."""


class SmootherNotInitializedError(RegistrationError, RuntimeError):
    """Smoothed state queried before any measurement was supplied."""
