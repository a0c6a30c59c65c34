"""Outcome codes of a registration update."""

from enum import IntEnum


class RegistrationStatus(IntEnum):
    """Status of one registration update.

    0 means the estimate was accepted. Positive values are soft rejections:
    the frame was processed but the device was looking at something too
    different from what the fixed camera sees. Negative values are internal
    errors or dropped frames.
    """

    ACCEPTED = 0
    INSUFFICIENT_MATCHES = 1
    REPROJECTION_TOO_HIGH = 2
    ORIENTATION_DIVERGENCE = 3
    POSE_HEIGHT_OUT_OF_RANGE = 4

    INPUT_INVALID = -1
    DEVICE_FEATURES_FAILED = -2
    FIXED_FEATURES_FAILED = -3
    STALE_FRAME = -4
    GEOMETRY_INVALID = -8

    @property
    def is_accepted(self) -> bool:
        return self == RegistrationStatus.ACCEPTED

    @property
    def is_soft_reject(self) -> bool:
        return self > 0

    @property
    def is_error(self) -> bool:
        return self < 0
