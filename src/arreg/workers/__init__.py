"""Per-device worker processes for registering several devices in parallel."""

from .messages import FrameMessage, ResultMessage, ShutdownMessage, keypoints_to_data
from .process import DeviceWorkerPool, DeviceWorkerProcess, handle_frame

__all__ = [
    "DeviceWorkerPool",
    "DeviceWorkerProcess",
    "FrameMessage",
    "ResultMessage",
    "ShutdownMessage",
    "handle_frame",
    "keypoints_to_data",
]
