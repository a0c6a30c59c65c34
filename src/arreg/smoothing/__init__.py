"""Temporal smoothing of accepted registration estimates."""

from .position_filter import Position3DKalmanFilter

__all__ = ["Position3DKalmanFilter"]
