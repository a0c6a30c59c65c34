"""Configuration for the registration pipeline, smoother and device estimator.

Options are plain dataclasses with the defaults used in deployment. They can
be built from a flat mapping (or a YAML file holding one) using the
camelCase option names, e.g.::

    pnpReprojectionErrorPx: 5
    pnpConfidence: 0.99
    matchingThreshold: 25
    phoneOrientationDifferenceThresholdDeg: 45
    measurementNoiseVariance: 1.0
    maxMessageDelaySec: 5
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from .errors import ConfigError


@dataclass
class RegistrationConfig:
    """Per-frame registration pipeline options."""

    pnp_reprojection_error_px: float = 5.0  # RANSAC inlier threshold
    pnp_confidence: float = 0.99  # RANSAC early-stop confidence (0-1)
    pnp_iterations: int = 1000  # RANSAC iteration budget
    pnp_refine_with_inliers: bool = True  # Iterative refine on all inliers
    matching_threshold: float = 25.0  # Max Hamming distance of a good match
    reprojection_error_discard_threshold: float = 5.0  # Pixels
    orb_max_points: int = 500
    orb_scale_factor: float = 1.2
    orb_levels_number: int = 8
    phone_orientation_difference_threshold_deg: float = 45.0
    minimum_matches_number: int = 4
    depth_search_radius: int = 100  # Pixels searched for a nonzero depth
    depth_ring_width: int = 10  # Ring scanned beyond the first nonzero hit
    depth_scale: float = 1.0  # Raw depth sample -> distance units
    max_pose_height: float | None = 2.5  # World z in metres, None disables
    min_pose_height: float | None = 0.0  # World z in metres, None disables

    def __post_init__(self) -> None:
        _require(0.0 < self.pnp_confidence <= 1.0, "pnpConfidence must be in (0, 1]")
        _require(self.pnp_iterations > 0, "pnpIterations must be positive")
        _require(
            self.pnp_reprojection_error_px > 0,
            "pnpReprojectionErrorPx must be positive",
        )
        _require(self.matching_threshold >= 0, "matchingThreshold must be >= 0")
        _require(
            self.reprojection_error_discard_threshold >= 0,
            "reprojectionErrorDiscardThreshold must be >= 0",
        )
        _require(self.orb_max_points > 0, "orbMaxPoints must be positive")
        _require(self.orb_scale_factor > 1.0, "orbScaleFactor must be > 1")
        _require(self.orb_levels_number >= 1, "orbLevelsNumber must be >= 1")
        _require(
            0 <= self.phone_orientation_difference_threshold_deg <= 180,
            "phoneOrientationDifferenceThresholdDeg must be in [0, 180]",
        )
        _require(self.minimum_matches_number >= 0, "minimumMatchesNumber must be >= 0")
        _require(self.depth_search_radius > 0, "depthSearchRadius must be positive")
        _require(self.depth_ring_width >= 0, "depthRingWidth must be >= 0")
        _require(
            math.isfinite(self.depth_scale) and self.depth_scale > 0,
            "depthScale must be positive",
        )
        if self.max_pose_height is not None and self.min_pose_height is not None:
            _require(
                self.min_pose_height <= self.max_pose_height,
                "minPoseHeight must not exceed maxPoseHeight",
            )


@dataclass
class SmootherConfig:
    """Kalman position smoother options."""

    measurement_noise_variance: float = 1.0
    process_noise_variance_factor: float = 1.0

    def __post_init__(self) -> None:
        _require(
            self.measurement_noise_variance > 0,
            "measurementNoiseVariance must be positive",
        )
        _require(
            self.process_noise_variance_factor >= 0,
            "processNoiseVarianceFactor must be >= 0",
        )


@dataclass
class DeviceConfig:
    """Options for one device estimator (pipeline + smoother + input policy)."""

    registration: RegistrationConfig = field(default_factory=RegistrationConfig)
    smoother: SmootherConfig = field(default_factory=SmootherConfig)
    max_message_delay_sec: float = 5.0  # Older frames are dropped
    smoothing_enabled: bool = True

    def __post_init__(self) -> None:
        _require(self.max_message_delay_sec > 0, "maxMessageDelaySec must be positive")

    @classmethod
    def from_dict(cls, options: Mapping[str, Any]) -> DeviceConfig:
        """Build a configuration from a flat mapping of camelCase options.

        Raises:
            ConfigError: On unknown option names or invalid values
        """
        sections: dict[str, dict[str, Any]] = {
            "registration": {},
            "smoother": {},
            "device": {},
        }
        for key, value in options.items():
            target = _OPTION_TABLE.get(key)
            if target is None:
                raise ConfigError(f"Unknown configuration option: {key!r}")
            section, attr = target
            sections[section][attr] = value

        try:
            return cls(
                registration=RegistrationConfig(**sections["registration"]),
                smoother=SmootherConfig(**sections["smoother"]),
                **sections["device"],
            )
        except TypeError as e:
            raise ConfigError(str(e)) from e

    def to_dict(self) -> dict[str, Any]:
        """Return the flat camelCase mapping accepted by from_dict()."""
        out: dict[str, Any] = {}
        for key, (section, attr) in _OPTION_TABLE.items():
            owner = {
                "registration": self.registration,
                "smoother": self.smoother,
                "device": self,
            }[section]
            out[key] = getattr(owner, attr)
        return out


def load_config(yaml_path: str | Path) -> DeviceConfig:
    """Load a DeviceConfig from a YAML file of camelCase options.

    An empty file yields the defaults.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ConfigError: If the file content is invalid
    """
    path = Path(yaml_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

    with open(path, "r") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Malformed YAML in {yaml_path}: {e}") from e

    if data is None:
        return DeviceConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping in {yaml_path}, got {type(data).__name__}")
    return DeviceConfig.from_dict(data)


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ConfigError(message)


def _camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _build_option_table() -> dict[str, tuple[str, str]]:
    table: dict[str, tuple[str, str]] = {}
    for section, owner in (
        ("registration", RegistrationConfig),
        ("smoother", SmootherConfig),
        ("device", DeviceConfig),
    ):
        for f in fields(owner):
            if f.name in ("registration", "smoother"):
                continue
            table[_camel_case(f.name)] = (section, f.name)
    return table


_OPTION_TABLE = _build_option_table()
