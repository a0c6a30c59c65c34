#!/usr/bin/env python3
"""Demo script for registering a device against a fixed RGB-D camera.

A synthetic textured wall stands 2 m in front of the fixed camera. A device
slides sideways in front of it while reporting a (slightly noisy) pose from
its own tracking. The recovered tracking origin -> world transform should
stay put.

Usage:
    uv run python examples/registration_demo.py
"""

import logging
import time

import cv2
import numpy as np

from arreg import (
    CameraIntrinsics,
    DeviceConfig,
    DeviceEstimator,
    FixedCameraFrame,
    FrameInput,
    Pose,
    RegistrationStatus,
)
from arreg.estimation.frame_composer import HANDEDNESS_CHANGE

WIDTH = 640
HEIGHT = 480
MARGIN = 40
WALL_DEPTH = 2.0
INTRINSICS = CameraIntrinsics(fx=500.0, fy=500.0, cx=320.0, cy=240.0)

_X = np.array([1.0, 0.0, 0.0])
_Z = np.array([0.0, 0.0, 1.0])


def make_wall(seed: int = 0, block: int = 8) -> np.ndarray:
    """Blocky random texture, MARGIN pixels wider than one camera image."""
    rng = np.random.default_rng(seed)
    small = rng.integers(0, 256, size=(HEIGHT // block + 1, (WIDTH + MARGIN) // block + 1), dtype=np.uint8)
    big = cv2.resize(small, (small.shape[1] * block, small.shape[0] * block), interpolation=cv2.INTER_NEAREST)
    return big[:HEIGHT, : WIDTH + MARGIN].copy()


def native_device_pose(converted: Pose) -> Pose:
    """Invert the device pose conversion: the pose a device would report."""
    mount_x = Pose.from_axis_angle(_X, np.pi).rotation
    mount_z = Pose.from_axis_angle(_Z, np.pi / 2).rotation
    relabelled = mount_x.T @ converted.rotation @ mount_z.T
    return Pose(
        rotation=HANDEDNESS_CHANGE.T @ relabelled @ HANDEDNESS_CHANGE,
        translation=HANDEDNESS_CHANGE.T @ converted.translation,
    )


def main() -> None:
    """Run the registration demo."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s: %(message)s")

    # Configuration
    n_frames = 40
    frame_rate = 30.0
    pose_noise_m = 0.005
    config = DeviceConfig.from_dict({"reprojectionErrorDiscardThreshold": 3.0, "measurementNoiseVariance": 0.5})

    fixed_camera_to_world = Pose.from_axis_angle(_Z, 0.3, np.array([1.0, 2.0, 1.5]))
    true_transform = Pose.from_axis_angle(_Z, -0.7, np.array([0.4, -1.2, 0.0]))

    # Fixed camera sees the middle of the wall
    wall = make_wall()
    fixed_image = wall[:, MARGIN // 2 : MARGIN // 2 + WIDTH]
    fixed = FixedCameraFrame(
        image=fixed_image,
        depth=np.full((HEIGHT, WIDTH), WALL_DEPTH, dtype=np.float32),
        intrinsics=INTRINSICS,
        timestamp=time.time(),
    )

    print("Initializing device estimator...")
    device = DeviceEstimator("demo-device", fixed_camera_to_world, config)
    rng = np.random.default_rng(42)
    start = time.time()

    print(f"Processing {n_frames} frames...")
    print()
    print(f"{'Frame':>6} {'Status':<24} {'Inlr':>5} {'Reproj':>7} {'Total':>8} | {'Translation (raw)':<27} | {'Translation (smoothed)'}")
    print("-" * 110)

    accepted = []
    status_counts: dict[RegistrationStatus, int] = {}

    for i in range(n_frames):
        # Shift in whole pixels keeps the device image an exact crop of the wall
        shift = i % (MARGIN // 2 + 1)
        device_image = wall[:, MARGIN // 2 - shift : MARGIN // 2 - shift + WIDTH]
        device_in_fixed = Pose.from_translation(np.array([-shift * WALL_DEPTH / INTRINSICS.fx, 0.0, 0.0]))

        # What the device's own tracking would report
        converted = true_transform.inverse() @ fixed_camera_to_world @ device_in_fixed
        reported = native_device_pose(converted)
        reported = Pose(
            rotation=reported.rotation,
            translation=reported.translation + rng.normal(0.0, pose_noise_m, 3),
        )

        timestamp = start + i / frame_rate
        frame = FrameInput.from_image(
            device_image, device.estimator.detector, INTRINSICS, reported, timestamp
        )
        result = device.process(frame, fixed, now=timestamp)

        status_counts[result.status] = status_counts.get(result.status, 0) + 1
        reproj = "-" if result.reprojection_error is None else f"{result.reprojection_error:6.2f}"
        raw = smoothed = "-"
        if result.is_accepted:
            accepted.append(result.transform.translation)
            raw = np.array2string(result.transform.translation, precision=3, suppress_small=True)
            if result.smoothed_transform is not None:
                smoothed = np.array2string(result.smoothed_transform.translation, precision=3, suppress_small=True)

        print(
            f"{i:6d} {result.status.name:<24} {result.num_inliers:5d} {reproj:>7} "
            f"{result.timing.total_ms:6.1f}ms | {raw:<27} | {smoothed}"
        )

    # Final statistics
    print()
    print("=" * 80)
    print("SUMMARY")
    print("=" * 80)
    for status, count in sorted(status_counts.items()):
        print(f"{status.name:<24} {count}")
    print()
    print(f"True translation:     {np.array2string(true_transform.translation, precision=3)}")
    if accepted:
        mean = np.mean(accepted, axis=0)
        spread = np.std(accepted, axis=0)
        print(f"Mean raw translation: {np.array2string(mean, precision=3)} (std {np.array2string(spread, precision=4)})")
    if device.smoothed_estimate is not None:
        print(f"Final smoothed:       {np.array2string(device.smoothed_estimate.translation, precision=3)}")
        error = float(np.abs(device.smoothed_estimate.translation - true_transform.translation).max())
        print(f"Max axis error:       {error * 100:.1f} cm")


if __name__ == "__main__":
    main()
