"""Shared fixtures: a synthetic fixed camera / device scene.

The scene is a fronto-parallel textured plane 2 m in front of the fixed
camera. The device camera sits 4 cm to the side with the same orientation,
so its image is the fixed image shifted by exactly 10 pixels. Both images are
cut from one larger texture, which keeps level-0 ORB descriptors identical.
"""

from dataclasses import dataclass

import cv2
import numpy as np
import pytest

from arreg.camera import CameraIntrinsics
from arreg.frontend.frame_input import FixedCameraFrame
from arreg.pose import Pose

WIDTH = 640
HEIGHT = 480
PLANE_DEPTH = 2.0
SHIFT_PX = 10
INTRINSICS = CameraIntrinsics(fx=500.0, fy=500.0, cx=320.0, cy=240.0)
# Moving the device by +x in the fixed frame moves image content by +SHIFT_PX
DEVICE_OFFSET = SHIFT_PX * PLANE_DEPTH / INTRINSICS.fx


def make_texture(width: int, height: int, seed: int = 0, block: int = 8) -> np.ndarray:
    """Return a blocky random uint8 texture with plenty of ORB corners."""
    rng = np.random.default_rng(seed)
    small = rng.integers(
        0, 256, size=(height // block + 1, width // block + 1), dtype=np.uint8
    )
    big = cv2.resize(
        small,
        (small.shape[1] * block, small.shape[0] * block),
        interpolation=cv2.INTER_NEAREST,
    )
    return big[:height, :width].copy()


def project_points(pose: Pose, intrinsics: CameraIntrinsics, points: np.ndarray) -> np.ndarray:
    """Project reference-frame points through T_camera_reference."""
    return intrinsics.project(pose.transform_points(points))


def random_points_in_front(n: int, seed: int = 1) -> np.ndarray:
    """Return Nx3 points 1.5-4 m in front of a camera, inside its view."""
    rng = np.random.default_rng(seed)
    z = rng.uniform(1.5, 4.0, n)
    x = rng.uniform(-0.5, 0.5, n) * z
    y = rng.uniform(-0.4, 0.4, n) * z
    return np.column_stack([x, y, z])


@dataclass
class SyntheticScene:
    """Images, depth and ground truth of the synthetic scene."""

    fixed_image: np.ndarray
    device_image: np.ndarray
    depth: np.ndarray
    intrinsics: CameraIntrinsics
    solver_pose: Pose  # T_device_fixed
    device_pose: Pose  # As reported by the device (native convention)
    fixed_camera_to_world: Pose
    timestamp: float

    def fixed_frame(self) -> FixedCameraFrame:
        return FixedCameraFrame(
            image=self.fixed_image,
            depth=self.depth,
            intrinsics=self.intrinsics,
            timestamp=self.timestamp,
        )


@pytest.fixture
def intrinsics() -> CameraIntrinsics:
    return INTRINSICS


@pytest.fixture
def scene() -> SyntheticScene:
    """Create the shifted-plane scene.

    Returns:
        SyntheticScene with a depth map holding a small hole
    """
    texture = make_texture(WIDTH + 2 * SHIFT_PX, HEIGHT)
    fixed_image = texture[:, 2 * SHIFT_PX : 2 * SHIFT_PX + WIDTH].copy()
    device_image = texture[:, SHIFT_PX : SHIFT_PX + WIDTH].copy()

    depth = np.full((HEIGHT, WIDTH), PLANE_DEPTH, dtype=np.float32)
    depth[200:220, 300:320] = 0.0

    return SyntheticScene(
        fixed_image=fixed_image,
        device_image=device_image,
        depth=depth,
        intrinsics=INTRINSICS,
        solver_pose=Pose.from_translation(np.array([DEVICE_OFFSET, 0.0, 0.0])),
        device_pose=Pose.from_axis_angle(
            np.array([0.0, 1.0, 0.0]), 0.2, np.array([0.1, 1.4, -0.3])
        ),
        fixed_camera_to_world=Pose.from_axis_angle(
            np.array([0.0, 0.0, 1.0]), 0.3, np.array([1.0, 2.0, 1.5])
        ),
        timestamp=1000.0,
    )
