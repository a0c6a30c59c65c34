"""Device workers running each device's estimator in its own process.

Devices are independent, so several can be registered in parallel. Each
worker owns one DeviceEstimator; the caller only shares the immutable
configuration and fixed camera -> world transform with it.
"""

from __future__ import annotations

import logging
import multiprocessing as mp
import queue
from multiprocessing import Process, Queue
from queue import Empty
from typing import TYPE_CHECKING

from ..config import DeviceConfig
from ..device_estimator import DeviceEstimator
from ..errors import FeatureError, InputDecodeError
from ..estimation.registration_estimator import RegistrationResult
from ..estimation.status import RegistrationStatus
from ..pose import Pose
from .messages import FrameMessage, ResultMessage, ShutdownMessage

if TYPE_CHECKING:
    from multiprocessing import Queue as QueueType

logger = logging.getLogger(__name__)


def _to_result_message(
    device_id: str, frame_id: int, result: RegistrationResult
) -> ResultMessage:
    return ResultMessage(
        device_id=device_id,
        frame_id=frame_id,
        status=int(result.status),
        timestamp=result.timestamp,
        transform=None if result.transform is None else result.transform.to_matrix(),
        smoothed_transform=(
            None
            if result.smoothed_transform is None
            else result.smoothed_transform.to_matrix()
        ),
        num_inliers=result.num_inliers,
        reprojection_error=result.reprojection_error,
    )


def handle_frame(estimator: DeviceEstimator, msg: FrameMessage) -> ResultMessage:
    """Process one FrameMessage with `estimator` and build the reply."""
    try:
        device = msg.to_frame_input(estimator.estimator.detector)
    except InputDecodeError as e:
        logger.error("[%s] Frame %d unusable: %s", estimator.device_id, msg.frame_id, e)
        return ResultMessage(
            estimator.device_id,
            msg.frame_id,
            int(RegistrationStatus.INPUT_INVALID),
            msg.timestamp,
        )
    except FeatureError as e:
        logger.error(
            "[%s] Frame %d feature extraction failed: %s",
            estimator.device_id,
            msg.frame_id,
            e,
        )
        return ResultMessage(
            estimator.device_id,
            msg.frame_id,
            int(RegistrationStatus.DEVICE_FEATURES_FAILED),
            msg.timestamp,
        )

    result = estimator.process(device, msg.fixed_frame)
    return _to_result_message(estimator.device_id, msg.frame_id, result)


def _device_worker_main(
    inbox: "QueueType",
    outbox: "QueueType",
    device_id: str,
    fixed_camera_to_world: Pose,
    config: DeviceConfig,
) -> None:
    """Main loop for a device worker process.

    Args:
        inbox: Queue to receive FrameMessage / ShutdownMessage
        outbox: Queue to send ResultMessage
        device_id: Device served by this worker
        fixed_camera_to_world: Pose of the fixed camera in world
        config: Device options
    """
    estimator = DeviceEstimator(device_id, fixed_camera_to_world, config)

    logger.info("[%s] Worker started", device_id)

    while True:
        try:
            msg = inbox.get(timeout=1.0)
        except Empty:
            continue

        if isinstance(msg, ShutdownMessage):
            logger.info("[%s] Shutdown received", device_id)
            break

        if not isinstance(msg, FrameMessage):
            logger.warning("[%s] Ignoring unexpected message %r", device_id, type(msg))
            continue

        try:
            reply = handle_frame(estimator, msg)
        except Exception as e:
            # Keep serving the device; the caller gets the failure in the reply
            logger.exception("[%s] Frame %d failed", device_id, msg.frame_id)
            reply = ResultMessage(
                device_id,
                msg.frame_id,
                int(RegistrationStatus.INPUT_INVALID),
                msg.timestamp,
                error=repr(e),
            )
        outbox.put(reply)

    logger.info("[%s] Worker stopped", device_id)


class DeviceWorkerProcess:
    """Manages the worker process of one device.

    Provides start/stop lifecycle and message passing to/from the worker.
    """

    def __init__(
        self,
        device_id: str,
        fixed_camera_to_world: Pose,
        config: DeviceConfig | None = None,
        queue_size: int = 10,
    ) -> None:
        """Initialize worker manager.

        Args:
            device_id: Device served by the worker
            fixed_camera_to_world: Pose of the fixed camera in world
            config: Device options (defaults if None)
            queue_size: Maximum pending messages in each direction
        """
        self._device_id = device_id
        self._fixed_camera_to_world = fixed_camera_to_world
        self._config = config or DeviceConfig()
        self._queue_size = queue_size

        self._process: Process | None = None
        self._to_worker: Queue | None = None
        self._from_worker: Queue | None = None

    def start(self) -> None:
        """Start the worker process."""
        if self._process is not None:
            return

        ctx = mp.get_context("spawn")
        self._to_worker = ctx.Queue(maxsize=self._queue_size)
        self._from_worker = ctx.Queue(maxsize=self._queue_size)

        self._process = ctx.Process(
            target=_device_worker_main,
            args=(
                self._to_worker,
                self._from_worker,
                self._device_id,
                self._fixed_camera_to_world,
                self._config,
            ),
            daemon=True,
        )
        self._process.start()
        logger.debug("[%s] Worker process %s spawned", self._device_id, self._process.pid)

    def stop(self) -> None:
        """Stop the worker process."""
        if self._process is None:
            return

        if self._to_worker is not None:
            try:
                self._to_worker.put(ShutdownMessage(), timeout=1.0)
            except queue.Full:
                logger.warning("[%s] Worker inbox full, terminating", self._device_id)

        self._process.join(timeout=5.0)

        if self._process.is_alive():
            self._process.terminate()
            self._process.join(timeout=1.0)

        self._process = None
        self._to_worker = None
        self._from_worker = None

    def submit(self, msg: FrameMessage) -> bool:
        """Send a frame to the worker.

        Returns:
            True if queued, False if the worker is not running or its inbox
            is full
        """
        if self._to_worker is None:
            return False

        try:
            self._to_worker.put_nowait(msg)
            return True
        except queue.Full:
            logger.debug("[%s] Dropping frame %d, inbox full", self._device_id, msg.frame_id)
            return False

    def get_result(self, timeout: float = 0.0) -> ResultMessage | None:
        """Get the next result from the worker.

        Args:
            timeout: Timeout in seconds (0 for non-blocking)

        Returns:
            ResultMessage if available, None otherwise
        """
        if self._from_worker is None:
            return None

        try:
            if timeout > 0:
                return self._from_worker.get(timeout=timeout)
            else:
                return self._from_worker.get_nowait()
        except Empty:
            return None

    @property
    def device_id(self) -> str:
        return self._device_id

    @property
    def is_running(self) -> bool:
        """Check if process is running."""
        return self._process is not None and self._process.is_alive()


class DeviceWorkerPool:
    """One DeviceWorkerProcess per device id, started on first use."""

    def __init__(
        self,
        fixed_camera_to_world: Pose,
        config: DeviceConfig | None = None,
        queue_size: int = 10,
    ) -> None:
        self._fixed_camera_to_world = fixed_camera_to_world
        self._config = config or DeviceConfig()
        self._queue_size = queue_size
        self._workers: dict[str, DeviceWorkerProcess] = {}

    def worker(self, device_id: str) -> DeviceWorkerProcess:
        """Return the running worker of `device_id`, starting it if needed."""
        worker = self._workers.get(device_id)
        if worker is None:
            worker = DeviceWorkerProcess(
                device_id,
                self._fixed_camera_to_world,
                self._config,
                queue_size=self._queue_size,
            )
            self._workers[device_id] = worker
            logger.info("Starting worker for device %s", device_id)
        worker.start()
        return worker

    def submit(self, device_id: str, msg: FrameMessage) -> bool:
        return self.worker(device_id).submit(msg)

    def get_result(self, device_id: str, timeout: float = 0.0) -> ResultMessage | None:
        worker = self._workers.get(device_id)
        if worker is None:
            return None
        return worker.get_result(timeout=timeout)

    def remove(self, device_id: str) -> None:
        """Stop and forget the worker of `device_id`."""
        worker = self._workers.pop(device_id, None)
        if worker is not None:
            worker.stop()

    def stop_all(self) -> None:
        for device_id in list(self._workers):
            self.remove(device_id)

    @property
    def device_ids(self) -> list[str]:
        return list(self._workers)
