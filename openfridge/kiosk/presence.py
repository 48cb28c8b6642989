"""Camera presence detection for the idle screen."""

import asyncio
import threading
from typing import Awaitable, Callable, Protocol

import cv2
import numpy as np

from openfridge.utils.logging import get_logger

logger = get_logger(__name__)

SAMPLE_WIDTH = 120
SAMPLE_HEIGHT = 90
PIXEL_STRIDE = 4


class PresenceStrategy(Protocol):
    def detect(self, frame: np.ndarray) -> bool: ...

    def reset(self) -> None: ...


def _to_gray(frame: np.ndarray) -> np.ndarray:
    small = cv2.resize(frame, (SAMPLE_WIDTH, SAMPLE_HEIGHT), interpolation=cv2.INTER_AREA)
    if small.ndim == 3:
        return cv2.cvtColor(small, cv2.COLOR_BGR2GRAY)
    return small


class MotionStrategy:
    """
    Frame differencing on a downscaled grayscale image.

    Presence is reported when the mean absolute luminance difference from
    the previous sample, taken over every fourth pixel, exceeds the
    threshold. The first frame only primes the reference.
    """

    def __init__(self, threshold: float = 12.0):
        self.threshold = threshold
        self._previous: np.ndarray | None = None

    def detect(self, frame: np.ndarray) -> bool:
        gray = _to_gray(frame).astype(np.int16).ravel()[::PIXEL_STRIDE]
        previous, self._previous = self._previous, gray

        if previous is None:
            return False

        return float(np.abs(gray - previous).mean()) > self.threshold

    def reset(self) -> None:
        self._previous = None


class FaceStrategy:
    """Frontal face detection with OpenCV's bundled Haar cascade."""

    def __init__(self, min_size: int = 20):
        path = cv2.data.haarcascades + "haarcascade_frontalface_default.xml"
        self.cascade = cv2.CascadeClassifier(path)
        if self.cascade.empty():
            raise RuntimeError(f"Could not load face cascade from {path}")
        self.min_size = min_size

    def detect(self, frame: np.ndarray) -> bool:
        gray = _to_gray(frame)
        faces = self.cascade.detectMultiScale(
            gray,
            scaleFactor=1.1,
            minNeighbors=4,
            minSize=(self.min_size, self.min_size),
        )
        return len(faces) > 0

    def reset(self) -> None:
        pass


class FrameSource(Protocol):
    def acquire(self) -> None: ...

    def read(self) -> np.ndarray | None: ...

    def release(self) -> None: ...


class CameraFrameSource:
    """
    Local camera via ``cv2.VideoCapture``.

    Captures are not thread-safe: read and release are serialised so a
    release never runs while a worker thread is still reading.
    """

    def __init__(self, index: int = 0):
        self.index = index
        self._capture: cv2.VideoCapture | None = None
        self._io_lock = threading.Lock()

    def acquire(self) -> None:
        with self._io_lock:
            if self._capture is not None:
                return
            capture = cv2.VideoCapture(self.index)
            if not capture.isOpened():
                capture.release()
                raise RuntimeError(f"Camera {self.index} is not available")
            self._capture = capture
        logger.info("camera_acquired", index=self.index)

    def read(self) -> np.ndarray | None:
        with self._io_lock:
            if self._capture is None:
                return None
            ok, frame = self._capture.read()
        return frame if ok else None

    def release(self) -> None:
        with self._io_lock:
            if self._capture is None:
                return
            self._capture.release()
            self._capture = None
        logger.info("camera_released", index=self.index)


class PresenceDetector:
    """
    Fires at most once per idle period.

    Uses face detection when available and falls back to motion detection
    when the face model cannot be loaded or fails on a frame. After firing,
    further detections are suppressed until ``reset``.
    """

    def __init__(
        self,
        motion_threshold: float = 12.0,
        face_detection: bool = True,
    ):
        self.motion = MotionStrategy(motion_threshold)
        self.face: FaceStrategy | None = None
        self.fired = False

        if face_detection:
            try:
                self.face = FaceStrategy()
            except (RuntimeError, cv2.error) as e:
                logger.warning("face_detection_unavailable", error=str(e))

    @property
    def strategy_name(self) -> str:
        return "face" if self.face is not None else "motion"

    def sample(self, frame: np.ndarray) -> bool:
        """
        Evaluate one frame.

        Returns:
            True exactly once per idle period, on the first detection
        """
        if self.fired:
            return False

        detected = False
        if self.face is not None:
            try:
                detected = self.face.detect(frame)
            except cv2.error as e:
                logger.warning("face_detection_failed", error=str(e))
                self.face = None

        # Motion keeps its reference frame current even when a face was found
        if self.motion.detect(frame) and self.face is None:
            detected = True

        if detected:
            self.fired = True
        return detected

    def reset(self) -> None:
        """Re-arm for the next idle period."""
        self.fired = False
        self.motion.reset()

    async def watch(
        self,
        source: FrameSource,
        on_presence: Callable[[], Awaitable[None]],
        interval: float = 0.6,
    ) -> None:
        """
        Sample frames from ``source`` until presence fires or the task is
        cancelled. The source is acquired for the duration of the watch and
        always released. Release goes through a worker thread too, so a
        source that serialises its IO waits for a read still in flight
        instead of blocking the event loop.
        """
        await asyncio.to_thread(source.acquire)
        try:
            while True:
                frame = await asyncio.to_thread(source.read)
                if frame is not None and self.sample(frame):
                    logger.info("presence_detected", strategy=self.strategy_name)
                    await on_presence()
                    return
                await asyncio.sleep(interval)
        finally:
            await asyncio.to_thread(source.release)
