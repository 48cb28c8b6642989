"""Tests for presence detection."""

import asyncio
import threading

import numpy as np
import pytest

from openfridge.kiosk.presence import CameraFrameSource, MotionStrategy, PresenceDetector


def frame(value: int) -> np.ndarray:
    return np.full((120, 160, 3), value, dtype=np.uint8)


class ListFrameSource:
    """Replays frames, then repeats the last one."""

    def __init__(self, frames: list[np.ndarray]):
        self.frames = list(frames)
        self.acquired = False
        self.released = False
        self.reads = 0

    def acquire(self) -> None:
        self.acquired = True

    def read(self) -> np.ndarray | None:
        self.reads += 1
        if len(self.frames) > 1:
            return self.frames.pop(0)
        return self.frames[0] if self.frames else None

    def release(self) -> None:
        self.released = True


class BlockingCapture:
    """Capture whose reads hang until told to proceed."""

    def __init__(self, index: int):
        self.index = index
        self.proceed = threading.Event()
        self.reading = threading.Event()
        self.in_read = False
        self.released = False
        self.released_during_read = False

    def isOpened(self) -> bool:
        return True

    def read(self) -> tuple[bool, np.ndarray]:
        self.in_read = True
        self.reading.set()
        self.proceed.wait(timeout=2.0)
        self.in_read = False
        return True, frame(0)

    def release(self) -> None:
        self.released_during_read = self.in_read
        self.released = True


@pytest.fixture
def captures(monkeypatch: pytest.MonkeyPatch) -> list[BlockingCapture]:
    opened: list[BlockingCapture] = []

    def open_capture(index: int) -> BlockingCapture:
        capture = BlockingCapture(index)
        opened.append(capture)
        return capture

    monkeypatch.setattr("openfridge.kiosk.presence.cv2.VideoCapture", open_capture)
    return opened


def test_first_frame_only_primes_motion() -> None:
    motion = MotionStrategy(threshold=12.0)

    assert motion.detect(frame(0)) is False
    assert motion.detect(frame(0)) is False
    assert motion.detect(frame(200)) is True


def test_small_changes_stay_below_threshold() -> None:
    motion = MotionStrategy(threshold=12.0)

    motion.detect(frame(100))
    assert motion.detect(frame(105)) is False


def test_motion_reset_forgets_reference() -> None:
    motion = MotionStrategy()
    motion.detect(frame(0))

    motion.reset()

    assert motion.detect(frame(255)) is False


def test_detector_fires_once_until_reset() -> None:
    """Test that a detector reports presence once per idle period."""
    detector = PresenceDetector(face_detection=False)
    assert detector.strategy_name == "motion"

    assert detector.sample(frame(0)) is False
    assert detector.sample(frame(255)) is True
    assert detector.sample(frame(0)) is False
    assert detector.fired is True

    detector.reset()
    assert detector.fired is False
    assert detector.sample(frame(255)) is False
    assert detector.sample(frame(0)) is True


@pytest.mark.asyncio
async def test_watch_calls_back_and_releases_source() -> None:
    detector = PresenceDetector(face_detection=False)
    source = ListFrameSource([frame(0), frame(0), frame(255)])
    calls: list[str] = []

    async def on_presence() -> None:
        calls.append("presence")

    await asyncio.wait_for(detector.watch(source, on_presence, interval=0), timeout=2.0)

    assert calls == ["presence"]
    assert source.acquired is True
    assert source.released is True
    assert source.reads == 3


@pytest.mark.asyncio
async def test_cancelled_watch_releases_source() -> None:
    detector = PresenceDetector(face_detection=False)
    source = ListFrameSource([frame(50)])

    async def on_presence() -> None:
        raise AssertionError("a still scene is not presence")

    task = asyncio.create_task(detector.watch(source, on_presence, interval=0.01))
    while source.reads < 3:
        await asyncio.sleep(0.01)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert source.released is True
    assert detector.fired is False


@pytest.mark.asyncio
async def test_camera_release_waits_for_read_in_flight(captures: list[BlockingCapture]) -> None:
    source = CameraFrameSource(index=2)
    source.acquire()
    [capture] = captures

    read = asyncio.create_task(asyncio.to_thread(source.read))
    await asyncio.to_thread(capture.reading.wait, 2.0)
    release = asyncio.create_task(asyncio.to_thread(source.release))
    await asyncio.sleep(0.05)

    assert capture.released is False

    capture.proceed.set()
    result = await read
    await release

    assert result is not None
    assert capture.released is True
    assert capture.released_during_read is False
    assert source.read() is None


@pytest.mark.asyncio
async def test_cancelled_watch_releases_camera_after_read(
    captures: list[BlockingCapture],
) -> None:
    """Test cancelling a watch while a camera read is blocked in its worker thread."""
    detector = PresenceDetector(face_detection=False)

    async def on_presence() -> None:
        raise AssertionError("presence should not fire")

    task = asyncio.create_task(detector.watch(CameraFrameSource(), on_presence, interval=0.01))
    while not captures:
        await asyncio.sleep(0.01)
    [capture] = captures
    await asyncio.to_thread(capture.reading.wait, 2.0)

    task.cancel()
    await asyncio.sleep(0.05)
    assert capture.released is False

    capture.proceed.set()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert capture.released is True
    assert capture.released_during_read is False
