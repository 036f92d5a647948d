"""
Capture Devices - Camera and microphone acquisition

Each device is an async context manager: entering acquires the
hardware (raising DeviceUnavailable on permission/hardware failure),
read() yields control while the device produces data, and exiting
always releases the handle, including on error and cancellation.

Blocking reads run in a worker thread. A handle is never released
while such a read is still inside the driver: exit waits for the
in-flight read, and if it does not return within DRAIN_TIMEOUT_SECONDS
the release happens as soon as the thread finishes.
"""

import asyncio
import logging

import cv2
import numpy as np

from ..exam.errors import DeviceUnavailable

logger = logging.getLogger(__name__)

DRAIN_TIMEOUT_SECONDS = 1.0


async def _acquire(open_func, release):
    """
    Run a blocking open in a worker thread.

    If the caller is cancelled while the open is in flight, the handle
    is released as soon as the thread finishes.
    """
    future = asyncio.ensure_future(asyncio.to_thread(open_func))
    try:
        return await asyncio.shield(future)
    except asyncio.CancelledError:
        def _release_late(f):
            if not f.cancelled() and f.exception() is None:
                release(f.result())
        future.add_done_callback(_release_late)
        raise


class _ThreadedDevice:
    """Tracks the in-flight worker-thread read so release can wait for it"""

    drain_timeout = DRAIN_TIMEOUT_SECONDS

    def __init__(self):
        self._pending_read = None

    async def _read_in_thread(self, func, *args, **kwargs):
        future = asyncio.ensure_future(asyncio.to_thread(func, *args, **kwargs))
        self._pending_read = future
        return await asyncio.shield(future)

    async def __aexit__(self, exc_type, exc, tb):
        pending, self._pending_read = self._pending_read, None
        if pending is not None and not pending.done():
            await asyncio.wait({pending}, timeout=self.drain_timeout)
            if not pending.done():
                logger.warning(f"{type(self).__name__}: read still in progress; releasing when it returns")
                pending.add_done_callback(lambda f: self.close())
                return False
        self.close()
        return False

    def close(self):
        raise NotImplementedError


class CameraCapture(_ThreadedDevice):
    """OpenCV webcam capture"""

    def __init__(self, camera_index: int = 0, width: int = 640, height: int = 480):
        super().__init__()
        self.camera_index = camera_index
        self.width = width
        self.height = height
        self._cap = None

    @property
    def is_open(self) -> bool:
        return self._cap is not None

    def _open(self) -> cv2.VideoCapture:
        cap = cv2.VideoCapture(self.camera_index)
        if not cap.isOpened():
            cap.release()
            raise DeviceUnavailable(f"Unable to access camera {self.camera_index}")
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        return cap

    async def __aenter__(self):
        self._cap = await _acquire(self._open, lambda cap: cap.release())
        logger.info(f"Camera {self.camera_index} opened")
        return self

    async def read(self) -> np.ndarray:
        if self._cap is None:
            raise DeviceUnavailable("Camera is not open")
        ok, frame = await self._read_in_thread(self._cap.read)
        if not ok or frame is None:
            raise DeviceUnavailable("Camera stopped producing frames")
        return frame

    def close(self):
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            logger.info(f"Camera {self.camera_index} released")


class MicrophoneCapture(_ThreadedDevice):
    """
    PyAudio microphone capture producing int16 mono buffers.

    Note: Requires PyAudio (install the 'devices' extra). A missing
    PyAudio is reported the same way as a missing microphone.
    """

    def __init__(self, sample_rate: int = 44100, chunk_size: int = 1024):
        super().__init__()
        self.sample_rate = sample_rate
        self.chunk_size = chunk_size
        self._audio = None
        self._stream = None

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def _open(self):
        try:
            import pyaudio
        except ImportError as e:
            raise DeviceUnavailable("PyAudio not installed; microphone unavailable") from e

        audio = pyaudio.PyAudio()
        try:
            stream = audio.open(
                format=pyaudio.paInt16,
                channels=1,
                rate=self.sample_rate,
                input=True,
                frames_per_buffer=self.chunk_size
            )
        except (OSError, ValueError) as e:
            audio.terminate()
            raise DeviceUnavailable(f"Unable to access microphone: {e}") from e
        return audio, stream

    async def __aenter__(self):
        self._audio, self._stream = await _acquire(self._open, _close_audio)
        logger.info("Microphone opened")
        return self

    async def read(self) -> bytes:
        if self._stream is None:
            raise DeviceUnavailable("Microphone is not open")
        try:
            return await self._read_in_thread(
                self._stream.read, self.chunk_size, exception_on_overflow=False
            )
        except OSError as e:
            raise DeviceUnavailable(f"Microphone read failed: {e}") from e

    def close(self):
        if self._stream is not None:
            handles = (self._audio, self._stream)
            self._audio = self._stream = None
            _close_audio(handles)
            logger.info("Microphone released")


def _close_audio(handles):
    audio, stream = handles
    try:
        stream.stop_stream()
        stream.close()
    finally:
        audio.terminate()
