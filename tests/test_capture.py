"""
Tests for camera and microphone capture

OpenCV and PyAudio are patched so no hardware is touched.
"""

import asyncio
import sys
import threading
import time

import numpy as np
import pytest
from unittest.mock import MagicMock, Mock, patch

from xhoraproc.exam.errors import DeviceUnavailable
from xhoraproc.proctor.capture import CameraCapture, MicrophoneCapture


def fake_video_capture(opened=True, frames=()):
    cap = Mock()
    cap.isOpened.return_value = opened
    cap.read.side_effect = list(frames)
    return cap


class TestCameraCapture:
    """Tests for CameraCapture"""

    @pytest.mark.asyncio
    async def test_read_and_release(self):
        """Test frames are read and the camera is released on exit"""
        frame = np.zeros((480, 640, 3), dtype=np.uint8)
        cap = fake_video_capture(frames=[(True, frame)])

        with patch("xhoraproc.proctor.capture.cv2.VideoCapture", return_value=cap):
            async with CameraCapture(camera_index=1) as camera:
                assert camera.is_open
                assert (await camera.read()) is frame

        cap.release.assert_called_once()
        assert not camera.is_open

    @pytest.mark.asyncio
    async def test_camera_not_opened(self):
        """Test a camera that fails to open is unavailable and released"""
        cap = fake_video_capture(opened=False)

        with patch("xhoraproc.proctor.capture.cv2.VideoCapture", return_value=cap):
            with pytest.raises(DeviceUnavailable):
                async with CameraCapture():
                    pass

        cap.release.assert_called_once()

    @pytest.mark.asyncio
    async def test_camera_stops_producing_frames(self):
        """Test a failed read is a device failure and still releases"""
        cap = fake_video_capture(frames=[(False, None)])

        with patch("xhoraproc.proctor.capture.cv2.VideoCapture", return_value=cap):
            with pytest.raises(DeviceUnavailable):
                async with CameraCapture() as camera:
                    await camera.read()

        cap.release.assert_called_once()


class TestMicrophoneCapture:
    """Tests for MicrophoneCapture"""

    @pytest.mark.asyncio
    async def test_pyaudio_missing(self):
        """Test a missing PyAudio is reported as an unavailable device"""
        with patch.dict(sys.modules, {"pyaudio": None}):
            with pytest.raises(DeviceUnavailable):
                async with MicrophoneCapture():
                    pass

    @pytest.mark.asyncio
    async def test_read_and_release(self):
        """Test buffers are read and the stream is closed on exit"""
        pyaudio = MagicMock()
        audio = pyaudio.PyAudio.return_value
        stream = audio.open.return_value
        stream.read.return_value = b"\x00\x01" * 1024

        with patch.dict(sys.modules, {"pyaudio": pyaudio}):
            async with MicrophoneCapture(sample_rate=16000, chunk_size=1024) as mic:
                data = await mic.read()

        assert data == b"\x00\x01" * 1024
        stream.read.assert_called_once_with(1024, exception_on_overflow=False)
        stream.close.assert_called_once()
        audio.terminate.assert_called_once()

    @pytest.mark.asyncio
    async def test_microphone_open_fails(self):
        """Test a microphone permission error is unavailable and terminates PyAudio"""
        pyaudio = MagicMock()
        audio = pyaudio.PyAudio.return_value
        audio.open.side_effect = OSError("Invalid input device")

        with patch.dict(sys.modules, {"pyaudio": pyaudio}):
            with pytest.raises(DeviceUnavailable):
                async with MicrophoneCapture():
                    pass

        audio.terminate.assert_called_once()


class SlowVideoCapture:
    """Camera handle whose read blocks in the worker thread"""

    def __init__(self, read_seconds: float):
        self.read_seconds = read_seconds
        self.reading = threading.Event()
        self.in_read = False
        self.released = False
        self.released_during_read = False

    def read(self):
        self.in_read = True
        self.reading.set()
        time.sleep(self.read_seconds)
        self.in_read = False
        return True, np.zeros((4, 4, 3), dtype=np.uint8)

    def release(self):
        self.released_during_read = self.in_read
        self.released = True


async def cancel_read_in_flight(device):
    task = asyncio.get_running_loop().create_task(device.read())
    await asyncio.to_thread(device._cap.reading.wait, 1.0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


class TestReleaseDuringRead:
    """Tests that exit never tears down a handle mid-read"""

    @pytest.mark.asyncio
    async def test_exit_waits_for_in_flight_read(self):
        """Test a cancelled read finishes before the camera is released"""
        cap = SlowVideoCapture(read_seconds=0.2)
        camera = CameraCapture()
        camera._cap = cap

        await cancel_read_in_flight(camera)
        await camera.__aexit__(asyncio.CancelledError, None, None)

        assert cap.released
        assert not cap.released_during_read
        assert not camera.is_open

    @pytest.mark.asyncio
    async def test_release_deferred_past_drain_timeout(self):
        """Test a read outliving the drain timeout releases once it returns"""
        cap = SlowVideoCapture(read_seconds=0.2)
        camera = CameraCapture()
        camera.drain_timeout = 0.01
        camera._cap = cap

        await cancel_read_in_flight(camera)
        await camera.__aexit__(asyncio.CancelledError, None, None)

        assert not cap.released
        deadline = time.monotonic() + 2.0
        while not cap.released and time.monotonic() < deadline:
            await asyncio.sleep(0.01)

        assert cap.released
        assert not cap.released_during_read

    @pytest.mark.asyncio
    async def test_microphone_exit_waits_for_read(self):
        """Test the PyAudio stream is closed only after the read returns"""
        pyaudio = MagicMock()
        audio = pyaudio.PyAudio.return_value
        stream = audio.open.return_value
        reading = threading.Event()
        state = {"in_read": False, "closed_during_read": None}

        def slow_read(*args, **kwargs):
            state["in_read"] = True
            reading.set()
            time.sleep(0.2)
            state["in_read"] = False
            return b"\x00\x00" * 1024

        def close():
            state["closed_during_read"] = state["in_read"]

        stream.read.side_effect = slow_read
        stream.close.side_effect = close

        with patch.dict(sys.modules, {"pyaudio": pyaudio}):
            mic = MicrophoneCapture()
            await mic.__aenter__()
            task = asyncio.get_running_loop().create_task(mic.read())
            await asyncio.to_thread(reading.wait, 1.0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            await mic.__aexit__(asyncio.CancelledError, None, None)

        assert state["closed_during_read"] is False
        audio.terminate.assert_called_once()
