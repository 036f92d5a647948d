"""
Audio Detector - Normalized loudness of microphone buffers

Implements the audio analyzer capability: given a buffer of int16 PCM
samples, return a loudness level in [0, 100]. The level mirrors a
browser analyser node: the mean of the byte-scaled FFT magnitude
spectrum, as a percentage.
"""

import logging
from typing import Union

import numpy as np

logger = logging.getLogger(__name__)


class AudioDetector:
    """
    Computes a normalized loudness level from raw audio.

    Magnitudes are converted to decibels, clamped to
    [min_decibels, max_decibels], scaled to 0-255 and averaged.
    """

    DEFAULT_FFT_SIZE = 256
    DEFAULT_MIN_DECIBELS = -100.0
    DEFAULT_MAX_DECIBELS = -30.0

    def __init__(
        self,
        fft_size: int = DEFAULT_FFT_SIZE,
        min_decibels: float = DEFAULT_MIN_DECIBELS,
        max_decibels: float = DEFAULT_MAX_DECIBELS
    ):
        if fft_size < 2 or fft_size & (fft_size - 1):
            raise ValueError("fft_size must be a power of two >= 2")
        if max_decibels <= min_decibels:
            raise ValueError("max_decibels must be greater than min_decibels")

        self.fft_size = fft_size
        self.min_decibels = min_decibels
        self.max_decibels = max_decibels
        self._window = np.hanning(fft_size)

    def sample_loudness(self, buffer: Union[bytes, np.ndarray]) -> float:
        """
        Compute loudness of the most recent fft_size samples.

        Args:
            buffer: Raw int16 bytes or a numpy array of samples

        Returns:
            Level in [0, 100]
        """
        if isinstance(buffer, (bytes, bytearray, memoryview)):
            samples = np.frombuffer(buffer, dtype=np.int16)
        else:
            samples = np.asarray(buffer)

        if samples.size == 0:
            return 0.0

        if samples.dtype == np.int16:
            signal = samples.astype(np.float64) / 32768.0
        else:
            signal = samples.astype(np.float64)

        # Use the latest window, zero-padded at the front when short
        signal = signal[-self.fft_size:]
        if signal.size < self.fft_size:
            signal = np.concatenate([np.zeros(self.fft_size - signal.size), signal])

        spectrum = np.abs(np.fft.rfft(signal * self._window))[: self.fft_size // 2]
        magnitudes = spectrum / self.fft_size

        with np.errstate(divide="ignore"):
            decibels = 20.0 * np.log10(magnitudes)

        span = self.max_decibels - self.min_decibels
        scaled = (decibels - self.min_decibels) / span * 255.0
        byte_values = np.clip(np.nan_to_num(scaled, neginf=0.0), 0.0, 255.0)

        level = float(np.mean(byte_values) / 255.0 * 100.0)
        return min(100.0, max(0.0, level))

    __call__ = sample_loudness
