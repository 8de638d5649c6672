"""
Audio effects: delay line, convolution reverb and the chain joining them.

Effects are stateful block processors. The delay history and the reverb
tail carry over from one ``process`` call to the next, so the same objects
serve offline rendering (one big block) and real-time streaming (many small
blocks) with identical output.
"""

from abc import ABC, abstractmethod

import numpy as np
from numpy.typing import NDArray
from scipy import signal

from aliensynth.core.logging import get_logger

logger = get_logger(__name__)

# Convolver normalization constants of the Web Audio reverb
GAIN_CALIBRATION = 0.00125  # -58 dB
GAIN_CALIBRATION_SAMPLE_RATE = 44100.0
MIN_POWER = 0.000125


class EffectBase(ABC):
    """Base class for audio effects."""

    def __init__(self, sample_rate: int = 44100):
        """
        Initialize effect.

        Args:
            sample_rate: Audio sample rate in Hz
        """
        self.sample_rate = sample_rate
        self.enabled = True

    @abstractmethod
    def process(self, samples: np.ndarray) -> np.ndarray:
        """
        Process one block of audio samples.

        Args:
            samples: Input audio samples

        Returns:
            Processed audio samples
        """
        pass

    @abstractmethod
    def reset(self):
        """Clear all internal state (history, tails)."""
        pass

    def set_enabled(self, enabled: bool):
        """Enable or disable the effect."""
        self.enabled = enabled


class DelayLine(EffectBase):
    """
    Pure delay over a circular history buffer.

    The buffer is sized for the maximum delay, so changing the delay time
    only moves the read head and keeps the history intact.
    """

    def __init__(
        self,
        sample_rate: int = 44100,
        delay_time: float = 0.0,
        max_delay_time: float = 5.0
    ):
        """
        Initialize delay line.

        Args:
            sample_rate: Audio sample rate
            delay_time: Delay time in seconds
            max_delay_time: Largest delay the buffer can hold, in seconds
        """
        super().__init__(sample_rate)
        self.max_delay_time = max_delay_time
        self.buffer = np.zeros(max(1, int(round(max_delay_time * sample_rate))))
        self.write_idx = 0
        self.delay_samples = 0
        self.set_delay_time(delay_time)

    @property
    def delay_time(self) -> float:
        return self.delay_samples / self.sample_rate

    def set_delay_time(self, delay_time: float):
        """Set delay time in seconds."""
        delay_samples = int(round(delay_time * self.sample_rate))
        if delay_time < 0 or delay_samples > len(self.buffer):
            raise ValueError(
                f"delay time {delay_time}s outside [0, {self.max_delay_time}]s"
            )
        self.delay_samples = delay_samples

    def process(self, samples: NDArray[np.float64]) -> NDArray[np.float64]:
        """Write each sample into the history and read the one from delay_samples ago."""
        n = len(samples)
        size = len(self.buffer)
        output = np.empty(n, dtype=np.float64)
        delay = self.delay_samples if self.enabled else 0

        # Chunks no longer than the delay never read what they write
        step = delay if delay > 0 else n
        for start in range(0, n, max(step, 1)):
            chunk = samples[start:start + step]
            m = len(chunk)
            write_pos = (self.write_idx + np.arange(m)) % size
            if delay > 0:
                output[start:start + m] = self.buffer[(write_pos - delay) % size]
            else:
                output[start:start + m] = chunk
            self.buffer[write_pos] = chunk
            self.write_idx = (self.write_idx + m) % size

        return output

    def reset(self):
        self.buffer.fill(0)
        self.write_idx = 0


class ConvolutionReverb(EffectBase):
    """
    Convolution reverb against a (stereo) impulse response.

    Mono input is convolved with each impulse channel via FFT; the part of
    each block's response that spills past the block is kept as a tail and
    overlap-added into the following blocks.
    """

    def __init__(
        self,
        impulse: NDArray[np.float64],
        sample_rate: int = 44100,
        normalize: bool = True
    ):
        """
        Initialize reverb.

        Args:
            impulse: Impulse response of shape (length, channels)
            sample_rate: Audio sample rate
            normalize: Scale the impulse by its power like the Web Audio
                convolver does
        """
        super().__init__(sample_rate)
        if impulse.ndim == 1:
            impulse = impulse[:, np.newaxis]
        self.n_channels = impulse.shape[1]
        self.scale = self.normalization_scale(impulse, sample_rate) if normalize else 1.0
        self.kernel = impulse * self.scale
        self.tail = np.zeros((len(impulse) - 1, self.n_channels))

    @staticmethod
    def normalization_scale(impulse: NDArray[np.float64], sample_rate: int) -> float:
        """Gain that brings an impulse of any loudness to a calibrated level."""
        power = np.sqrt(np.sum(impulse ** 2) / impulse.size)
        if not np.isfinite(power) or power < MIN_POWER:
            power = MIN_POWER
        return float(GAIN_CALIBRATION / power * GAIN_CALIBRATION_SAMPLE_RATE / sample_rate)

    def process(self, samples: NDArray[np.float64]) -> NDArray[np.float64]:
        """
        Convolve a mono block.

        Returns:
            Array of shape (len(samples), channels)
        """
        n = len(samples)
        if not self.enabled:
            return np.repeat(np.asarray(samples, dtype=np.float64)[:, np.newaxis], self.n_channels, axis=1)

        tail_len = len(self.tail)
        if not np.any(samples):
            # Silence in: only the stored tail comes out
            output = np.zeros((n, self.n_channels))
            k = min(n, tail_len)
            output[:k] = self.tail[:k]
            remaining = np.zeros_like(self.tail)
            remaining[:tail_len - k] = self.tail[k:]
            self.tail = remaining
            return output

        full = np.empty((n + tail_len, self.n_channels))
        for channel in range(self.n_channels):
            full[:, channel] = signal.fftconvolve(samples, self.kernel[:, channel])
        full[:tail_len] += self.tail

        self.tail = full[n:].copy()
        return full[:n]

    def reset(self):
        self.tail.fill(0)


class EffectChain:
    """
    Voice bus -> delay line -> convolution reverb -> output.

    Owned by the engine and shared by every note, so delay echoes and the
    reverb tail keep sounding across note boundaries.
    """

    def __init__(
        self,
        impulse: NDArray[np.float64],
        sample_rate: int = 44100,
        max_delay_time: float = 5.0
    ):
        """
        Initialize effect chain.

        Args:
            impulse: Reverb impulse response (length, channels)
            sample_rate: Audio sample rate
            max_delay_time: Delay line capacity in seconds
        """
        self.sample_rate = sample_rate
        self.delay = DelayLine(sample_rate, 0.0, max_delay_time)
        self.reverb = ConvolutionReverb(impulse, sample_rate)

        logger.info(
            "effect_chain_initialized",
            impulse_samples=len(impulse),
            channels=self.reverb.n_channels,
            max_delay_time=max_delay_time
        )

    @property
    def n_channels(self) -> int:
        return self.reverb.n_channels

    def set_delay_time(self, delay_time: float):
        """Update the delay time."""
        self.delay.set_delay_time(delay_time)

    def process(self, bus: NDArray[np.float64]) -> NDArray[np.float64]:
        """Run one mono block through the chain and return (n, channels)."""
        return self.reverb.process(self.delay.process(bus))

    def reset(self):
        """Silence the delay history and the reverb tail."""
        self.delay.reset()
        self.reverb.reset()
