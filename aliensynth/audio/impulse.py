"""
Synthetic room impulse response for the convolution reverb.
"""

from typing import Optional

import numpy as np
from numpy.typing import NDArray

from aliensynth.core.logging import get_logger

logger = get_logger(__name__)


class ImpulseResponseSynthesizer:
    """
    Generates decaying white noise as a stand-in for a recorded room.

    Each channel is drawn independently:
    ``sample[i] = uniform(-1, 1) * (1 - i / length) ** 2``.
    """

    def __init__(self, n_channels: int = 2, seed: Optional[int] = None):
        """
        Initialize synthesizer.

        Args:
            n_channels: Number of output channels
            seed: Random seed; None draws fresh noise each time
        """
        self.n_channels = n_channels
        self.rng = np.random.default_rng(seed)

    @staticmethod
    def decay_envelope(length: int) -> NDArray[np.float64]:
        """Quadratic decay shared by every channel."""
        return (1.0 - np.arange(length, dtype=np.float64) / length) ** 2

    def synthesize(self, duration: float, sample_rate: int) -> NDArray[np.float64]:
        """
        Generate an impulse response.

        Args:
            duration: Length in seconds
            sample_rate: Sample rate in Hz

        Returns:
            Array of shape (duration * sample_rate, n_channels)
        """
        length = int(duration * sample_rate)
        if length <= 0:
            raise ValueError(f"impulse duration must be positive, got {duration}")

        noise = self.rng.uniform(-1.0, 1.0, size=(length, self.n_channels))
        impulse = noise * self.decay_envelope(length)[:, np.newaxis]

        logger.debug(
            "impulse_response_synthesized",
            length=length,
            channels=self.n_channels,
            duration=duration
        )
        return impulse
