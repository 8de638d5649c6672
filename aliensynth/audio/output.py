"""
Audio output: platform device streaming and WAV export.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional, Union

import numpy as np

from aliensynth.core.exceptions import DeviceError
from aliensynth.core.logging import get_logger

logger = get_logger(__name__)

# Pull function: frames requested -> float array of shape (frames, channels)
PullCallback = Callable[[int], np.ndarray]


class AudioOutput(ABC):
    """A sink that pulls rendered blocks from the engine."""

    @abstractmethod
    def open(
        self,
        pull: PullCallback,
        sample_rate: int,
        channels: int,
        block_size: int
    ):
        """
        Start pulling audio.

        Raises:
            DeviceError: If the output cannot be opened
        """
        pass

    @abstractmethod
    def close(self):
        """Stop pulling and release the device. Safe to call twice."""
        pass

    @property
    @abstractmethod
    def active(self) -> bool:
        pass

    def check(self):
        """Raise DeviceError if streaming failed since the output was opened."""
        pass


class SoundDeviceOutput(AudioOutput):
    """
    Streams to a PortAudio device through sounddevice.

    The stream callback runs on PortAudio's real-time thread. It only calls
    the engine's pull function; it never logs or blocks.
    """

    def __init__(self, device: Optional[Union[int, str]] = None):
        """
        Initialize output.

        Args:
            device: PortAudio device index or name (None = system default)
        """
        self.device = device
        self.error: Optional[BaseException] = None
        self.underflows = 0
        self._stream = None

    @property
    def active(self) -> bool:
        return self._stream is not None and self._stream.active

    def open(
        self,
        pull: PullCallback,
        sample_rate: int,
        channels: int,
        block_size: int
    ):
        try:
            import sounddevice as sd
        except (ImportError, OSError) as exc:
            raise DeviceError(f"audio backend unavailable: {exc}") from exc

        def callback(outdata, frames, time_info, status):
            if status.output_underflow:
                self.underflows += 1
            try:
                outdata[:] = pull(frames)
            except Exception as exc:
                self.error = exc
                outdata.fill(0)
                raise sd.CallbackAbort from exc

        try:
            self._stream = sd.OutputStream(
                samplerate=sample_rate,
                channels=channels,
                blocksize=block_size,
                dtype="float32",
                device=self.device,
                callback=callback
            )
            self._stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            self._stream = None
            raise DeviceError(f"cannot open output device {self.device!r}: {exc}") from exc

        logger.info(
            "output_stream_opened",
            device=self.device,
            sample_rate=sample_rate,
            channels=channels,
            block_size=block_size
        )

    def check(self):
        if self.error is not None:
            raise DeviceError(f"audio stream aborted: {self.error}")

    def close(self):
        if self._stream is None:
            return
        stream, self._stream = self._stream, None
        stream.stop()
        stream.close()
        logger.info("output_stream_closed", underflows=self.underflows)


def save_wav(
    audio: np.ndarray,
    path: Union[str, Path],
    sample_rate: int = 44100
) -> Path:
    """
    Save audio to a WAV file.

    Args:
        audio: Samples, shape (frames,) or (frames, channels)
        path: Output file path
        sample_rate: Sample rate

    Returns:
        Path written
    """
    import soundfile as sf

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    sf.write(str(path), audio, sample_rate, subtype="FLOAT")

    logger.info(
        "audio_rendered_to_file",
        filename=str(path),
        frames=len(audio),
        sample_rate=sample_rate
    )
    return path
