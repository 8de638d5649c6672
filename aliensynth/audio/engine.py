"""
Synthesis engine: owns the shared graph and runs one voice at a time.

Control-thread operations (``start``, ``stop``, the auto-stop timer) mutate
the graph under a lock. The render path (``render_block``, called from the
audio device thread) never takes that lock: it reads the current voice
reference once per block and renders whatever that voice is.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

import numpy as np
from numpy.typing import NDArray

from aliensynth.audio.effects import EffectChain
from aliensynth.audio.impulse import ImpulseResponseSynthesizer
from aliensynth.audio.nodes import GainNode, LfoSource
from aliensynth.audio.output import AudioOutput, SoundDeviceOutput
from aliensynth.audio.params import NoteParams, validate_params
from aliensynth.audio.voice import VoiceGraph
from aliensynth.audio.waveform import WaveformCompiler
from aliensynth.core.config import Settings, get_settings
from aliensynth.core.exceptions import ValidationError
from aliensynth.core.logging import get_logger

logger = get_logger(__name__)

# Offline renders have no latency budget, so they pull larger blocks
OFFLINE_BLOCK_SIZE = 8192


class EngineState(Enum):
    IDLE = "idle"
    PLAYING = "playing"


@dataclass(frozen=True, eq=False)
class RenderedNote:
    """Result of an offline render."""

    output: NDArray[np.float64]  # (frames, channels), after effects
    dry: NDArray[np.float64]  # (frames,), voice mix before master gain
    sample_rate: int
    fallbacks: Tuple[int, ...] = ()

    @property
    def duration(self) -> float:
        return len(self.output) / self.sample_rate


class SynthesisEngine:
    """
    Parametric synthesizer engine.

    Holds the long-lived parts of the graph (waveform cache, impulse
    response, effect chain, master gain, LFO) and builds a VoiceGraph for
    every note.
    """

    def __init__(
        self,
        sample_rate: Optional[int] = None,
        block_size: Optional[int] = None,
        output: Optional[AudioOutput] = None,
        impulse: Optional[NDArray[np.float64]] = None,
        settings: Optional[Settings] = None
    ):
        """
        Initialize engine.

        Args:
            sample_rate: Audio sample rate in Hz (default from settings)
            block_size: Frames per device callback (default from settings)
            output: Device sink; a SoundDeviceOutput is created on first
                start() when omitted
            impulse: Reverb impulse response (length, channels); synthesized
                when omitted
            settings: Settings instance (default: global settings)
        """
        self.settings = settings or get_settings()
        self.sample_rate = sample_rate or self.settings.sample_rate
        self.block_size = block_size or self.settings.block_size
        self.output = output

        self.compiler = WaveformCompiler(self.sample_rate)

        if impulse is None:
            impulse = ImpulseResponseSynthesizer(
                n_channels=self.settings.channels,
                seed=self.settings.impulse_seed
            ).synthesize(self.settings.impulse_duration, self.sample_rate)
        self.impulse = impulse
        self.effects = EffectChain(impulse, self.sample_rate, self.settings.max_delay_time)
        self.channels = self.effects.n_channels

        self.master_gain = GainNode(1.0, name="master")
        self.lfo = LfoSource(self.sample_rate)
        self.lfo.start()

        self.state = EngineState.IDLE
        self.current_frame = 0
        self._voice: Optional[VoiceGraph] = None
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._idle = threading.Event()
        self._idle.set()

        logger.info(
            "synthesis_engine_initialized",
            sample_rate=self.sample_rate,
            block_size=self.block_size,
            channels=self.channels
        )

    # ------------------------------------------------------------------
    # Control thread
    # ------------------------------------------------------------------

    @property
    def voice(self) -> Optional[VoiceGraph]:
        """The voice currently playing, if any."""
        return self._voice

    @property
    def is_playing(self) -> bool:
        return self.state is EngineState.PLAYING

    def _validate(self, params: Union[NoteParams, Dict[str, Any]]) -> NoteParams:
        params = validate_params(params)
        delay = params.effects.delay_time_seconds
        if delay > self.settings.max_delay_time:
            raise ValidationError(
                f"effects.delay_time_seconds: {delay} exceeds the device maximum "
                f"of {self.settings.max_delay_time}s"
            )
        return params

    def _ensure_output(self):
        if self.output is None:
            self.output = SoundDeviceOutput(self.settings.output_device)
        if not self.output.active:
            self.output.open(self.render_block, self.sample_rate, self.channels, self.block_size)

    def _build_voice(self, params: NoteParams) -> VoiceGraph:
        self.lfo.set_frequency(params.lfo.frequency_hz)
        self.effects.set_delay_time(params.effects.delay_time_seconds)
        # Reverb level drives the bus feeding the effect chain
        self.master_gain.set_value(params.effects.reverb_level)

        voice = VoiceGraph(
            params,
            self.compiler,
            self.master_gain,
            self.lfo,
            sample_rate=self.sample_rate,
            table_size=self.settings.wavetable_size
        )
        voice.start()
        return voice

    def _release(self, reason: str):
        """Tear down the current voice. Caller holds the lock."""
        voice, self._voice = self._voice, None
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if voice is not None:
            voice.teardown()
        self.state = EngineState.IDLE
        self._idle.set()

        logger.info(
            "note_released",
            reason=reason,
            frames_rendered=voice.frame if voice is not None else 0
        )

    def _on_note_end(self, voice: VoiceGraph):
        with self._lock:
            if self._voice is not voice:
                # Already stopped or replaced by a newer note
                return
            self._release("finished")

    def start(self, params: Union[NoteParams, Dict[str, Any]]) -> VoiceGraph:
        """
        Start playing a note on the output device.

        A note already playing is stopped first. The note stops by itself
        after ``params.duration`` seconds.

        Args:
            params: NoteParams or a mapping validated into one

        Returns:
            The VoiceGraph now playing

        Raises:
            ValidationError: If parameters are out of range
            DeviceError: If the output device cannot be opened
        """
        params = self._validate(params)
        self._ensure_output()

        with self._lock:
            if self._voice is not None:
                self._release("restarted")

            voice = self._build_voice(params)
            self._voice = voice
            self.state = EngineState.PLAYING
            self._idle.clear()

            self._timer = threading.Timer(params.duration, self._on_note_end, args=(voice,))
            self._timer.daemon = True
            self._timer.start()

        logger.info(
            "note_started",
            oscillators=len(voice.channels),
            fallbacks=list(voice.fallbacks),
            duration=params.duration,
            frequency=params.frequency
        )
        return voice

    def stop(self):
        """Stop the current note early. No-op when idle."""
        with self._lock:
            if self._voice is None:
                return
            self._release("stopped")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the engine is idle.

        Returns:
            True if idle, False on timeout

        Raises:
            DeviceError: If the output stream failed meanwhile
        """
        idle = self._idle.wait(timeout)
        if self.output is not None:
            self.output.check()
        return idle

    def reset(self):
        """Silence the delay history and reverb tail."""
        self.effects.reset()

    def close(self):
        """Stop any note and release the output device."""
        self.stop()
        if self.output is not None:
            self.output.close()

    def __enter__(self) -> "SynthesisEngine":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # ------------------------------------------------------------------
    # Render path
    # ------------------------------------------------------------------

    def _render(self, n_frames: int) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
        voice = self._voice
        lfo_block = self.lfo.render(n_frames)
        if voice is not None:
            dry = voice.render(n_frames, lfo_block)
        else:
            dry = np.zeros(n_frames)

        bus = self.master_gain.process(dry, self.current_frame, self.sample_rate)
        output = self.effects.process(bus)
        self.current_frame += n_frames
        return output, dry

    def render_block(self, n_frames: int) -> NDArray[np.float32]:
        """
        Pull the next block for the output device.

        Returns:
            float32 array of shape (n_frames, channels) clipped to [-1, 1]
        """
        output, _ = self._render(n_frames)
        return np.clip(output, -1.0, 1.0).astype(np.float32)

    def render(self, params: Union[NoteParams, Dict[str, Any]]) -> RenderedNote:
        """
        Render one note offline, without an output device.

        The note runs through the same graph as live playback, block by
        block, for exactly ``duration * sample_rate`` frames.

        Raises:
            ValidationError: If parameters are out of range
        """
        params = self._validate(params)
        if self.output is not None and self.output.active:
            raise RuntimeError("offline rendering needs the output stream closed")

        with self._lock:
            if self._voice is not None:
                self._release("restarted")
            voice = self._build_voice(params)
            self._voice = voice
            self.state = EngineState.PLAYING
            self._idle.clear()

        n_frames = voice.n_frames
        output = np.zeros((n_frames, self.channels))
        dry = np.zeros(n_frames)
        block = max(self.block_size, OFFLINE_BLOCK_SIZE)
        for start in range(0, n_frames, block):
            count = min(block, n_frames - start)
            output[start:start + count], dry[start:start + count] = self._render(count)

        with self._lock:
            if self._voice is voice:
                self._release("finished")

        peak = float(np.max(np.abs(output))) if output.size else 0.0
        if peak > 1.0:
            output = np.clip(output, -1.0, 1.0)
            logger.warning("audio_clipped", max_before_clip=peak)

        return RenderedNote(
            output=output,
            dry=dry,
            sample_rate=self.sample_rate,
            fallbacks=voice.fallbacks
        )
