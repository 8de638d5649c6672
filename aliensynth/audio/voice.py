"""
Voice graph: the per-note set of oscillators and gain stages.

    oscillator -> gain (volume x envelope) -> master gain   (one per OscillatorSpec)
    LFO -> depth gain -> frequency input of every oscillator

The master gain, LFO source and effect chain belong to the engine and are
only borrowed by a voice. Everything the voice creates itself is stopped
and disconnected by ``teardown``.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from numpy.typing import NDArray

from aliensynth.audio.envelope import EnvelopeGenerator
from aliensynth.audio.nodes import GainNode, LfoSource, OscillatorNode
from aliensynth.audio.params import NoteParams, OscillatorSpec, OscillatorType
from aliensynth.audio.waveform import CompiledWaveform, WaveformCompiler
from aliensynth.core.exceptions import CompilationError
from aliensynth.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class VoiceChannel:
    """One oscillator slot with its gain stage."""

    spec: OscillatorSpec
    oscillator: OscillatorNode
    gain: GainNode
    fallback: bool = False  # formula failed to compile, playing a sine


class VoiceGraph:
    """
    Graph of one note.

    Created per note by the engine, rendered block by block from the engine's
    render path and torn down when the note ends or is stopped.
    """

    def __init__(
        self,
        params: NoteParams,
        compiler: WaveformCompiler,
        master_gain: GainNode,
        lfo: LfoSource,
        sample_rate: int = 44100,
        table_size: int = 4096
    ):
        """
        Build the graph.

        Args:
            params: Validated note parameters
            compiler: Engine's waveform compiler (and cache)
            master_gain: Shared bus gain feeding the effect chain
            lfo: Shared LFO source
            sample_rate: Audio sample rate
            table_size: Wavetable length for the oscillators
        """
        self.params = params
        self.sample_rate = sample_rate
        self.master_gain = master_gain
        self.lfo = lfo
        self.n_frames = int(round(params.duration * sample_rate))
        self.frame = 0
        self.torn_down = False

        envelope = EnvelopeGenerator(params.envelope)
        channels = []
        for index, spec in enumerate(params.oscillators):
            waveform, fallback = self._resolve_waveform(compiler, spec, index)

            oscillator = OscillatorNode(
                waveform,
                frequency=params.frequency,
                detune_cents=spec.detune_cents,
                sample_rate=sample_rate,
                table_size=table_size,
                name=f"osc{index}"
            )
            gain = GainNode(spec.volume, name=f"gain{index}")
            envelope.apply(gain.gain, params.duration, peak=spec.volume)

            oscillator.connect(gain)
            gain.connect(master_gain)
            channels.append(VoiceChannel(spec, oscillator, gain, fallback))
        self.channels: Tuple[VoiceChannel, ...] = tuple(channels)

        # Pitch modulation fan-out, rebuilt for every note
        self.lfo_gain = GainNode(params.lfo.amplitude, name="lfo_depth")
        lfo.connect(self.lfo_gain)
        for channel in self.channels:
            self.lfo_gain.connect(channel.oscillator)
            channel.oscillator.set_modulation_depth(params.lfo.amplitude)

    @staticmethod
    def _resolve_waveform(
        compiler: WaveformCompiler,
        spec: OscillatorSpec,
        index: int
    ) -> Tuple[CompiledWaveform, bool]:
        if spec.type is not OscillatorType.CUSTOM:
            return compiler.builtin(spec.type), False
        try:
            return compiler.compile(spec.formula), False
        except CompilationError as exc:
            logger.warning(
                "waveform_fallback_to_sine",
                oscillator=index,
                formula=spec.formula,
                error=exc.message
            )
            return compiler.builtin(OscillatorType.SINE), True

    @property
    def oscillators(self) -> Tuple[OscillatorNode, ...]:
        return tuple(channel.oscillator for channel in self.channels)

    @property
    def gains(self) -> Tuple[GainNode, ...]:
        return tuple(channel.gain for channel in self.channels)

    @property
    def fallbacks(self) -> Tuple[int, ...]:
        """Indexes of oscillators that fell back to a sine."""
        return tuple(i for i, channel in enumerate(self.channels) if channel.fallback)

    @property
    def finished(self) -> bool:
        return self.frame >= self.n_frames

    def start(self):
        """Start every oscillator of the voice."""
        for channel in self.channels:
            channel.oscillator.start()

    def render(
        self,
        n_frames: int,
        lfo_block: Optional[NDArray[np.float64]] = None
    ) -> NDArray[np.float64]:
        """
        Render the next block of the voice mix (before the master gain).

        Args:
            n_frames: Block length
            lfo_block: Output of the shared LFO for this block

        Returns:
            Mono bus samples
        """
        bus = np.zeros(n_frames)
        channels = self.channels
        if self.torn_down or not channels:
            return bus

        modulation = None
        if lfo_block is not None and self.lfo_gain.is_connected:
            modulation = self.lfo_gain.process(lfo_block, self.frame, self.sample_rate)

        for channel in channels:
            oscillator = channel.oscillator
            depth = modulation if oscillator in self.lfo_gain.connections else None
            samples = oscillator.render(n_frames, depth)
            bus += channel.gain.process(samples, self.frame, self.sample_rate)

        self.frame += n_frames
        return bus

    def teardown(self):
        """Stop and disconnect every node created for this note. Idempotent."""
        if self.torn_down:
            return
        self.torn_down = True

        for channel in self.channels:
            channel.oscillator.stop()
            channel.oscillator.disconnect()
            channel.gain.disconnect()
        self.lfo.disconnect(self.lfo_gain)
        self.lfo_gain.disconnect()

        logger.debug(
            "voice_torn_down",
            oscillators=len(self.channels),
            frames_rendered=self.frame
        )
