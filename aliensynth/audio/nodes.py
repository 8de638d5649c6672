"""
Unit generators of the voice graph: oscillators, gains and the LFO.

Nodes record their outgoing connections so a voice can be torn down
explicitly; signal flow itself is driven by the VoiceGraph, which pulls
each node once per block in topological order.
"""

from typing import List, Optional

import numpy as np
from numpy.typing import NDArray

from aliensynth.audio.envelope import AutomationTimeline
from aliensynth.audio.waveform import CompiledWaveform


class AudioNode:
    """Base class for graph nodes."""

    def __init__(self, name: str = ""):
        self.name = name or type(self).__name__
        self.connections: List["AudioNode"] = []

    def connect(self, destination: "AudioNode") -> "AudioNode":
        """Connect this node's output to ``destination``."""
        if destination not in self.connections:
            self.connections.append(destination)
        return destination

    def disconnect(self, destination: Optional["AudioNode"] = None):
        """Drop one outgoing connection, or all of them."""
        if destination is None:
            self.connections = []
        else:
            self.connections = [node for node in self.connections if node is not destination]

    @property
    def is_connected(self) -> bool:
        return bool(self.connections)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class GainNode(AudioNode):
    """Multiplies its input by an automatable gain."""

    def __init__(self, value: float = 1.0, name: str = ""):
        super().__init__(name)
        self.gain = AutomationTimeline(default_value=value)

    def set_value(self, value: float):
        """Replace any automation with a constant gain."""
        self.gain.cancel()
        self.gain.default_value = float(value)

    def process(
        self,
        samples: NDArray[np.float64],
        start_frame: int,
        sample_rate: int
    ) -> NDArray[np.float64]:
        """Apply the gain curve for frames ``[start_frame, start_frame + len(samples))``."""
        if not self.gain.events:
            return samples * self.gain.default_value
        return samples * self.gain.render(start_frame, len(samples), sample_rate)


class OscillatorNode(AudioNode):
    """
    Wavetable oscillator playing one CompiledWaveform.

    Instantaneous frequency is ``(frequency + modulation) * 2 ** (detune / 1200)``
    where ``modulation`` is whatever is connected to the frequency input
    (the LFO depth gain). The wavetable is band-limited once per note for the
    highest frequency the modulation can reach.
    """

    def __init__(
        self,
        waveform: CompiledWaveform,
        frequency: float = 220.0,
        detune_cents: float = 0.0,
        sample_rate: int = 44100,
        table_size: int = 4096,
        name: str = ""
    ):
        super().__init__(name)
        self.waveform = waveform
        self.frequency = frequency
        self.detune_cents = detune_cents
        self.sample_rate = sample_rate
        self.table_size = table_size
        self.modulation_depth = 0.0
        self.phase = 0.0  # cycles, in [0, 1)
        self.started = False
        self.stopped = False
        self._table: Optional[NDArray[np.float64]] = None

    @property
    def detune_ratio(self) -> float:
        return 2.0 ** (self.detune_cents / 1200.0)

    @property
    def max_frequency(self) -> float:
        """Highest absolute frequency reachable under the connected modulation."""
        return (abs(self.frequency) + self.modulation_depth) * self.detune_ratio

    @property
    def is_playing(self) -> bool:
        return self.started and not self.stopped

    def set_modulation_depth(self, depth: float):
        self.modulation_depth = abs(depth)
        self._table = None

    def start(self):
        if self.started:
            raise RuntimeError(f"{self!r} already started")
        self.started = True

    def stop(self):
        self.stopped = True

    @property
    def table(self) -> NDArray[np.float64]:
        if self._table is None:
            top = self.max_frequency
            nyquist = self.sample_rate / 2.0
            n_harmonics = int(nyquist // top) if top > 0 else self.table_size // 2
            self._table = self.waveform.wavetable(n_harmonics, self.table_size)
        return self._table

    def render(
        self,
        n_frames: int,
        modulation: Optional[NDArray[np.float64]] = None
    ) -> NDArray[np.float64]:
        """Generate the next ``n_frames`` samples."""
        table = self.table
        # Not playing, or every harmonic sits above Nyquist
        if not self.is_playing or not np.any(table):
            return np.zeros(n_frames)

        freq = np.full(n_frames, float(self.frequency))
        if modulation is not None:
            freq = freq + modulation
        freq *= self.detune_ratio

        increments = freq / self.sample_rate
        phases = self.phase + np.cumsum(increments) - increments
        self.phase = float((self.phase + increments.sum()) % 1.0)

        size = len(table)
        position = (phases % 1.0) * size
        index = np.floor(position).astype(np.int64)
        frac = position - index
        index %= size
        return table[index] * (1.0 - frac) + table[(index + 1) % size] * frac


class LfoSource(AudioNode):
    """
    Long-lived sine LFO shared by every note of an engine.

    Started once; only its frequency changes afterwards. Its phase advances
    whenever the engine renders, playing or idle.
    """

    def __init__(self, sample_rate: int = 44100, frequency: float = 1.0, name: str = "lfo"):
        super().__init__(name)
        self.sample_rate = sample_rate
        self.frequency = frequency
        self.phase = 0.0
        self.started = False

    def start(self):
        if self.started:
            raise RuntimeError("LFO source is already running")
        self.started = True

    def set_frequency(self, frequency: float):
        self.frequency = float(frequency)

    def render(self, n_frames: int) -> NDArray[np.float64]:
        """Generate the next ``n_frames`` LFO samples in [-1, 1]."""
        if not self.started:
            return np.zeros(n_frames)
        increment = self.frequency / self.sample_rate
        phases = self.phase + increment * np.arange(n_frames)
        self.phase = float((self.phase + increment * n_frames) % 1.0)
        return np.sin(2 * np.pi * phases)
