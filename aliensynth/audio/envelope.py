"""
Parameter automation and the ADSR envelope generator.
"""

import bisect
from dataclasses import dataclass
from enum import Enum
from typing import List

import numpy as np

from aliensynth.audio.params import Envelope


class RampType(Enum):
    """How a parameter reaches an event's value."""

    SET = "set"        # jump at the event time, hold until then
    LINEAR = "linear"  # straight line from the previous event


@dataclass(frozen=True)
class AutomationEvent:
    time: float
    value: float
    ramp: RampType


class AutomationTimeline:
    """
    Scheduled value changes of a single parameter (e.g. a gain).

    Events are kept ordered by time; events sharing a timestamp apply in
    insertion order, so the last one wins from that instant on. Between two
    events the value holds (SET) or interpolates linearly (LINEAR) from the
    previous event's value. Times are seconds relative to the note start.
    """

    def __init__(self, default_value: float = 1.0):
        self.default_value = default_value
        self._events: List[AutomationEvent] = []

    @property
    def events(self) -> List[AutomationEvent]:
        return list(self._events)

    def _insert(self, event: AutomationEvent):
        times = [e.time for e in self._events]
        self._events.insert(bisect.bisect_right(times, event.time), event)

    def set_value_at_time(self, value: float, time: float):
        """Jump to ``value`` at ``time``."""
        self._insert(AutomationEvent(float(time), float(value), RampType.SET))

    def linear_ramp_to_value_at_time(self, value: float, time: float):
        """Ramp linearly from the previous event to ``value`` at ``time``."""
        self._insert(AutomationEvent(float(time), float(value), RampType.LINEAR))

    def cancel(self):
        """Remove all scheduled events."""
        self._events.clear()

    def values_at(self, times: np.ndarray) -> np.ndarray:
        """Evaluate the timeline at arbitrary times (seconds)."""
        times = np.asarray(times, dtype=np.float64)
        out = np.full(times.shape, self.default_value, dtype=np.float64)

        prev_time, prev_value = 0.0, self.default_value
        for event in self._events:
            segment = (times >= prev_time) & (times < event.time)
            if event.ramp is RampType.LINEAR and event.time > prev_time:
                frac = (times[segment] - prev_time) / (event.time - prev_time)
                out[segment] = prev_value + (event.value - prev_value) * frac
            else:
                out[segment] = prev_value
            prev_time, prev_value = event.time, event.value

        out[times >= prev_time] = prev_value
        return out

    def value_at(self, time: float) -> float:
        return float(self.values_at(np.array([time]))[0])

    def render(self, start_frame: int, n_frames: int, sample_rate: int) -> np.ndarray:
        """Render ``n_frames`` consecutive values starting at ``start_frame``."""
        frames = np.arange(start_frame, start_frame + n_frames, dtype=np.float64)
        return self.values_at(frames / sample_rate)


class EnvelopeGenerator:
    """
    Schedules an ADSR curve on an automation timeline.

    The curve starts at 0, ramps to 1 at ``attack``, to ``sustain`` at
    ``attack + decay``, holds until ``duration - release`` and ramps to 0 at
    ``duration``. Segments may overlap: every breakpoint is clamped into
    ``[previous breakpoint, duration]`` so ramps are always scheduled in
    order and the curve always ends at exactly 0 at ``duration``.
    """

    def __init__(self, envelope: Envelope):
        self.envelope = envelope

    def breakpoints(self, duration: float) -> List[float]:
        """Attack end, decay end, release start and note end, in order."""
        env = self.envelope
        attack_end = min(env.attack, duration)
        decay_end = min(max(env.attack + env.decay, attack_end), duration)
        release_start = min(max(decay_end, duration - env.release), duration)
        return [attack_end, decay_end, release_start, duration]

    def apply(self, timeline: AutomationTimeline, duration: float, peak: float = 1.0):
        """
        Schedule the envelope on ``timeline`` over ``[0, duration]``.

        Args:
            timeline: Timeline to write to; existing events are replaced
            duration: Note duration in seconds
            peak: Level reached at the end of the attack; the sustain level
                is scaled by the same factor
        """
        attack_end, decay_end, release_start, end = self.breakpoints(duration)
        sustain = self.envelope.sustain * peak

        timeline.cancel()
        timeline.set_value_at_time(0.0, 0.0)
        timeline.linear_ramp_to_value_at_time(peak, attack_end)
        timeline.linear_ramp_to_value_at_time(sustain, decay_end)
        timeline.set_value_at_time(sustain, release_start)
        timeline.linear_ramp_to_value_at_time(0.0, end)


def apply_envelope(timeline: AutomationTimeline, envelope: Envelope, duration: float):
    """Schedule ``envelope`` on ``timeline`` for a note of ``duration`` seconds."""
    EnvelopeGenerator(envelope).apply(timeline, duration)
