"""
Tests for parameter automation and the ADSR envelope.
"""

import pytest
import numpy as np

from aliensynth.audio.envelope import (
    AutomationTimeline,
    EnvelopeGenerator,
    RampType,
    apply_envelope
)
from aliensynth.audio.params import Envelope


class TestAutomationTimeline:
    """Test scheduled parameter values."""

    def test_default_before_events(self):
        """Test that the default holds until the first event."""
        timeline = AutomationTimeline(default_value=0.2)
        timeline.set_value_at_time(1.0, 0.5)

        assert timeline.value_at(0.25) == pytest.approx(0.2)
        assert timeline.value_at(0.5) == pytest.approx(1.0)
        assert timeline.value_at(10.0) == pytest.approx(1.0)

    def test_linear_ramp(self):
        """Test interpolation from the previous event."""
        timeline = AutomationTimeline()
        timeline.set_value_at_time(0.5, 0.0)
        timeline.linear_ramp_to_value_at_time(1.0, 1.0)

        assert timeline.value_at(0.0) == pytest.approx(0.5)
        assert timeline.value_at(0.5) == pytest.approx(0.75)
        assert timeline.value_at(2.0) == pytest.approx(1.0)

    def test_events_sorted_by_time(self):
        """Test that out-of-order scheduling is ordered by time."""
        timeline = AutomationTimeline()
        timeline.set_value_at_time(0.3, 2.0)
        timeline.set_value_at_time(0.1, 1.0)

        assert [event.time for event in timeline.events] == [1.0, 2.0]
        assert timeline.events[0].ramp is RampType.SET

    def test_same_time_last_wins(self):
        """Test that events at one instant apply in insertion order."""
        timeline = AutomationTimeline()
        timeline.set_value_at_time(0.3, 1.0)
        timeline.set_value_at_time(0.6, 1.0)

        assert timeline.value_at(1.0) == pytest.approx(0.6)

    def test_render_frames(self):
        """Test rendering a block of frames at a sample rate."""
        timeline = AutomationTimeline()
        timeline.set_value_at_time(0.0, 0.0)
        timeline.linear_ramp_to_value_at_time(1.0, 1.0)

        block = timeline.render(start_frame=50, n_frames=10, sample_rate=100)

        np.testing.assert_allclose(block, np.arange(50, 60) / 100)

    def test_cancel(self):
        """Test removing scheduled events."""
        timeline = AutomationTimeline(default_value=0.4)
        timeline.set_value_at_time(1.0, 0.0)
        timeline.cancel()

        assert timeline.events == []
        assert timeline.value_at(1.0) == pytest.approx(0.4)


ENVELOPE_CASES = [
    # attack, decay, sustain, release, duration
    (0.1, 0.2, 0.7, 0.5, 2.0),
    (0.5, 0.5, 0.3, 1.5, 2.0),
    (1.5, 1.0, 0.5, 0.5, 2.0),
    (0.0, 0.0, 1.0, 0.0, 1.0),
    (3.0, 0.1, 0.5, 0.2, 2.0),
]


class TestEnvelopeGenerator:
    """Test the ADSR curve under normal and overlapping segments."""

    @staticmethod
    def scheduled(attack, decay, sustain, release, duration):
        timeline = AutomationTimeline()
        envelope = Envelope(attack=attack, decay=decay, sustain=sustain, release=release)
        apply_envelope(timeline, envelope, duration)
        return timeline

    @pytest.mark.parametrize("case", ENVELOPE_CASES)
    def test_breakpoints_ordered(self, case):
        """Test that breakpoints never go backwards or past the note end."""
        attack, decay, sustain, release, duration = case
        generator = EnvelopeGenerator(
            Envelope(attack=attack, decay=decay, sustain=sustain, release=release)
        )
        points = generator.breakpoints(duration)

        assert points == sorted(points)
        assert points[-1] == duration
        assert all(0.0 <= point <= duration for point in points)

    @pytest.mark.parametrize("case", ENVELOPE_CASES)
    def test_starts_at_zero(self, case):
        """Test that the curve starts silent when there is an attack."""
        timeline = self.scheduled(*case)
        attack = case[0]

        if attack > 0:
            assert timeline.value_at(0.0) == pytest.approx(0.0)

    @pytest.mark.parametrize("case", ENVELOPE_CASES)
    def test_attack_rises(self, case):
        """Test that the attack segment is non-decreasing."""
        attack, duration = case[0], case[4]
        timeline = self.scheduled(*case)
        times = np.linspace(0.0, min(attack, duration), 200, endpoint=False)
        values = timeline.values_at(times)

        assert np.all(np.diff(values) >= -1e-12)

    @pytest.mark.parametrize("case", ENVELOPE_CASES)
    def test_peak_at_attack_end(self, case):
        """Test that the attack reaches full level when it fits in the note."""
        attack, duration = case[0], case[4]
        timeline = self.scheduled(*case)

        if 0 < attack < duration:
            assert timeline.value_at(attack) == pytest.approx(1.0)

    @pytest.mark.parametrize("case", ENVELOPE_CASES)
    def test_sustain_after_decay(self, case):
        """Test the sustain level at the end of the decay."""
        attack, decay, sustain, _, duration = case
        timeline = self.scheduled(*case)

        if attack + decay < duration:
            assert timeline.value_at(attack + decay) == pytest.approx(sustain)

    @pytest.mark.parametrize("case", ENVELOPE_CASES)
    def test_ends_at_zero(self, case):
        """Test that the curve is exactly 0 at the note end."""
        duration = case[4]
        timeline = self.scheduled(*case)

        assert timeline.value_at(duration) == 0.0

    @pytest.mark.parametrize("case", ENVELOPE_CASES)
    def test_bounded(self, case):
        """Test that the curve stays within [0, 1]."""
        duration = case[4]
        timeline = self.scheduled(*case)
        values = timeline.values_at(np.linspace(0.0, duration, 2001))

        assert np.all(values >= 0.0)
        assert np.all(values <= 1.0 + 1e-12)

    def test_peak_scales_sustain(self):
        """Test that a peak below 1 scales the whole curve."""
        timeline = AutomationTimeline()
        generator = EnvelopeGenerator(Envelope(attack=0.1, decay=0.2, sustain=0.5, release=0.5))
        generator.apply(timeline, 2.0, peak=0.4)

        assert timeline.value_at(0.1) == pytest.approx(0.4)
        assert timeline.value_at(1.0) == pytest.approx(0.2)

    def test_reapply_replaces_events(self):
        """Test that scheduling twice does not stack events."""
        timeline = AutomationTimeline()
        generator = EnvelopeGenerator(Envelope())
        generator.apply(timeline, 2.0)
        generator.apply(timeline, 2.0)

        assert len(timeline.events) == 5
