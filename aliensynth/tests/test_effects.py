"""
Tests for the impulse response, delay line, reverb and effect chain.
"""

import pytest
import numpy as np

from aliensynth.audio.effects import (
    GAIN_CALIBRATION,
    ConvolutionReverb,
    DelayLine,
    EffectChain
)
from aliensynth.audio.impulse import ImpulseResponseSynthesizer


def process_in_blocks(effect, samples, block_size):
    """Feed ``samples`` through ``effect`` in consecutive blocks."""
    blocks = [
        effect.process(samples[start:start + block_size])
        for start in range(0, len(samples), block_size)
    ]
    return np.concatenate(blocks)


class TestImpulseResponse:
    """Test impulse response synthesis."""

    @pytest.fixture
    def impulse(self):
        return ImpulseResponseSynthesizer(n_channels=2, seed=1234).synthesize(2.0, 8000)

    def test_shape(self, impulse):
        """Test length and channel count."""
        assert impulse.shape == (16000, 2)
        assert np.all(np.abs(impulse) <= 1.0)

    def test_decay_statistics(self, impulse):
        """Test that the mean magnitude follows half the quadratic decay."""
        window = 1000
        envelope = ImpulseResponseSynthesizer.decay_envelope(len(impulse))
        magnitude = np.abs(impulse).reshape(-1, window, 2).mean(axis=(1, 2))
        expected = 0.5 * envelope.reshape(-1, window).mean(axis=1)

        np.testing.assert_allclose(magnitude, expected, atol=0.04)
        assert np.all(np.diff(magnitude) < 0)

    def test_channels_independent(self, impulse):
        """Test that left and right are drawn separately."""
        correlation = np.corrcoef(impulse[:, 0], impulse[:, 1])[0, 1]

        assert not np.allclose(impulse[:, 0], impulse[:, 1])
        assert abs(correlation) < 0.05

    def test_seed_determinism(self):
        """Test that a seed reproduces the same response."""
        first = ImpulseResponseSynthesizer(seed=7).synthesize(0.1, 8000)
        second = ImpulseResponseSynthesizer(seed=7).synthesize(0.1, 8000)
        other = ImpulseResponseSynthesizer(seed=8).synthesize(0.1, 8000)

        np.testing.assert_array_equal(first, second)
        assert not np.allclose(first, other)

    def test_invalid_duration(self):
        """Test that an empty response is refused."""
        with pytest.raises(ValueError):
            ImpulseResponseSynthesizer().synthesize(0.0, 8000)


class TestDelayLine:
    """Test the pure delay."""

    def test_impulse_across_blocks(self):
        """Test that a click comes out delay_samples later across block edges."""
        delay = DelayLine(sample_rate=100, delay_time=0.05, max_delay_time=1.0)
        click = np.zeros(12)
        click[0] = 1.0

        output = process_in_blocks(delay, click, 3)

        assert delay.delay_samples == 5
        assert np.argmax(output) == 5
        assert output.sum() == pytest.approx(1.0)

    @pytest.mark.parametrize("block_size", [1, 4, 7, 50])
    def test_block_size_independent(self, block_size):
        """Test that streaming equals a shifted copy of the input."""
        rng = np.random.default_rng(0)
        samples = rng.standard_normal(50)
        delay = DelayLine(sample_rate=100, delay_time=0.05, max_delay_time=1.0)

        output = process_in_blocks(delay, samples, block_size)

        np.testing.assert_allclose(output, np.concatenate([np.zeros(5), samples[:-5]]))

    def test_zero_delay_passthrough(self):
        """Test that a zero delay passes input through."""
        delay = DelayLine(sample_rate=100, delay_time=0.0)
        samples = np.linspace(-1, 1, 20)

        np.testing.assert_allclose(delay.process(samples), samples)

    def test_change_keeps_history(self):
        """Test that a new delay time reads the existing history."""
        delay = DelayLine(sample_rate=100, delay_time=0.02, max_delay_time=1.0)
        delay.process(np.arange(1.0, 11.0))
        delay.set_delay_time(0.05)

        output = delay.process(np.zeros(3))

        np.testing.assert_allclose(output, [6.0, 7.0, 8.0])

    @pytest.mark.parametrize("delay_time", [-0.1, 1.5])
    def test_out_of_range(self, delay_time):
        """Test delay times outside [0, max]."""
        delay = DelayLine(sample_rate=100, max_delay_time=1.0)

        with pytest.raises(ValueError):
            delay.set_delay_time(delay_time)

    def test_reset(self):
        """Test clearing the history."""
        delay = DelayLine(sample_rate=100, delay_time=0.05, max_delay_time=1.0)
        delay.process(np.ones(10))
        delay.reset()

        assert np.all(delay.process(np.zeros(10)) == 0)


class TestConvolutionReverb:
    """Test block convolution with a carried tail."""

    @pytest.fixture
    def impulse(self):
        return np.random.default_rng(3).standard_normal((50, 2))

    @pytest.mark.parametrize("block_size", [16, 32, 100])
    def test_streaming_matches_convolution(self, impulse, block_size):
        """Test that block-wise output equals a one-shot convolution."""
        rng = np.random.default_rng(4)
        samples = np.concatenate([rng.standard_normal(200), np.zeros(40), rng.standard_normal(30),
                                  np.zeros(80)])
        reverb = ConvolutionReverb(impulse, sample_rate=8000, normalize=False)

        output = process_in_blocks(reverb, samples, block_size)

        assert output.shape == (len(samples), 2)
        for channel in range(2):
            expected = np.convolve(samples, impulse[:, channel])[:len(samples)]
            np.testing.assert_allclose(output[:, channel], expected, atol=1e-9)

    def test_normalization_scale(self):
        """Test the power normalization of the convolver."""
        ones = np.ones((100, 2))

        assert ConvolutionReverb.normalization_scale(ones, 44100) == pytest.approx(GAIN_CALIBRATION)
        assert ConvolutionReverb.normalization_scale(ones, 22050) == pytest.approx(
            2 * GAIN_CALIBRATION
        )

    def test_silent_impulse_is_bounded(self):
        """Test that a silent impulse does not blow up the scale."""
        scale = ConvolutionReverb.normalization_scale(np.zeros((100, 2)), 44100)

        assert np.isfinite(scale)
        assert scale == pytest.approx(10.0)

    def test_disabled_passthrough(self, impulse):
        """Test that a disabled reverb copies the input to every channel."""
        reverb = ConvolutionReverb(impulse, sample_rate=8000)
        reverb.set_enabled(False)
        samples = np.linspace(0, 1, 10)

        output = reverb.process(samples)

        np.testing.assert_allclose(output[:, 0], samples)
        np.testing.assert_allclose(output[:, 1], samples)

    def test_reset_drops_tail(self, impulse):
        """Test that reset silences the pending tail."""
        reverb = ConvolutionReverb(impulse, sample_rate=8000)
        reverb.process(np.ones(10))
        reverb.reset()

        assert np.all(reverb.process(np.zeros(60)) == 0)


class TestEffectChain:
    """Test the delay into reverb chain."""

    @pytest.fixture
    def chain(self):
        impulse = ImpulseResponseSynthesizer(seed=5).synthesize(0.1, 8000)
        return EffectChain(impulse, sample_rate=8000, max_delay_time=1.0)

    def test_output_shape(self, chain):
        """Test mono in, stereo out."""
        output = chain.process(np.ones(256))

        assert chain.n_channels == 2
        assert output.shape == (256, 2)

    def test_delay_before_reverb(self, chain):
        """Test that nothing reaches the reverb before the delay elapses."""
        chain.set_delay_time(0.01)  # 80 samples
        click = np.zeros(200)
        click[0] = 1.0

        output = chain.process(click)

        assert np.max(np.abs(output[:80])) < 1e-12
        assert np.max(np.abs(output[80:])) > 1e-6

    def test_reset(self, chain):
        """Test that reset silences delay history and reverb tail."""
        chain.set_delay_time(0.01)
        chain.process(np.ones(100))
        chain.reset()

        assert np.all(chain.process(np.zeros(2000)) == 0)
