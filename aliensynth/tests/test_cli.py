"""
Tests for the command line.
"""

import pytest

from aliensynth.audio.params import DEFAULT_FORMULA, validate_params
from aliensynth.cli import build_parser, main, params_from_args


class TestParser:
    """Test flag parsing and mapping onto note parameters."""

    @pytest.fixture
    def parser(self):
        return build_parser()

    def test_defaults(self, parser):
        """Test that bare generate plays the default note."""
        args = parser.parse_args(["generate"])
        params = validate_params(params_from_args(args))

        assert args.formula == DEFAULT_FORMULA
        assert args.output is None
        assert len(params.oscillators) == 1
        assert params.oscillators[0].volume == 0.5
        assert params.envelope.sustain == 0.7
        assert params.effects.reverb_level == 0.5
        assert params.effects.delay_time_seconds == 0.3
        assert params.lfo.amplitude == 0.0

    def test_short_flags(self, parser):
        """Test the single-dash flags, including the two-letter ones."""
        args = parser.parse_args([
            "generate", "-f", "sin(4π t)", "-v", "0.8", "-q", "330", "-d", "-12",
            "-t", "1.5", "-a", "0.05", "-c", "0.1", "-s", "0.4", "-r", "0.3",
            "-rv", "0.9", "-dl", "0.25"
        ])
        params = validate_params(params_from_args(args))

        assert params.oscillators[0].formula == "sin(4π t)"
        assert params.oscillators[0].volume == 0.8
        assert params.oscillators[0].detune_cents == -12
        assert params.frequency == 330.0
        assert params.duration == 1.5
        assert params.envelope.attack == 0.05
        assert params.envelope.release == 0.3
        assert params.effects.reverb_level == 0.9
        assert params.effects.delay_time_seconds == 0.25

    def test_extra_oscillators_and_lfo(self, parser):
        """Test repeated --add-oscillator and the LFO flags."""
        args = parser.parse_args([
            "generate",
            "--add-oscillator", "sin(6π t)", "0.3", "5",
            "--add-oscillator", "cos(2π t)", "0.1", "-7",
            "--lfo-frequency", "4", "--lfo-amplitude", "12"
        ])
        params = validate_params(params_from_args(args))

        assert len(params.oscillators) == 3
        assert params.oscillators[1].formula == "sin(6π t)"
        assert params.oscillators[1].volume == pytest.approx(0.3)
        assert params.oscillators[2].detune_cents == -7
        assert params.lfo.frequency_hz == 4.0
        assert params.lfo.amplitude == 12.0

    def test_command_required(self, parser):
        """Test that a subcommand must be given."""
        with pytest.raises(SystemExit):
            parser.parse_args([])


class TestMain:
    """Test running commands end to end."""

    def test_render_to_file(self, tmp_path, capsys):
        """Test rendering a short note to a WAV file."""
        soundfile = pytest.importorskip("soundfile")
        path = tmp_path / "note.wav"

        code = main(["generate", "-t", "0.5", "-o", str(path)])

        assert code == 0
        assert "Wrote" in capsys.readouterr().out
        audio, sample_rate = soundfile.read(str(path))
        assert audio.shape == (sample_rate // 2, 2)
        assert abs(audio).max() <= 1.0

    def test_invalid_parameters(self, tmp_path, capsys):
        """Test that out-of-range flags exit non-zero with a message."""
        code = main(["generate", "-v", "2", "-o", str(tmp_path / "bad.wav")])

        assert code == 1
        assert "Error:" in capsys.readouterr().err
        assert not (tmp_path / "bad.wav").exists()

    @pytest.mark.parametrize("flags", [["-t", "inf"], ["-q", "inf"], ["--lfo-amplitude", "nan"]])
    def test_non_finite_flags(self, tmp_path, capsys, flags):
        """Test that inf and nan flag values are rejected before rendering."""
        code = main(["generate", *flags, "-o", str(tmp_path / "bad.wav")])

        assert code == 1
        assert "Error:" in capsys.readouterr().err
        assert not (tmp_path / "bad.wav").exists()
