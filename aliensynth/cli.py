#!/usr/bin/env python3
"""
alien-synth command line.

Usage:
    aliensynth generate                          # play the default note
    aliensynth generate -f "sin(2π t) + 0.3 sin(6π t)" -t 3
    aliensynth generate --lfo-frequency 5 --lfo-amplitude 10
    aliensynth generate --add-oscillator "sin(4π t)" 0.3 0
    aliensynth generate -o note.wav              # render to a file instead
"""

import argparse
import sys
import time
from typing import Any, Dict, List, Optional

from aliensynth.audio.engine import SynthesisEngine
from aliensynth.audio.output import save_wav
from aliensynth.audio.params import DEFAULT_FORMULA, validate_params
from aliensynth.core.config import settings
from aliensynth.core.exceptions import SynthError
from aliensynth.core.logging import get_logger

logger = get_logger(__name__)

# Grace period after the note before the process exits
EXIT_GRACE = 0.1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="aliensynth",
        description="Alien sound generator"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {settings.app_version}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    gen = subparsers.add_parser("generate", help="Generate an alien sound")
    gen.add_argument("-f", "--formula", default=DEFAULT_FORMULA, help="Waveform formula of t")
    gen.add_argument("-v", "--volume", type=float, default=0.5, help="Volume (0-1)")
    gen.add_argument("-q", "--frequency", type=float, default=settings.base_frequency,
                     help="Frequency in Hz")
    gen.add_argument("-d", "--detune", type=int, default=0, help="Detune in cents")
    gen.add_argument("-t", "--duration", type=float, default=settings.note_duration,
                     help="Duration in seconds")
    gen.add_argument("-a", "--attack", type=float, default=0.1, help="Envelope attack time")
    gen.add_argument("-c", "--decay", type=float, default=0.2, help="Envelope decay time")
    gen.add_argument("-s", "--sustain", type=float, default=0.7, help="Envelope sustain level")
    gen.add_argument("-r", "--release", type=float, default=0.5, help="Envelope release time")
    gen.add_argument("-rv", "--reverb", type=float, default=0.5, help="Reverb level (0-1)")
    gen.add_argument("-dl", "--delay", type=float, default=0.3, help="Delay time in seconds")
    gen.add_argument("--lfo-frequency", type=float, default=1.0, help="LFO frequency in Hz")
    gen.add_argument("--lfo-amplitude", type=float, default=0.0,
                     help="LFO pitch deviation in Hz")
    gen.add_argument("--add-oscillator", nargs=3, action="append", default=[],
                     metavar=("FORMULA", "VOLUME", "DETUNE"),
                     help="Add another oscillator (repeatable)")
    gen.add_argument("-o", "--output", help="Render to this WAV file instead of playing")

    return parser


def params_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    """Map parsed flags onto the NoteParams layout."""
    oscillators = [
        {"formula": args.formula, "volume": args.volume, "detune_cents": args.detune}
    ]
    for formula, volume, detune in args.add_oscillator:
        oscillators.append({"formula": formula, "volume": volume, "detune_cents": detune})

    return {
        "oscillators": oscillators,
        "envelope": {
            "attack": args.attack,
            "decay": args.decay,
            "sustain": args.sustain,
            "release": args.release,
        },
        "effects": {
            "reverb_level": args.reverb,
            "delay_time_seconds": args.delay,
        },
        "lfo": {
            "frequency_hz": args.lfo_frequency,
            "amplitude": args.lfo_amplitude,
        },
        "duration": args.duration,
        "frequency": args.frequency,
    }


def cmd_generate(args: argparse.Namespace) -> int:
    params = validate_params(params_from_args(args))

    with SynthesisEngine() as engine:
        if args.output:
            note = engine.render(params)
            path = save_wav(note.output, args.output, engine.sample_rate)
            print(f"Wrote {note.duration:.2f}s of audio to {path}")
            return 0

        print("Generating alien sound...")
        engine.start(params)
        engine.wait(params.duration + EXIT_GRACE)
        # Let the first moments of the reverb tail reach the device
        time.sleep(EXIT_GRACE)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == "generate":
            return cmd_generate(args)
    except SynthError as exc:
        logger.error("command_failed", command=args.command, code=exc.code, message=exc.message)
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
