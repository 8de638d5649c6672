"""
Audio engine for the alien-synth synthesizer.

Compiles formula waveforms, shapes them with ADSR envelopes and an LFO, and
runs the voice mix through a delay + convolution reverb chain.
"""

from aliensynth.audio.params import (
    OscillatorType,
    OscillatorSpec,
    Envelope,
    EffectParams,
    LFOParams,
    NoteParams,
    validate_params
)
from aliensynth.audio.waveform import CompiledWaveform, WaveformCompiler, compile_waveform
from aliensynth.audio.envelope import AutomationTimeline, EnvelopeGenerator
from aliensynth.audio.impulse import ImpulseResponseSynthesizer
from aliensynth.audio.effects import DelayLine, ConvolutionReverb, EffectChain
from aliensynth.audio.voice import VoiceGraph
from aliensynth.audio.engine import EngineState, RenderedNote, SynthesisEngine

__all__ = [
    'OscillatorType',
    'OscillatorSpec',
    'Envelope',
    'EffectParams',
    'LFOParams',
    'NoteParams',
    'validate_params',
    'CompiledWaveform',
    'WaveformCompiler',
    'compile_waveform',
    'AutomationTimeline',
    'EnvelopeGenerator',
    'ImpulseResponseSynthesizer',
    'DelayLine',
    'ConvolutionReverb',
    'EffectChain',
    'VoiceGraph',
    'EngineState',
    'RenderedNote',
    'SynthesisEngine'
]
