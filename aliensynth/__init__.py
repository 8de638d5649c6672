"""
alien-synth: parametric sound synthesizer.

Formula-driven oscillators, ADSR envelopes, an LFO and a delay/convolution
reverb chain rendered to a device stream or an offline buffer.
"""

__version__ = "0.1.0"
