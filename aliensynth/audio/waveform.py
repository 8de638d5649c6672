"""
Waveform compilation: user formulas to harmonic coefficient series.

A formula is sampled at one second's worth of points and the samples are
read as a periodic-wave definition: ``real_coeffs[k]`` is the cosine
amplitude of harmonic ``k`` and ``imag_coeffs[k]`` its sine amplitude.
They are not time-domain samples. Rendering turns a series into a
single-period wavetable, band-limited to the harmonics that fit below
Nyquist for the oscillator's highest frequency, and normalized to unit peak.
"""

from dataclasses import dataclass, field
from typing import Dict, Tuple, Union

import numpy as np

from aliensynth.audio.expression import parse
from aliensynth.audio.params import OscillatorType
from aliensynth.core.exceptions import CompilationError
from aliensynth.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, eq=False)
class CompiledWaveform:
    """Harmonic series of one periodic waveform."""

    real_coeffs: np.ndarray
    imag_coeffs: np.ndarray
    name: str = ""

    _tables: Dict[Tuple[int, int], np.ndarray] = field(
        default_factory=dict, init=False, repr=False
    )

    @property
    def length(self) -> int:
        return len(self.real_coeffs)

    def wavetable(self, n_harmonics: int, size: int = 4096) -> np.ndarray:
        """
        Render one period of the waveform as a lookup table.

        Args:
            n_harmonics: Highest harmonic to include (DC is always dropped)
            size: Table length in samples

        Returns:
            Table of ``size`` samples with peak amplitude 1, or all zeros
            when no in-band harmonic is non-zero
        """
        n_harmonics = max(0, min(n_harmonics, self.length - 1, size // 2 - 1))
        key = (n_harmonics, size)
        table = self._tables.get(key)
        if table is None:
            table = periodic_table(self.real_coeffs, self.imag_coeffs, n_harmonics, size)
            self._tables[key] = table
        return table


def periodic_table(
    real: np.ndarray,
    imag: np.ndarray,
    n_harmonics: int,
    size: int
) -> np.ndarray:
    """
    Inverse-FFT a harmonic series into one normalized period.

    Raises:
        CompilationError: If the series does not give a finite table
    """
    spectrum = np.zeros(size // 2 + 1, dtype=np.complex128)
    k = np.arange(1, n_harmonics + 1)
    real, imag = real[k], imag[k]
    # Bring huge coefficients into range first; only the shape matters
    largest = max(np.max(np.abs(real), initial=0.0), np.max(np.abs(imag), initial=0.0))
    if largest > 0:
        real, imag = real / largest, imag / largest
    # irfft scales by 1/size and folds conjugate bins, hence size / 2
    spectrum[k] = (real - 1j * imag) * (size / 2)
    table = np.fft.irfft(spectrum, n=size)
    if not np.all(np.isfinite(table)):
        raise CompilationError("harmonic series does not give a finite waveform")

    peak = np.max(np.abs(table)) if table.size else 0.0
    if peak > 0:
        table /= peak
    return table


def compile_waveform(formula: str, sample_rate: int) -> CompiledWaveform:
    """
    Compile a formula of ``t`` into harmonic coefficients.

    For ``i`` in ``[0, sample_rate)`` the formula is evaluated at
    ``t = i / sample_rate`` to give ``real_coeffs[i]``; ``imag_coeffs`` is
    all zeros.

    Args:
        formula: User formula, e.g. ``"sin(2π t)"``
        sample_rate: Engine sample rate; also the number of coefficients

    Returns:
        CompiledWaveform

    Raises:
        CompilationError: If the formula does not parse or produces a
            non-finite value at any sample
    """
    expression = parse(formula)

    t = np.arange(sample_rate, dtype=np.float64) / sample_rate
    real = expression.evaluate(t)

    bad = ~np.isfinite(real)
    if np.any(bad):
        first = int(np.argmax(bad))
        raise CompilationError(
            f"formula is not finite at t={t[first]:.6f} ({real[first]})", formula
        )

    waveform = CompiledWaveform(
        real_coeffs=real,
        imag_coeffs=np.zeros(sample_rate, dtype=np.float64),
        name=formula
    )
    # Render the full-band table now so a bad series fails here, not mid-note
    try:
        waveform.wavetable(sample_rate)
    except CompilationError as exc:
        raise CompilationError(exc.message, formula) from exc
    return waveform


def builtin_waveform(kind: Union[OscillatorType, str], length: int) -> CompiledWaveform:
    """
    Harmonic series of a built-in oscillator shape.

    Args:
        kind: 'sine', 'square', 'sawtooth' or 'triangle'
        length: Number of coefficients

    Returns:
        CompiledWaveform for the shape
    """
    kind = OscillatorType(kind)
    real = np.zeros(length, dtype=np.float64)
    imag = np.zeros(length, dtype=np.float64)
    k = np.arange(1, length, dtype=np.float64)

    if kind is OscillatorType.SINE:
        imag[1] = 1.0
    elif kind is OscillatorType.SQUARE:
        odd = (k % 2) == 1
        imag[1:][odd] = 4.0 / (np.pi * k[odd])
    elif kind is OscillatorType.SAWTOOTH:
        imag[1:] = 2.0 / (np.pi * k) * np.where(k % 2 == 1, 1.0, -1.0)
    elif kind is OscillatorType.TRIANGLE:
        odd = (k % 2) == 1
        signs = np.where(((k[odd] - 1) / 2) % 2 == 0, 1.0, -1.0)
        imag[1:][odd] = 8.0 / (np.pi ** 2 * k[odd] ** 2) * signs
    else:
        raise ValueError(f"{kind.value} is not a built-in waveform")

    return CompiledWaveform(real_coeffs=real, imag_coeffs=imag, name=kind.value)


class WaveformCompiler:
    """
    Compiles and caches waveforms for one engine.

    Results are deterministic in the formula, so both successes and
    failures are cached for the engine's lifetime.
    """

    def __init__(self, sample_rate: int = 44100):
        """
        Initialize compiler.

        Args:
            sample_rate: Engine sample rate in Hz
        """
        self.sample_rate = sample_rate
        self._compiled: Dict[str, CompiledWaveform] = {}
        self._failed: Dict[str, str] = {}
        self._builtin: Dict[OscillatorType, CompiledWaveform] = {}

    def compile(self, formula: str) -> CompiledWaveform:
        """
        Compile a formula, using the cache when possible.

        Raises:
            CompilationError: If the formula is invalid
        """
        if formula in self._compiled:
            return self._compiled[formula]
        if formula in self._failed:
            raise CompilationError(self._failed[formula], formula)

        try:
            waveform = compile_waveform(formula, self.sample_rate)
        except CompilationError as exc:
            self._failed[formula] = exc.message
            raise

        self._compiled[formula] = waveform
        logger.debug("waveform_compiled", formula=formula, length=waveform.length)
        return waveform

    def builtin(self, kind: Union[OscillatorType, str]) -> CompiledWaveform:
        """Get the cached series for a built-in shape."""
        kind = OscillatorType(kind)
        if kind not in self._builtin:
            self._builtin[kind] = builtin_waveform(kind, self.sample_rate)
        return self._builtin[kind]
