"""
Parameter snapshot supplied by callers (CLI, UI state) to the engine.

All models are frozen: a snapshot is an immutable input to one note.
Range checks live here so that nothing out of range ever reaches graph
construction.
"""

from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from aliensynth.core.exceptions import ValidationError

DEFAULT_FORMULA = "sin(2π t)"


class OscillatorType(str, Enum):
    """Oscillator waveform source."""

    CUSTOM = "custom"      # compiled from a user formula
    SINE = "sine"
    SQUARE = "square"
    SAWTOOTH = "sawtooth"
    TRIANGLE = "triangle"


class OscillatorSpec(BaseModel):
    """One oscillator slot of a voice."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    formula: Optional[str] = Field(DEFAULT_FORMULA, max_length=512)
    volume: float = Field(0.5, ge=0.0, le=1.0)
    detune_cents: float = Field(0.0, ge=-1200.0, le=1200.0)
    type: OscillatorType = OscillatorType.CUSTOM

    @model_validator(mode="after")
    def _custom_needs_formula(self) -> "OscillatorSpec":
        if self.type is OscillatorType.CUSTOM and not self.formula:
            raise ValueError("custom oscillator requires a formula")
        return self


class Envelope(BaseModel):
    """ADSR envelope. Attack, decay and release are seconds; sustain is a level."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    attack: float = Field(0.1, ge=0.0)
    decay: float = Field(0.2, ge=0.0)
    sustain: float = Field(0.7, ge=0.0, le=1.0)
    release: float = Field(0.5, ge=0.0)


class EffectParams(BaseModel):
    """Reverb level and delay time of the effect chain."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    reverb_level: float = Field(0.5, ge=0.0, le=1.0)
    delay_time_seconds: float = Field(0.3, ge=0.0, le=5.0)


class LFOParams(BaseModel):
    """Pitch LFO. Amplitude is a frequency deviation in Hz."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    frequency_hz: float = Field(1.0, ge=0.0)
    amplitude: float = Field(0.0, ge=0.0)


class NoteParams(BaseModel):
    """Complete parameter snapshot for one note."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    oscillators: Tuple[OscillatorSpec, ...] = Field(
        default_factory=lambda: (OscillatorSpec(),), min_length=1
    )
    envelope: Envelope = Field(default_factory=Envelope)
    effects: EffectParams = Field(default_factory=EffectParams)
    lfo: LFOParams = Field(default_factory=LFOParams)
    duration: float = Field(2.0, gt=0.0)
    frequency: float = Field(220.0, gt=0.0)


def _describe(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error["loc"]) or "params"
        parts.append(f"{location}: {error['msg']}")
    return "; ".join(parts)


def validate_params(data: Union[NoteParams, Dict[str, Any]]) -> NoteParams:
    """
    Validate a raw parameter mapping into a NoteParams snapshot.

    Args:
        data: NoteParams instance or a plain mapping (e.g. parsed CLI flags)

    Returns:
        Validated NoteParams

    Raises:
        ValidationError: If any value is missing or outside its range
    """
    if isinstance(data, NoteParams):
        return data
    try:
        return NoteParams.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(_describe(exc)) from exc
