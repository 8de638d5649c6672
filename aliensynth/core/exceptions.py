"""
Custom exceptions for the alien-synth engine.
"""


class SynthError(Exception):
    """Base exception for all synthesizer errors."""
    
    def __init__(self, message: str, code: str = "SYNTH_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


class CompilationError(SynthError):
    """Waveform formula could not be parsed or evaluated."""
    
    def __init__(self, message: str, formula: str = "") -> None:
        self.formula = formula
        super().__init__(message, code="COMPILATION_ERROR")


class ValidationError(SynthError):
    """Parameter validation errors."""
    
    def __init__(self, message: str) -> None:
        super().__init__(message, code="VALIDATION_ERROR")


class DeviceError(SynthError):
    """Audio output device could not be opened or failed while streaming."""
    
    def __init__(self, message: str) -> None:
        super().__init__(message, code="DEVICE_ERROR")
