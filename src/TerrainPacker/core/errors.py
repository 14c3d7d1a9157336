"""Exception types raised by the packer core."""

from enum import Enum


class ValidationErrorKind(Enum):
    """Geometric preconditions a source texture can violate."""

    NOT_SQUARE = "Image must be square"
    NOT_POWER_OF_TWO = "Image dimensions must be power of 2"
    TOO_SMALL = "Image must be at least 512x512"


class TexturePackerError(RuntimeError):
    """Base class for all packer failures surfaced to callers."""


class TextureValidationError(TexturePackerError):
    """Raised when a decoded image fails the dimension checks."""

    def __init__(self, kind: ValidationErrorKind):
        super().__init__(kind.value)
        self.kind = kind


class DecodeError(TexturePackerError):
    """Raised when a source file cannot be decoded."""


class CompositeError(TexturePackerError):
    """Raised when contributing maps cannot be packed together."""


class EncodeError(TexturePackerError):
    """Raised when an output container cannot be encoded."""


class OutputWriteError(TexturePackerError, OSError):
    """Raised when an output file cannot be created or written."""


class RunNotReadyError(TexturePackerError):
    """Raised when a packing run is requested while it is disabled."""
