"""Core utilities -- re-exports all public symbols for convenience."""

from .errors import (
    ValidationErrorKind,
    TexturePackerError,
    TextureValidationError,
    DecodeError,
    CompositeError,
    EncodeError,
    OutputWriteError,
    RunNotReadyError,
)
from .io import (
    SUPPORTED_EXTENSIONS,
    is_supported_texture,
    load_texture,
    luminance,
    save_png,
    to_rgba8,
)
from .validate import (
    MIN_TEXTURE_DIM,
    find_dimension_violation,
    is_power_of_two,
    validate_texture,
)
from .preview import PREVIEW_SIZE, reduce_preview
from .records import SourceImage
from .classify import classify_slot, is_smoothness_name
from .logging import setup_logging

__all__ = [
    "ValidationErrorKind", "TexturePackerError", "TextureValidationError",
    "DecodeError", "CompositeError", "EncodeError", "OutputWriteError",
    "RunNotReadyError",
    "SUPPORTED_EXTENSIONS", "is_supported_texture", "load_texture",
    "luminance", "save_png", "to_rgba8",
    "MIN_TEXTURE_DIM", "find_dimension_violation", "is_power_of_two",
    "validate_texture",
    "PREVIEW_SIZE", "reduce_preview",
    "SourceImage",
    "classify_slot", "is_smoothness_name",
    "setup_logging",
]
