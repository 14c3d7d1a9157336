"""Dimension checks applied to every decoded source texture."""

from typing import Optional

import numpy as np

from .errors import TextureValidationError, ValidationErrorKind

MIN_TEXTURE_DIM = 512


def is_power_of_two(value: int) -> bool:
    return value > 0 and (value & (value - 1)) == 0


def find_dimension_violation(width: int, height: int) -> Optional[ValidationErrorKind]:
    """Return the first violated rule, or None when the size is acceptable.

    Rules are checked in a fixed order: square, power of two, minimum size.
    """
    if width != height:
        return ValidationErrorKind.NOT_SQUARE
    if not is_power_of_two(width):
        return ValidationErrorKind.NOT_POWER_OF_TWO
    if width < MIN_TEXTURE_DIM:
        return ValidationErrorKind.TOO_SMALL
    return None


def validate_texture(image: np.ndarray) -> None:
    """Raise TextureValidationError if ``image`` (H, W[, C]) is not packable."""
    height, width = image.shape[:2]
    kind = find_dimension_violation(width, height)
    if kind is not None:
        raise TextureValidationError(kind)
