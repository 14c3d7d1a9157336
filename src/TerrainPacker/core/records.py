"""Source image record."""

from dataclasses import dataclass

import numpy as np

from .io import load_texture, to_rgba8
from .preview import reduce_preview
from .validate import validate_texture


@dataclass(frozen=True, eq=False)
class SourceImage:
    """A validated source texture plus its display-resolution copy.

    ``original`` is the full-resolution (H, W, 4) uint8 buffer used for
    packing; ``preview`` is a 512x512 copy for display only. Both arrays
    are read-only once the record exists.
    """

    path: str
    original: np.ndarray
    preview: np.ndarray

    @property
    def width(self) -> int:
        return int(self.original.shape[1])

    @property
    def height(self) -> int:
        return int(self.original.shape[0])

    @property
    def channels(self) -> int:
        return int(self.original.shape[2])

    @property
    def size(self) -> tuple:
        return (self.width, self.height)

    @classmethod
    def from_array(cls, image: np.ndarray, path: str = "") -> "SourceImage":
        """Validate ``image`` and build its preview; raises TextureValidationError."""
        validate_texture(image)
        original = to_rgba8(np.asarray(image, dtype=np.uint8))
        preview = reduce_preview(original)
        original.flags.writeable = False
        preview.flags.writeable = False
        return cls(path=path, original=original, preview=preview)

    @classmethod
    def load(cls, path: str, max_pixels: int = 0) -> "SourceImage":
        """Decode, validate, and reduce the texture at ``path``."""
        return cls.from_array(load_texture(path, max_pixels=max_pixels), path=path)
