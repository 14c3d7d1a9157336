"""Display-resolution copies of validated source textures."""

import numpy as np
import cv2

PREVIEW_SIZE = 512


def reduce_preview(image: np.ndarray) -> np.ndarray:
    """Return a new PREVIEW_SIZE x PREVIEW_SIZE RGBA copy of ``image``.

    Nearest-neighbour sampling keeps preview pixels exact source values.
    The input array is never modified.
    """
    if image.shape[:2] == (PREVIEW_SIZE, PREVIEW_SIZE):
        return np.array(image, dtype=np.uint8, copy=True)
    resized = cv2.resize(
        np.ascontiguousarray(image),
        (PREVIEW_SIZE, PREVIEW_SIZE),
        interpolation=cv2.INTER_NEAREST,
    )
    return resized.astype(np.uint8, copy=False)
