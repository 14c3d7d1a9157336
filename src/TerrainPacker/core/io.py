"""Image I/O utilities -- decode to 8-bit RGBA numpy arrays with explicit depth handling."""

import logging
import os
import threading
from pathlib import Path

# Must be set before cv2 is imported for OpenEXR decoding to be available.
os.environ.setdefault("OPENCV_IO_ENABLE_OPENEXR", "1")

import numpy as np  # noqa: E402
import cv2  # noqa: E402
from PIL import Image  # noqa: E402

from .errors import DecodeError, OutputWriteError  # noqa: E402

# Pixel-count validation happens per call in load_texture() instead.
Image.MAX_IMAGE_PIXELS = None

logger = logging.getLogger("terrain_packer.io")

SUPPORTED_EXTENSIONS = (
    ".avif", ".bmp", ".dds", ".exr", ".gif", ".hdr", ".ico", ".jpg", ".jpeg",
    ".png", ".pnm", ".pbm", ".pgm", ".ppm", ".qoi", ".tga", ".tiff", ".tif",
    ".webp",
)

# Formats Pillow cannot decode; read through OpenCV instead.
_CV2_EXTENSIONS = (".exr", ".hdr")

# Rec.709 luma weights scaled to integers, as used for 8-bit luma conversion.
_LUMA_WEIGHTS = np.array([2126, 7152, 722], dtype=np.uint32)


def is_supported_texture(path: str) -> bool:
    return Path(path).suffix.lower() in SUPPORTED_EXTENSIONS


def _infer_integer_mode_bit_depth(img: Image.Image, ext: str) -> int:
    """Infer bit depth for Pillow mode ``I`` images.

    Prefers explicit metadata over pixel statistics.
    """
    bits_info = img.info.get("bits")
    if isinstance(bits_info, int) and bits_info > 0:
        return bits_info

    # TIFF BitsPerSample tag
    tag_v2 = getattr(img, "tag_v2", None)
    if tag_v2 is not None:
        bits_tag = tag_v2.get(258)
        if isinstance(bits_tag, tuple) and bits_tag:
            bits_tag = bits_tag[0]
        if isinstance(bits_tag, int) and bits_tag > 0:
            return bits_tag

    # TIFF "I" is frequently 16-bit data promoted to "I".
    if ext in (".tif", ".tiff", ".png"):
        return 16
    return 32


def _scale_integer_to_u8(arr: np.ndarray, bit_depth: int) -> np.ndarray:
    max_value = float((1 << min(bit_depth, 32)) - 1)
    scaled = np.clip(arr.astype(np.float64) / max_value, 0.0, 1.0) * 255.0
    return np.round(scaled).astype(np.uint8)


def _float_to_u8(arr: np.ndarray) -> np.ndarray:
    return np.round(np.clip(arr.astype(np.float32), 0.0, 1.0) * 255.0).astype(np.uint8)


def to_rgba8(arr: np.ndarray) -> np.ndarray:
    """Expand an 8-bit L/LA/RGB/RGBA array to contiguous (H, W, 4)."""
    if arr.ndim == 2:
        arr = arr[:, :, np.newaxis]
    h, w, channels = arr.shape
    out = np.empty((h, w, 4), dtype=np.uint8)
    if channels in (1, 2):
        out[:, :, :3] = arr[:, :, :1]
    elif channels >= 3:
        out[:, :, :3] = arr[:, :, :3]
    else:
        raise ValueError(f"Unsupported channel count: {channels}")
    if channels in (2, 4):
        out[:, :, 3] = arr[:, :, channels - 1]
    else:
        out[:, :, 3] = 255
    return out


def _decode_with_pillow(path: str, ext: str, max_pixels: int) -> np.ndarray:
    with Image.open(path) as img:
        _check_pixel_budget(path, img.width, img.height, max_pixels)

        if ext == ".dds":
            logger.debug(
                "DDS loaded: %s mode=%s pixel_format=%s size=%s",
                path, img.mode, getattr(img, "pixel_format", "unknown"), img.size,
            )

        if img.mode in ("I;16", "I;16B", "I;16L", "I;16N"):
            logger.debug("Loading %s as 16-bit integer mode %s", path, img.mode)
            return to_rgba8(_scale_integer_to_u8(np.asarray(img), 16))

        if img.mode == "I":
            bit_depth = _infer_integer_mode_bit_depth(img, ext)
            logger.debug("Loading %s as mode I with bit depth %d", path, bit_depth)
            return to_rgba8(_scale_integer_to_u8(np.asarray(img), bit_depth))

        if img.mode == "F":
            logger.debug("Loading %s as float mode, clamping to [0, 1]", path)
            return to_rgba8(_float_to_u8(np.asarray(img)))

        if img.mode in ("L", "LA", "RGB", "RGBA"):
            return to_rgba8(np.asarray(img, dtype=np.uint8))

        # Palette, CMYK, YCbCr, 1-bit and friends.
        logger.debug("Converting %s from mode %s to RGBA", path, img.mode)
        with img.convert("RGBA") as converted:
            return to_rgba8(np.asarray(converted, dtype=np.uint8))


def _decode_with_cv2(path: str, max_pixels: int) -> np.ndarray:
    arr = cv2.imread(path, cv2.IMREAD_UNCHANGED)
    if arr is None:
        raise DecodeError(f"Failed to open image: {path}")
    _check_pixel_budget(path, arr.shape[1], arr.shape[0], max_pixels)

    if arr.ndim == 3 and arr.shape[2] == 3:
        arr = arr[:, :, ::-1]  # BGR -> RGB
    elif arr.ndim == 3 and arr.shape[2] == 4:
        arr = arr[:, :, [2, 1, 0, 3]]  # BGRA -> RGBA

    if np.issubdtype(arr.dtype, np.floating):
        arr = _float_to_u8(arr)
    elif arr.dtype == np.uint16:
        arr = _scale_integer_to_u8(arr, 16)
    else:
        arr = arr.astype(np.uint8, copy=False)
    return to_rgba8(arr)


def _check_pixel_budget(path: str, width: int, height: int, max_pixels: int) -> None:
    if max_pixels > 0 and width * height > max_pixels:
        raise DecodeError(
            f"Image too large: {path} is {width}x{height} = {width * height:,} "
            f"pixels (max {max_pixels:,})"
        )


def load_texture(path: str, max_pixels: int = 0) -> np.ndarray:
    """Decode ``path`` to a (H, W, 4) uint8 RGBA array.

    16-bit data is rescaled to 8 bits; float data is clamped to [0, 1]
    and rescaled. Raises DecodeError for unreadable or unsupported files.
    """
    ext = Path(path).suffix.lower()
    if ext not in SUPPORTED_EXTENSIONS:
        raise DecodeError(
            f"Unsupported image format '{ext or path}'. "
            f"Supported: {', '.join(e.lstrip('.') for e in SUPPORTED_EXTENSIONS)}"
        )
    if not os.path.isfile(path):
        raise DecodeError(f"File not found: {path}")

    try:
        if ext in _CV2_EXTENSIONS:
            arr = _decode_with_cv2(path, max_pixels)
        else:
            arr = _decode_with_pillow(path, ext, max_pixels)
    except DecodeError:
        raise
    except Exception as e:
        logger.error("Failed to open image '%s' (ext=%s): %s", path, ext, e)
        raise DecodeError(f"Failed to open image: {path} ({e})") from e

    logger.debug("Decoded %s -> %s", path, arr.shape)
    return arr


def luminance(rgba: np.ndarray) -> np.ndarray:
    """Return (H, W) uint8 Rec.709 luma using integer weights.

    Grey pixels map to their own value exactly.
    """
    rgb = rgba[:, :, :3].astype(np.uint32)
    weighted = (
        rgb[:, :, 0] * _LUMA_WEIGHTS[0] +
        rgb[:, :, 1] * _LUMA_WEIGHTS[1] +
        rgb[:, :, 2] * _LUMA_WEIGHTS[2]
    )
    return (weighted // 10000).astype(np.uint8)


def save_png(rgba: np.ndarray, path: str) -> None:
    """Losslessly write an RGBA uint8 array as PNG.

    Uses an atomic write (temp file + ``os.replace``) so a crash never
    leaves a truncated output behind.
    """
    if rgba.ndim != 3 or rgba.shape[-1] != 4 or rgba.dtype != np.uint8:
        raise ValueError(f"Expected (H, W, 4) uint8 array, got {rgba.shape} {rgba.dtype}")

    tmp_path = f"{path}.tmp.{os.getpid()}.{threading.get_ident()}.png"
    try:
        with Image.fromarray(np.ascontiguousarray(rgba)) as img:
            img.save(tmp_path, format="PNG")
        os.replace(tmp_path, path)
        logger.debug("Saved: %s (%s, 8bit)", path, rgba.shape)
    except OSError as e:
        raise OutputWriteError(f"Failed to write {path}: {e}") from e
    finally:
        if os.path.exists(tmp_path):
            try:
                os.remove(tmp_path)
            except OSError:
                pass
