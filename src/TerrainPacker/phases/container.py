"""Serialize packed RGBA buffers as PNG or block-compressed DDS.

DDS output carries a full mip chain: every level is resized from mip 0,
block-compressed individually with Pillow's BCn encoder, then the
compressed payloads are assembled behind a single header that declares
the chain.
"""

import io
import logging
import math
import os
import struct
import threading
from typing import List, Optional

import numpy as np
import cv2
from PIL import Image

from ..config import DDSConfig, OutputFormat, PackerConfig
from ..core import EncodeError, OutputWriteError, save_png
from .composite import CompositeResult

logger = logging.getLogger("terrain_packer.container")

ALBEDO_STEM = "albedo"
NORMAL_STEM = "normal"

_MIP_FILTERS = {
    "area": cv2.INTER_AREA,
    "linear": cv2.INTER_LINEAR,
    "cubic": cv2.INTER_CUBIC,
    "lanczos": cv2.INTER_LANCZOS4,
    "nearest": cv2.INTER_NEAREST,
}

# DDS header field flags.
DDSD_CAPS = 0x1
DDSD_HEIGHT = 0x2
DDSD_WIDTH = 0x4
DDSD_PITCH = 0x8
DDSD_PIXELFORMAT = 0x1000
DDSD_MIPMAPCOUNT = 0x20000
DDSD_LINEARSIZE = 0x80000
DDSCAPS_COMPLEX = 0x8
DDSCAPS_TEXTURE = 0x1000
DDSCAPS_MIPMAP = 0x400000

# Block size (bytes per 4x4 block) of the 4-component formats we emit.
_BLOCK_BYTES_FOURCC = {b"DXT5": 16}
_BLOCK_BYTES_DXGI = {76: 16, 77: 16, 78: 16}  # BC3_TYPELESS, BC3_UNORM, BC3_UNORM_SRGB

_BLOCK_DIM = 4


def output_paths(output_dir: str, output_format: OutputFormat) -> List[str]:
    """Return the albedo and normal destination paths for a run."""
    ext = output_format.extension
    return [
        os.path.join(output_dir, ALBEDO_STEM + ext),
        os.path.join(output_dir, NORMAL_STEM + ext),
    ]


def mip_count_for(width: int, height: int) -> int:
    """Number of levels in a full chain down to 1x1."""
    return int(math.log2(max(width, height, 1))) + 1


class ContainerWriter:
    """Write packed textures to disk in the configured container."""

    def __init__(self, config: PackerConfig):
        """Initialize writer with runtime configuration."""
        self.config = config
        self.cfg: DDSConfig = config.dds

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    def write(self, rgba: np.ndarray, destination: str,
              output_format: Optional[OutputFormat] = None) -> None:
        """Write one RGBA buffer to ``destination``."""
        output_format = output_format or self.config.output_format
        if output_format is OutputFormat.PNG:
            save_png(rgba, destination)
        elif output_format is OutputFormat.DDS:
            self.write_dds(rgba, destination)
        else:
            raise EncodeError(f"Unsupported output format: {output_format}")
        logger.info("Wrote %s", destination)

    def write_composite(self, result: CompositeResult, output_dir: str,
                        output_format: Optional[OutputFormat] = None) -> List[str]:
        """Write ``albedo.<ext>`` then ``normal.<ext>`` into ``output_dir``.

        The first failure aborts the run; a file already written stays on disk.
        """
        output_format = output_format or self.config.output_format
        if not output_dir or not os.path.isdir(output_dir):
            raise OutputWriteError(f"Output directory does not exist: {output_dir!r}")
        albedo_path, normal_path = output_paths(output_dir, output_format)
        self.write(result.albedo, albedo_path, output_format)
        self.write(result.normal, normal_path, output_format)
        return [albedo_path, normal_path]

    # ──────────────────────────────────────────
    # DDS Generation
    # ──────────────────────────────────────────

    def build_mip_chain(self, rgba: np.ndarray) -> List[np.ndarray]:
        """Return every mip level from full size down to 1x1."""
        h, w = rgba.shape[:2]
        interp = _MIP_FILTERS.get(self.cfg.mip_filter, cv2.INTER_AREA)
        base = np.ascontiguousarray(rgba)
        mips = [base]
        for level in range(1, mip_count_for(w, h)):
            target_w = max(w >> level, 1)
            target_h = max(h >> level, 1)
            # Always downsample from mip 0; halve progressively to avoid
            # aliasing on large jumps with non-box filters.
            src = base
            curr_h, curr_w = src.shape[:2]
            while curr_w > target_w * 2 or curr_h > target_h * 2:
                next_w = max(curr_w // 2, target_w)
                next_h = max(curr_h // 2, target_h)
                src = cv2.resize(src, (next_w, next_h), interpolation=interp)
                curr_w, curr_h = next_w, next_h
            mip = cv2.resize(src, (target_w, target_h), interpolation=interp)
            mips.append(mip.astype(np.uint8, copy=False))
        return mips

    def _encode_level(self, mip: np.ndarray) -> dict:
        """Block-compress one level and split the resulting DDS into parts."""
        h, w = mip.shape[:2]
        pad_h = max(_BLOCK_DIM - h, 0)
        pad_w = max(_BLOCK_DIM - w, 0)
        if pad_h or pad_w:
            # Sub-block levels still occupy one full block.
            mip = np.pad(mip, ((0, pad_h), (0, pad_w), (0, 0)), mode="edge")

        buf = io.BytesIO()
        try:
            with Image.fromarray(np.ascontiguousarray(mip)) as img:
                img.save(buf, format="DDS", pixel_format=self.cfg.pixel_format)
        except (OSError, ValueError, KeyError) as exc:
            raise EncodeError(
                f"Failed to encode {w}x{h} mip as {self.cfg.pixel_format}: {exc}"
            ) from exc

        parts = _split_dds(buf.getvalue())
        blocks = max(1, (w + 3) // 4) * max(1, (h + 3) // 4)
        expected = blocks * parts["block_bytes"]
        if len(parts["data"]) < expected:
            raise EncodeError(
                f"Encoded {w}x{h} mip payload is {len(parts['data'])} bytes, "
                f"expected {expected}"
            )
        parts["data"] = parts["data"][:expected]
        return parts

    def encode_dds(self, rgba: np.ndarray) -> bytes:
        """Return a complete DDS file with a full mip chain for ``rgba``."""
        mips = self.build_mip_chain(rgba)
        levels = [self._encode_level(mip) for mip in mips]
        base = levels[0]
        header = bytearray(base["header"])

        # Declare dimensions of the unpadded base level.
        struct.pack_into("<I", header, 8, rgba.shape[0])
        struct.pack_into("<I", header, 12, rgba.shape[1])
        struct.pack_into("<I", header, 24, len(levels))

        flags = struct.unpack_from("<I", header, 4)[0]
        flags |= (
            DDSD_CAPS | DDSD_HEIGHT | DDSD_WIDTH | DDSD_PIXELFORMAT |
            DDSD_MIPMAPCOUNT | DDSD_LINEARSIZE
        )
        flags &= ~DDSD_PITCH
        struct.pack_into("<I", header, 4, flags)
        struct.pack_into("<I", header, 16, len(base["data"]))

        caps = struct.unpack_from("<I", header, 104)[0]
        caps |= DDSCAPS_TEXTURE | DDSCAPS_COMPLEX | DDSCAPS_MIPMAP
        struct.pack_into("<I", header, 104, caps)

        out = bytearray(b"DDS ")
        out += header
        out += base["dx10_header"]
        for level in levels:
            out += level["data"]
        logger.debug(
            "Assembled %d-level %s DDS (%d bytes) for %dx%d",
            len(levels), self.cfg.pixel_format, len(out), rgba.shape[1], rgba.shape[0],
        )
        return bytes(out)

    def write_dds(self, rgba: np.ndarray, path: str) -> None:
        """Encode ``rgba`` as a mipmapped BC3 DDS and write it atomically."""
        data = self.encode_dds(rgba)
        tmp_path = f"{path}.tmp.{os.getpid()}.{threading.get_ident()}.dds"
        try:
            with open(tmp_path, "wb") as f:
                f.write(data)
            os.replace(tmp_path, path)
        except OSError as exc:
            raise OutputWriteError(f"Failed to write {path}: {exc}") from exc
        finally:
            if os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError:
                    pass


def _split_dds(raw: bytes) -> dict:
    """Split an encoded DDS into header, optional DX10 header, and payload."""
    if len(raw) < 128 or raw[:4] != b"DDS ":
        raise EncodeError("Encoder produced an invalid DDS header")
    header = bytes(raw[4:128])
    fourcc = header[80:84]
    dx10_header = b""
    data_offset = 128
    if fourcc == b"DX10":
        if len(raw) < 148:
            raise EncodeError("Encoder produced a truncated DX10 header")
        dx10_header = bytes(raw[128:148])
        data_offset = 148
        dxgi = struct.unpack_from("<I", dx10_header, 0)[0]
        block_bytes = _BLOCK_BYTES_DXGI.get(dxgi)
    else:
        block_bytes = _BLOCK_BYTES_FOURCC.get(fourcc)
    if block_bytes is None:
        # Older Pillow releases ignore pixel_format and write uncompressed data.
        raise EncodeError(
            f"Encoder did not produce a BC3 texture (fourCC={fourcc!r}); "
            "Pillow >= 11.2 is required for compressed DDS output"
        )
    return {
        "header": header,
        "dx10_header": dx10_header,
        "data": bytes(raw[data_offset:]),
        "block_bytes": block_bytes,
    }
