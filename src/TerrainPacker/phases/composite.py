"""Pack source maps into the albedo+height and normal+roughness textures.

Every channel operation here is per-pixel: an output pixel depends only on
the same pixel of each contributing map. Work is therefore split into
disjoint row bands that run concurrently, each band writing only its own
rows of the output buffer.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from ..config import NormalEncoding, PackerConfig, RoughnessEncoding
from ..core import CompositeError, luminance, to_rgba8

logger = logging.getLogger("terrain_packer.composite")

OPAQUE_ALPHA = 255
NEUTRAL_ROUGHNESS = 128


@dataclass
class CompositeResult:
    """Packed albedo (RGB x AO, A = height) and normal (A = roughness) buffers."""

    albedo: np.ndarray
    normal: np.ndarray


def _check_same_size(primary: np.ndarray, contributor: Optional[np.ndarray],
                     primary_name: str, contributor_name: str) -> None:
    if contributor is None:
        return
    if contributor.shape[:2] != primary.shape[:2]:
        ph, pw = primary.shape[:2]
        ch, cw = contributor.shape[:2]
        raise CompositeError(
            f"Dimension mismatch: {contributor_name} is {cw}x{ch} "
            f"but {primary_name} is {pw}x{ph}"
        )


class ChannelCompositor:
    """Apply per-channel merge policies to produce the two packed textures."""

    def __init__(self, config: PackerConfig):
        """Initialize compositor with runtime configuration."""
        self.config = config
        self.workers = config.resolve_pixel_workers()

    def _for_each_band(self, height: int, fn: Callable[[int, int], None]) -> None:
        """Run ``fn(start, stop)`` over disjoint row bands covering ``height`` rows."""
        workers = max(1, min(self.workers, height))
        if workers == 1:
            fn(0, height)
            return
        bounds = np.linspace(0, height, workers + 1).astype(int)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pack") as executor:
            futures = [
                executor.submit(fn, int(start), int(stop))
                for start, stop in zip(bounds[:-1], bounds[1:])
                if stop > start
            ]
            # result() re-raises the first band failure in the caller.
            for future in futures:
                future.result()

    def pack_albedo(self, albedo: np.ndarray, ao: Optional[np.ndarray] = None,
                    height: Optional[np.ndarray] = None) -> np.ndarray:
        """Return RGBA albedo with AO multiplied into RGB and height in alpha.

        Without a height map alpha is fully opaque (255).
        """
        _check_same_size(albedo, ao, "albedo", "ambient occlusion")
        _check_same_size(albedo, height, "albedo", "height")
        out = to_rgba8(albedo)

        def _band(start: int, stop: int) -> None:
            rows = out[start:stop]
            if ao is not None:
                factor = luminance(ao[start:stop]).astype(np.float32) / 255.0
                rgb = rows[:, :, :3].astype(np.float32) * factor[:, :, np.newaxis]
                rows[:, :, :3] = rgb.astype(np.uint8)
            if height is not None:
                rows[:, :, 3] = luminance(height[start:stop])
            else:
                rows[:, :, 3] = OPAQUE_ALPHA

        self._for_each_band(out.shape[0], _band)
        logger.debug(
            "Packed albedo %dx%d (ao=%s, height=%s)",
            out.shape[1], out.shape[0], ao is not None, height is not None,
        )
        return out

    def pack_normal(self, normal: np.ndarray, roughness: Optional[np.ndarray] = None,
                    normal_encoding: Optional[NormalEncoding] = None,
                    roughness_encoding: Optional[RoughnessEncoding] = None) -> np.ndarray:
        """Return RGBA normal with roughness in alpha.

        DirectX sources get their green channel flipped to the OpenGL
        convention. Alpha always stores roughness: smoothness sources are
        inverted, and a missing map yields the neutral value 128.
        """
        normal_encoding = normal_encoding or self.config.normal_encoding
        roughness_encoding = roughness_encoding or self.config.roughness_encoding
        _check_same_size(normal, roughness, "normal", "roughness")
        out = to_rgba8(normal)
        flip_green = normal_encoding is NormalEncoding.DIRECTX
        invert_alpha = roughness_encoding is RoughnessEncoding.SMOOTHNESS

        def _band(start: int, stop: int) -> None:
            rows = out[start:stop]
            if flip_green:
                rows[:, :, 1] = 255 - rows[:, :, 1]
            if roughness is not None:
                values = luminance(roughness[start:stop])
                rows[:, :, 3] = 255 - values if invert_alpha else values
            else:
                rows[:, :, 3] = NEUTRAL_ROUGHNESS

        self._for_each_band(out.shape[0], _band)
        logger.debug(
            "Packed normal %dx%d (encoding=%s, roughness=%s/%s)",
            out.shape[1], out.shape[0], normal_encoding.value,
            roughness is not None, roughness_encoding.value,
        )
        return out

    def process(
        self,
        albedo: np.ndarray,
        normal: np.ndarray,
        ao: Optional[np.ndarray] = None,
        height: Optional[np.ndarray] = None,
        roughness: Optional[np.ndarray] = None,
        normal_encoding: Optional[NormalEncoding] = None,
        roughness_encoding: Optional[RoughnessEncoding] = None,
    ) -> CompositeResult:
        """Build both packed textures from the loaded full-resolution maps."""
        if albedo is None or normal is None:
            raise CompositeError("Albedo and normal maps are both required")
        return CompositeResult(
            albedo=self.pack_albedo(albedo, ao=ao, height=height),
            normal=self.pack_normal(
                normal,
                roughness=roughness,
                normal_encoding=normal_encoding,
                roughness_encoding=roughness_encoding,
            ),
        )
