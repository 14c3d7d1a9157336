"""Tests for channel compositing of the packed albedo and normal textures."""

import numpy as np
import pytest

from TerrainPacker.config import NormalEncoding, PackerConfig, RoughnessEncoding
from TerrainPacker.core import CompositeError
from TerrainPacker.phases.composite import (
    ChannelCompositor,
    NEUTRAL_ROUGHNESS,
    OPAQUE_ALPHA,
)

from conftest import random_rgba, solid_gray, solid_rgba


@pytest.fixture
def compositor():
    config = PackerConfig()
    config.pixel_workers = 4
    return ChannelCompositor(config)


def test_ao_multiplies_rgb_with_truncation(compositor) -> None:
    albedo = solid_rgba((200, 100, 50, 255))
    out = compositor.pack_albedo(albedo, ao=solid_gray(128))
    expected = (200 * 128 // 255, 100 * 128 // 255, 50 * 128 // 255)
    assert expected == (100, 50, 25)
    assert (out[:, :, 0] == expected[0]).all()
    assert (out[:, :, 1] == expected[1]).all()
    assert (out[:, :, 2] == expected[2]).all()
    assert (out[:, :, 3] == OPAQUE_ALPHA).all()


def test_ao_does_not_touch_alpha_source(compositor) -> None:
    albedo = solid_rgba((200, 100, 50, 10))
    height = solid_gray(77)
    out = compositor.pack_albedo(albedo, ao=solid_gray(0), height=height)
    assert (out[:, :, :3] == 0).all()
    assert (out[:, :, 3] == 77).all()


def test_white_ao_is_identity(compositor) -> None:
    albedo = random_rgba(512, seed=5)
    out = compositor.pack_albedo(albedo, ao=solid_gray(255))
    np.testing.assert_array_equal(out[:, :, :3], albedo[:, :, :3])


def test_missing_height_gives_opaque_alpha(compositor) -> None:
    albedo = solid_rgba((1, 2, 3, 7))
    out = compositor.pack_albedo(albedo)
    assert (out[:, :, 3] == 255).all()
    assert (out[:, :, :3] == (1, 2, 3)).all()


def test_height_luminance_overwrites_alpha(compositor) -> None:
    out = compositor.pack_albedo(solid_rgba((9, 9, 9, 0)), height=solid_gray(77))
    assert (out[:, :, 3] == 77).all()


def test_height_uses_per_pixel_values(compositor) -> None:
    height = random_rgba(512, seed=6)
    height[:, :, 1] = height[:, :, 0]
    height[:, :, 2] = height[:, :, 0]
    out = compositor.pack_albedo(random_rgba(512, seed=7), height=height)
    np.testing.assert_array_equal(out[:, :, 3], height[:, :, 0])


def test_albedo_input_is_not_mutated(compositor) -> None:
    albedo = random_rgba(512, seed=8)
    snapshot = albedo.copy()
    compositor.pack_albedo(albedo, ao=solid_gray(10), height=solid_gray(20))
    np.testing.assert_array_equal(albedo, snapshot)


def test_directx_flips_green_only(compositor) -> None:
    normal = solid_rgba((10, 20, 30, 255))
    out = compositor.pack_normal(normal, normal_encoding=NormalEncoding.DIRECTX)
    assert (out[:, :, 0] == 10).all()
    assert (out[:, :, 1] == 235).all()
    assert (out[:, :, 2] == 30).all()


def test_opengl_leaves_rgb_untouched(compositor) -> None:
    normal = random_rgba(512, seed=11)
    out = compositor.pack_normal(normal, normal_encoding=NormalEncoding.OPENGL)
    np.testing.assert_array_equal(out[:, :, :3], normal[:, :, :3])


def test_missing_roughness_gives_neutral_alpha(compositor) -> None:
    out = compositor.pack_normal(solid_rgba((128, 128, 255, 3)))
    assert NEUTRAL_ROUGHNESS == 128
    assert (out[:, :, 3] == 128).all()


def test_roughness_encoding_stores_value(compositor) -> None:
    out = compositor.pack_normal(
        solid_rgba((128, 128, 255)),
        roughness=solid_gray(90),
        roughness_encoding=RoughnessEncoding.ROUGHNESS,
    )
    assert (out[:, :, 3] == 90).all()


def test_smoothness_encoding_inverts_value(compositor) -> None:
    out = compositor.pack_normal(
        solid_rgba((128, 128, 255)),
        roughness=solid_gray(90),
        roughness_encoding=RoughnessEncoding.SMOOTHNESS,
    )
    assert (out[:, :, 3] == 165).all()


def test_encodings_default_to_config(compositor) -> None:
    compositor.config.packing.normal_encoding = "directx"
    compositor.config.packing.roughness_encoding = "smoothness"
    out = compositor.pack_normal(solid_rgba((10, 20, 30)), roughness=solid_gray(90))
    assert (out[:, :, 1] == 235).all()
    assert (out[:, :, 3] == 165).all()


def test_band_parallelism_matches_single_worker() -> None:
    single_cfg = PackerConfig()
    single_cfg.pixel_workers = 1
    multi_cfg = PackerConfig()
    multi_cfg.pixel_workers = 7  # uneven band split
    inputs = dict(
        albedo=random_rgba(512, seed=1),
        normal=random_rgba(512, seed=2),
        ao=random_rgba(512, seed=3),
        height=random_rgba(512, seed=4),
        roughness=random_rgba(512, seed=5),
        normal_encoding=NormalEncoding.DIRECTX,
        roughness_encoding=RoughnessEncoding.SMOOTHNESS,
    )
    single = ChannelCompositor(single_cfg).process(**inputs)
    multi = ChannelCompositor(multi_cfg).process(**inputs)
    np.testing.assert_array_equal(single.albedo, multi.albedo)
    np.testing.assert_array_equal(single.normal, multi.normal)


def test_outputs_match_primary_sizes(compositor) -> None:
    result = compositor.process(
        albedo=random_rgba(1024, seed=1),
        normal=random_rgba(512, seed=2),
    )
    assert result.albedo.shape == (1024, 1024, 4)
    assert result.normal.shape == (512, 512, 4)


def test_read_only_inputs_are_accepted(compositor) -> None:
    albedo = random_rgba(512, seed=12)
    albedo.flags.writeable = False
    out = compositor.pack_albedo(albedo, ao=solid_gray(255))
    np.testing.assert_array_equal(out[:, :, :3], albedo[:, :, :3])


@pytest.mark.parametrize("slot", ["ao", "height"])
def test_albedo_contributor_size_mismatch_is_rejected(compositor, slot) -> None:
    with pytest.raises(CompositeError, match="Dimension mismatch"):
        compositor.pack_albedo(solid_rgba((1, 1, 1), size=1024), **{slot: solid_gray(5)})


def test_roughness_size_mismatch_is_rejected(compositor) -> None:
    with pytest.raises(CompositeError, match="roughness"):
        compositor.pack_normal(solid_rgba((1, 1, 1)), roughness=solid_gray(5, size=1024))


def test_process_requires_both_primaries(compositor) -> None:
    with pytest.raises(CompositeError):
        compositor.process(albedo=solid_rgba((1, 1, 1)), normal=None)
