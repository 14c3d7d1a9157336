"""End-to-end tests for the terrain-packer command line."""

import logging
import os

import numpy as np
import pytest
from PIL import Image

from TerrainPacker.cli import _discover_inputs, build_parser, main
from TerrainPacker.config import InputSlot, PackerConfig

from conftest import save_test_png, solid_gray, solid_rgba


@pytest.fixture
def rock_dir(tmp_dir):
    src = os.path.join(tmp_dir, "rock")
    os.makedirs(src)
    save_test_png(os.path.join(src, "rock_albedo.png"), solid_rgba((200, 100, 50)))
    save_test_png(os.path.join(src, "rock_normal.png"), solid_rgba((10, 20, 30)))
    save_test_png(os.path.join(src, "rock_smoothness.png"), solid_gray(90)[:, :, 0])
    with open(os.path.join(src, "notes.txt"), "w", encoding="utf-8") as f:
        f.write("not a texture")
    return src


@pytest.fixture
def out_dir(tmp_dir):
    out = os.path.join(tmp_dir, "out")
    os.makedirs(out)
    return out


def test_discover_inputs(rock_dir):
    found = _discover_inputs(rock_dir)
    assert set(found) == {InputSlot.ALBEDO, InputSlot.NORMAL, InputSlot.ROUGHNESS}
    assert found[InputSlot.ROUGHNESS].endswith("rock_smoothness.png")


def test_parser_rejects_unknown_format():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--format", "tga"])


def test_pack_from_directory(rock_dir, out_dir, capsys):
    main(["--input-dir", rock_dir, "-o", out_dir, "--log-level", "WARNING"])
    printed = capsys.readouterr().out
    assert "albedo.png" in printed and "normal.png" in printed
    with Image.open(os.path.join(out_dir, "normal.png")) as img:
        # smoothness map detected by filename and stored as roughness
        assert np.asarray(img)[0, 0].tolist() == [10, 20, 30, 165]
    with Image.open(os.path.join(out_dir, "albedo.png")) as img:
        assert np.asarray(img)[0, 0].tolist() == [200, 100, 50, 255]


def test_explicit_roughness_format_wins(rock_dir, out_dir):
    main([
        "--input-dir", rock_dir, "-o", out_dir,
        "--roughness-format", "roughness", "--normal-format", "directx",
    ])
    with Image.open(os.path.join(out_dir, "normal.png")) as img:
        assert np.asarray(img)[0, 0].tolist() == [10, 235, 30, 90]


def test_dds_output(rock_dir, out_dir):
    main(["--input-dir", rock_dir, "-o", out_dir, "--format", "dds"])
    assert sorted(os.listdir(out_dir)) == ["albedo.dds", "normal.dds"]


def test_missing_normal_exits(rock_dir, out_dir, capsys):
    with pytest.raises(SystemExit) as info:
        main(["--albedo", os.path.join(rock_dir, "rock_albedo.png"), "-o", out_dir])
    assert info.value.code == 1
    assert "Normal" in capsys.readouterr().out


def test_missing_output_dir_exits(rock_dir, tmp_dir):
    with pytest.raises(SystemExit) as info:
        main(["--input-dir", rock_dir, "-o", os.path.join(tmp_dir, "missing")])
    assert info.value.code == 1


def test_invalid_source_exits(rock_dir, out_dir, tmp_dir, capsys):
    small = save_test_png(os.path.join(tmp_dir, "small.png"), solid_rgba((1, 1, 1), size=256))
    with pytest.raises(SystemExit) as info:
        main(["--input-dir", rock_dir, "--albedo", small, "-o", out_dir])
    assert info.value.code == 1
    assert "Image must be at least 512x512" in capsys.readouterr().out
    assert os.listdir(out_dir) == []


def test_generate_config(tmp_dir):
    dest = os.path.join(tmp_dir, "packer.yaml")
    main(["--generate-config", "--config", dest])
    config = PackerConfig.from_yaml(dest)
    assert config.output.format == "png"


def test_config_file_is_applied(rock_dir, out_dir, tmp_dir):
    config = PackerConfig()
    config.output.format = "dds"
    config.output.directory = out_dir
    path = os.path.join(tmp_dir, "config.yaml")
    config.to_yaml(path)
    main(["--input-dir", rock_dir, "--config", path])
    assert sorted(os.listdir(out_dir)) == ["albedo.dds", "normal.dds"]


def test_missing_config_file_exits(rock_dir, out_dir, tmp_dir):
    with pytest.raises(SystemExit) as info:
        main(["--input-dir", rock_dir, "-o", out_dir,
              "--config", os.path.join(tmp_dir, "absent.yaml")])
    assert info.value.code == 1


def test_log_file_receives_run_messages(rock_dir, out_dir, tmp_dir):
    log_file = os.path.join(tmp_dir, "logs", "packer.log")
    packer_logger = logging.getLogger("terrain_packer")
    try:
        main(["--input-dir", rock_dir, "-o", out_dir, "--log-file", log_file])
        for handler in packer_logger.handlers:
            handler.flush()
        with open(log_file, encoding="utf-8") as f:
            text = f.read()
        assert "Starting run 1" in text
        assert "Loaded Albedo map" in text
    finally:
        for handler in list(packer_logger.handlers):
            if isinstance(handler, logging.FileHandler):
                packer_logger.removeHandler(handler)
                handler.close()
        packer_logger.setLevel(logging.NOTSET)
    assert sorted(os.listdir(out_dir)) == ["albedo.png", "normal.png"]


def test_log_file_from_config(tmp_dir):
    config = PackerConfig()
    config.log_file = os.path.join(tmp_dir, "packer.log")
    path = os.path.join(tmp_dir, "config.yaml")
    config.to_yaml(path)
    assert PackerConfig.from_yaml(path).log_file == config.log_file
