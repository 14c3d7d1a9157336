"""Define typed configuration models for the texture packer.

Use `PackerConfig` to load, validate, and persist runtime settings.
"""

import os
import logging
import yaml
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger("terrain_packer.config")


class InputSlot(Enum):
    """Enumerate the source maps a packing run can consume."""

    ALBEDO = "albedo"
    AMBIENT_OCCLUSION = "ao"
    HEIGHT = "height"
    NORMAL = "normal"
    ROUGHNESS = "roughness"

    @property
    def required(self) -> bool:
        return self in (InputSlot.ALBEDO, InputSlot.NORMAL)

    @property
    def primary(self) -> "InputSlot":
        """Return the slot whose output this map is packed into."""
        if self in (InputSlot.AMBIENT_OCCLUSION, InputSlot.HEIGHT):
            return InputSlot.ALBEDO
        if self is InputSlot.ROUGHNESS:
            return InputSlot.NORMAL
        return self

    @property
    def label(self) -> str:
        return _SLOT_LABELS[self]


_SLOT_LABELS = {
    InputSlot.ALBEDO: "Albedo",
    InputSlot.AMBIENT_OCCLUSION: "Ambient Occlusion",
    InputSlot.HEIGHT: "Height",
    InputSlot.NORMAL: "Normal",
    InputSlot.ROUGHNESS: "Roughness",
}


class NormalEncoding(Enum):
    """Green-channel convention of the source normal map."""

    OPENGL = "opengl"
    DIRECTX = "directx"


class RoughnessEncoding(Enum):
    """Whether the roughness slot holds roughness or smoothness values."""

    ROUGHNESS = "roughness"
    SMOOTHNESS = "smoothness"


class OutputFormat(Enum):
    """Enumerate supported output containers."""

    PNG = "png"
    DDS = "dds"

    @property
    def extension(self) -> str:
        return "." + self.value


# Pillow pixel_format names for 4-component block compression.
DDS_PIXEL_FORMATS = ("DXT5", "BC3")

MIP_FILTERS = ("area", "linear", "cubic", "lanczos", "nearest")


@dataclass
class PackingConfig:
    """Store per-run channel packing conventions."""

    normal_encoding: str = NormalEncoding.OPENGL.value
    roughness_encoding: str = RoughnessEncoding.ROUGHNESS.value


@dataclass
class OutputConfig:
    """Store output container and destination settings."""

    format: str = OutputFormat.PNG.value
    directory: str = ""


@dataclass
class DDSConfig:
    """Store settings for compressed DDS output."""

    pixel_format: str = "DXT5"
    mip_filter: str = "area"


_SUPPORTED_CONFIG_VERSION = 1


@dataclass
class PackerConfig:
    """Master packer configuration."""

    config_version: int = 1
    log_level: str = "INFO"
    log_file: str = ""  # empty = console only
    max_workers: int = 4
    pixel_workers: int = 0  # 0 = os.cpu_count()
    poll_interval_seconds: float = 0.05
    max_image_pixels: int = 268435456  # 16384x16384

    packing: PackingConfig = field(default_factory=PackingConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    dds: DDSConfig = field(default_factory=DDSConfig)

    @property
    def normal_encoding(self) -> NormalEncoding:
        return NormalEncoding(self.packing.normal_encoding)

    @property
    def roughness_encoding(self) -> RoughnessEncoding:
        return RoughnessEncoding(self.packing.roughness_encoding)

    @property
    def output_format(self) -> OutputFormat:
        return OutputFormat(self.output.format)

    def resolve_pixel_workers(self) -> int:
        """Return the worker count used for per-pixel channel operations."""
        if self.pixel_workers > 0:
            return self.pixel_workers
        return os.cpu_count() or 1

    @classmethod
    def from_yaml(cls, path: str) -> "PackerConfig":
        """Load packer configuration from YAML or return defaults."""
        if not os.path.exists(path):
            logger.info("Config file '%s' not found. Using defaults.", path)
            config = cls()
            config.validate()
            return config
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(
                f"Failed to parse YAML config '{path}': {exc}"
            ) from exc
        if not isinstance(data, dict):
            raise ValueError(
                f"Config file '{path}' must contain a YAML mapping, "
                f"got {type(data).__name__}"
            )
        yaml_version = data.get("config_version", 1)
        if isinstance(yaml_version, int) and yaml_version > _SUPPORTED_CONFIG_VERSION:
            logger.warning(
                "Config file '%s' has config_version=%d, but this build only "
                "supports up to version %d. Some settings may be ignored.",
                path, yaml_version, _SUPPORTED_CONFIG_VERSION,
            )
        config = cls()
        _merge_dict_to_dataclass(config, data)
        try:
            config.validate()
        except ValueError as exc:
            raise ValueError(f"{path}: {exc}") from exc
        return config

    def to_yaml(self, path: str):
        """Write packer configuration to a YAML file."""
        import dataclasses
        import threading as _th
        data = dataclasses.asdict(self)
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        ext = os.path.splitext(path)[1]
        tmp_path = f"{path}.tmp.{os.getpid()}.{_th.get_ident()}{ext}"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                yaml.dump(data, f, default_flow_style=False, sort_keys=False)
            os.replace(tmp_path, path)
        finally:
            if os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError:
                    pass

    def validate(self):
        """Validate all settings, raising one ValueError listing every problem."""
        errors = []

        valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.log_level.upper() not in valid_log_levels:
            errors.append(
                f"log_level must be one of {sorted(valid_log_levels)}, "
                f"got '{self.log_level}'"
            )

        if self.max_workers < 1:
            errors.append("max_workers must be >= 1")
        if self.max_workers > 128:
            errors.append("max_workers must be <= 128")
        if self.pixel_workers < 0:
            errors.append("pixel_workers must be >= 0 (0 = cpu count)")
        if self.poll_interval_seconds <= 0:
            errors.append("poll_interval_seconds must be > 0")
        if self.max_image_pixels < 0:
            errors.append("max_image_pixels must be >= 0 (0 = unlimited)")

        _check_choice(
            errors, "packing.normal_encoding",
            self.packing.normal_encoding, [e.value for e in NormalEncoding],
        )
        _check_choice(
            errors, "packing.roughness_encoding",
            self.packing.roughness_encoding, [e.value for e in RoughnessEncoding],
        )
        _check_choice(
            errors, "output.format",
            self.output.format, [e.value for e in OutputFormat],
        )
        if self.output.directory and not os.path.isdir(self.output.directory):
            logger.warning(
                "output.directory '%s' does not exist; runs will fail until it is created.",
                self.output.directory,
            )

        _check_choice(errors, "dds.pixel_format", self.dds.pixel_format, DDS_PIXEL_FORMATS)
        _check_choice(errors, "dds.mip_filter", self.dds.mip_filter, MIP_FILTERS)

        if errors:
            raise ValueError(
                "Configuration validation failed:\n" +
                "\n".join(f"  - {e}" for e in errors)
            )


def _check_choice(errors: list, key: str, value, choices) -> None:
    if value not in choices:
        errors.append(f"{key} must be one of {list(choices)}, got '{value}'")


def _merge_dict_to_dataclass(obj, data: dict, _path: str = ""):
    import dataclasses
    for key, value in data.items():
        full_key = f"{_path}{key}"
        if not hasattr(obj, key) or isinstance(getattr(type(obj), key, None), property):
            logger.warning(f"Unknown config key ignored: '{full_key}'")
            continue
        field_val = getattr(obj, key)
        if dataclasses.is_dataclass(field_val) and isinstance(value, dict):
            _merge_dict_to_dataclass(field_val, value, f"{full_key}.")
            continue
        if value is None and field_val is not None:
            logger.warning(
                f"Config key '{full_key}' is null but field default is "
                f"{type(field_val).__name__}. Using default value."
            )
            continue
        expected_type = type(field_val)
        # Allow int->float and integral float->int promotion.
        if (not isinstance(value, expected_type)
                and not (expected_type is float and isinstance(value, int))
                and not (expected_type is int
                         and isinstance(value, float)
                         and value == int(value))):
            logger.warning(
                f"Config type mismatch for '{full_key}': "
                f"expected {expected_type.__name__}, "
                f"got {type(value).__name__} ({value!r}). "
                f"Using default value."
            )
            continue
        if expected_type is int and isinstance(value, float):
            value = int(value)
        if expected_type is float and isinstance(value, int):
            value = float(value)
        setattr(obj, key, value)
