"""Provide package metadata and the public packing API for `TerrainPacker`."""

__version__ = "1.0.0"

from .config import (  # noqa: E402
    InputSlot,
    NormalEncoding,
    OutputFormat,
    PackerConfig,
    RoughnessEncoding,
)
from .pipeline import (  # noqa: E402
    PackerState,
    RunStatus,
    SlotStatus,
    TexturePacker,
)

__all__ = [
    "__version__",
    "InputSlot", "NormalEncoding", "OutputFormat", "PackerConfig", "RoughnessEncoding",
    "PackerState", "RunStatus", "SlotStatus", "TexturePacker",
]
