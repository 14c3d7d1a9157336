"""Input slot classification by filename suffix patterns."""

import logging
from pathlib import Path
from typing import Dict, List, Optional

from ..config import InputSlot

logger = logging.getLogger("terrain_packer")

SLOT_PATTERNS: Dict[InputSlot, List[str]] = {
    InputSlot.ALBEDO: [
        "_albedo", "_alb", "_basecolor", "_base_color", "_base", "_diffuse",
        "_diff", "_color", "_col", "_bc", "_d",
    ],
    InputSlot.AMBIENT_OCCLUSION: [
        "_ao", "_ambient", "_occlusion", "_ambientocclusion", "_ambient_occlusion",
    ],
    InputSlot.HEIGHT: ["_height", "_h", "_disp", "_displacement", "_bump", "_parallax"],
    InputSlot.NORMAL: ["_normal", "_norm", "_nrm", "_nor", "_n"],
    InputSlot.ROUGHNESS: [
        "_roughness", "_rough", "_r", "_smoothness", "_smooth", "_gloss", "_glossiness",
    ],
}

# Roughness-slot patterns whose values are the inverse of roughness.
SMOOTHNESS_PATTERNS: List[str] = ["_smoothness", "_smooth", "_gloss", "_glossiness"]


def classify_slot(filepath: str) -> Optional[InputSlot]:
    """Classify a source map by filename suffix.

    Uses a longest-match suffix strategy so short patterns such as ``_d``
    do not shadow longer ones such as ``_disp``.
    """
    name = Path(filepath).stem.lower()
    best_slot = None
    best_len = 0
    for slot, patterns in SLOT_PATTERNS.items():
        for pattern in patterns:
            if name.endswith(pattern) and len(pattern) > best_len:
                best_len = len(pattern)
                best_slot = slot
    if best_slot is None:
        logger.debug("No slot pattern matched %s", filepath)
    return best_slot


def is_smoothness_name(filepath: str) -> bool:
    """Return True when the filename marks a smoothness/gloss map."""
    name = Path(filepath).stem.lower()
    return any(name.endswith(p) for p in SMOOTHNESS_PATTERNS)
