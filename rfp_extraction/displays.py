"""
displays.py — Line-level display takeoff.

Display schedules in RFPs are usually one display per line:

    Main Videoboard, In-Bowl - 24' x 42' - 6mm (qty 1)
    Ribbon Boards, Fascia - 3' x 360' - 10mm (qty 2)

Anything with an H x W dimension becomes a StructuredDisplay. The
estimator attaches the list to its result for the reviewer; it does not
drive the cost build, which still works off the single largest area.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional

from rfp_extraction.schemas import StructuredDisplay

logger = logging.getLogger(__name__)

# Thousands separators allowed: "3' x 1,200'"
NUMBER = r"\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?"
DIMENSION_RE = re.compile(
    rf"({NUMBER})\s*(?:ft|')?\s*[x×]\s*({NUMBER})\s*(?:ft|')?", re.IGNORECASE
)
PITCH_RE = re.compile(r"(\d+(?:\.\d+)?)\s*mm", re.IGNORECASE)
QTY_RE = re.compile(
    r"\(qty\.?\s*(\d+)\)|\bqty\.?\s*(\d+)\b|\b(\d+)\s*(?:displays|screens|units)\b", re.IGNORECASE
)


def _clean(text: str) -> str:
    return " ".join(text.split())


def _to_float(value: str) -> Optional[float]:
    try:
        return float(value.replace(",", ""))
    except (AttributeError, ValueError):
        return None


def _infer_location(line: str) -> str:
    parts = line.split(",")
    if len(parts) >= 2:
        location = _clean(parts[1])
        # Drop whatever dimension/pitch tail follows the location
        location = _clean(re.split(r"\s-\s|\d", location, maxsplit=1)[0]).strip(" -")
        if location:
            return location
    lower = line.lower()
    if "lobby" in lower:
        return "Lobby"
    if "concourse" in lower:
        return "Concourse"
    if "bowl" in lower:
        return "In-Bowl"
    return "Unspecified"


def extract_structured_displays(raw_text: str) -> List[StructuredDisplay]:
    """One StructuredDisplay per distinct display line."""
    lines = [_clean(line) for line in (raw_text or "").split("\n")]
    displays: List[StructuredDisplay] = []
    seen = set()

    for line in lines:
        if len(line) < 8:
            continue
        dimension = DIMENSION_RE.search(line)
        if not dimension:
            continue

        height = _to_float(dimension.group(1))
        width = _to_float(dimension.group(2))
        if not height or not width:
            continue

        pitch_match = PITCH_RE.search(line)
        qty_match = QTY_RE.search(line)
        quantity = 1
        if qty_match:
            quantity = int(next(g for g in qty_match.groups() if g)) or 1

        name = line.replace(dimension.group(0), "")
        name = re.sub(r"-\s*\d+(?:\.\d+)?\s*mm", "", name, flags=re.IGNORECASE)
        name = re.sub(r"\(qty\.?\s*\d+\)", "", name, flags=re.IGNORECASE)
        name = re.sub(r"\bqty\.?\s*\d+\b", "", name, flags=re.IGNORECASE)
        name = re.sub(r",+", ",", name)
        name = _clean(name).strip(" -,") or f"Display {len(displays) + 1}"

        key = (name.lower(), height, width, quantity)
        if key in seen:
            continue
        seen.add(key)

        lower = line.lower()
        displays.append(StructuredDisplay(
            id=f"display-{len(displays) + 1}",
            name=name,
            location=_infer_location(line),
            width_ft=width,
            height_ft=height,
            sq_ft=round(height * width, 2),
            pitch_mm=_to_float(pitch_match.group(1)) if pitch_match else None,
            quantity=quantity,
            is_outdoor="outdoor" in lower or "marquee" in lower,
        ))

    logger.debug("Display takeoff found %d displays", len(displays))
    return displays
