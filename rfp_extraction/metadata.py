"""
metadata.py — Pull client, venue and project title out of free text.

Ordered pattern lists, first match wins, first capture group trimmed. No
plausibility check: if the cover page says "Prepared for: Page 1" that is
what you get. To make that reviewable, every extracted field carries the
index of the pattern that fired and a snippet of the surrounding text.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Pattern, Sequence

from rfp_extraction.schemas import MetaEvidence, RfpMeta

logger = logging.getLogger(__name__)

_CONTEXT_CHARS = 40

_VENUE_SUFFIX = (
    r"(?:Stadium|Arena|Center|Centre|Field|Park|Ballpark|Coliseum|Dome|"
    r"Pavilion|Fieldhouse|Amphitheater|Amphitheatre|Speedway)"
)

CLIENT_PATTERNS: List[Pattern[str]] = [
    re.compile(r"prepared\s+for\s*:?\s*([^\n]+)", re.IGNORECASE),
    re.compile(r"\bclient\s*(?:name)?\s*:\s*([^\n]+)", re.IGNORECASE),
    re.compile(r"\bowner\s*:\s*([^\n]+)", re.IGNORECASE),
    re.compile(r"\bissued\s+by\s*:?\s*([^\n]+)", re.IGNORECASE),
]

VENUE_PATTERNS: List[Pattern[str]] = [
    re.compile(r"\bvenue\s*(?:name)?\s*:\s*([^\n]+)", re.IGNORECASE),
    re.compile(r"\b(?i:at|for)\s+(?i:the)\s+([A-Z][\w.&'-]*(?:[ \t]+[A-Z][\w.&'-]*)*?[ \t]+" + _VENUE_SUFFIX + r")\b"),
    re.compile(r"\b([A-Z][\w.&'-]*(?:[ \t]+[A-Z][\w.&'-]*)*?[ \t]+" + _VENUE_SUFFIX + r")\b"),
]

PROJECT_TITLE_PATTERNS: List[Pattern[str]] = [
    re.compile(r"\bproject\s+(?:title|name)\s*:\s*([^\n]+)", re.IGNORECASE),
    re.compile(r"\brequest\s+for\s+proposals?\s*(?:for|:)\s*([^\n]+)", re.IGNORECASE),
    re.compile(r"\brfp\s*(?:#|no\.?)?\s*[\w-]*\s*[:–—-]\s*([^\n]+)", re.IGNORECASE),
    re.compile(r"\bproject\s*:\s*([^\n]+)", re.IGNORECASE),
]


def _first_match(
    text: str,
    patterns: Sequence[Pattern[str]],
) -> Optional[tuple]:
    for index, pattern in enumerate(patterns):
        match = pattern.search(text)
        if not match:
            continue
        value = match.group(1).strip()
        if not value:
            continue
        start = max(0, match.start() - _CONTEXT_CHARS)
        end = min(len(text), match.end() + _CONTEXT_CHARS)
        context = " ".join(text[start:end].split())
        return value, MetaEvidence(pattern_index=index, context=context)
    return None


def extract_rfp_meta(raw_text: str) -> RfpMeta:
    """Best-effort client/venue/title extraction. Never raises."""
    text = raw_text or ""
    values: Dict[str, Optional[str]] = {}
    evidence: Dict[str, MetaEvidence] = {}

    for field_name, patterns in (
        ("client_name", CLIENT_PATTERNS),
        ("venue_name", VENUE_PATTERNS),
        ("project_title", PROJECT_TITLE_PATTERNS),
    ):
        found = _first_match(text, patterns)
        if found is None:
            values[field_name] = None
            continue
        values[field_name], evidence[field_name] = found
        logger.debug(
            "%s matched pattern #%d: %r",
            field_name, evidence[field_name].pattern_index, values[field_name],
        )

    return RfpMeta(evidence=evidence, **values)
