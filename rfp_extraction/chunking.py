"""
chunking.py — Split raw RFP text into independently scored sections.

Two input shapes show up in practice:

  1. Text that was already assembled from discrete sections (one per page
     or per upstream OCR block) joined with "\\n\\n---\\n\\n". We split on
     that separator exactly and keep every non-empty part, however short,
     because the upstream collaborator already decided where the
     boundaries are.

  2. Free-flowing OCR output. Blank-line runs are the only reliable
     paragraph boundary. Anything shorter than 80 chars after the split is
     treated as line-wrap debris and dropped.

Chunking is a pure function of its input, so joining the output with the
separator and splitting again gives the same list back.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional

from rfp_extraction.config import ChunkingConfig, config

logger = logging.getLogger(__name__)

_BLANK_RUN_RE = re.compile(r"\n{2,}")
_MARKDOWN_HEADING_RE = re.compile(r"^#{1,6}\s")
_CAPS_HEADING_RE = re.compile(r"^[A-Z][A-Z0-9 &().,'/-]{6,}$")


def split_into_chunks(raw_text: str, settings: Optional[ChunkingConfig] = None) -> List[str]:
    """
    Split document text into chunk strings.

    Empty or whitespace-only input gives an empty list, never [""].
    """
    settings = settings or config.chunking
    normalized = (raw_text or "").strip()
    if not normalized:
        return []

    separator = settings.section_separator
    if separator in normalized:
        parts = [part.strip() for part in normalized.split(separator)]
        chunks = [part for part in parts if part]
        logger.info("Split %d sections on explicit separator", len(chunks))
        return chunks

    parts = [part.strip() for part in _BLANK_RUN_RE.split(normalized)]
    chunks = [part for part in parts if len(part) >= settings.min_fragment_chars]
    logger.info(
        "Split %d paragraphs (%d fragments under %d chars dropped)",
        len(chunks), len(parts) - len(chunks), settings.min_fragment_chars,
    )
    return chunks


def join_chunks(chunks: List[str], settings: Optional[ChunkingConfig] = None) -> str:
    """Inverse of split_into_chunks for separator-delimited text."""
    settings = settings or config.chunking
    return settings.section_separator.join(chunks)


def to_chunk_title(text: str, index: int, settings: Optional[ChunkingConfig] = None) -> str:
    """First short non-empty line, else "Section <index + 1>"."""
    settings = settings or config.chunking
    for line in text.split("\n"):
        line = line.strip()
        if line and len(line) < settings.title_max_chars:
            return line
    return f"Section {index + 1}"


def normalize_ocr_text(text: str) -> str:
    """
    Tidy OCR output before chunking.

    Heading-like lines (markdown headings, ALL CAPS lines, lines ending in
    a colon) get a blank line on both sides so they start their own
    paragraph. Blank-line runs collapse to a single blank line.
    """
    out: List[str] = []

    for raw_line in (text or "").replace("\r\n", "\n").split("\n"):
        trimmed = raw_line.strip()

        if not trimmed:
            if out and out[-1] != "":
                out.append("")
            continue

        is_heading = bool(
            _MARKDOWN_HEADING_RE.match(trimmed)
            or _CAPS_HEADING_RE.match(trimmed)
            or trimmed.endswith(":")
        )

        if is_heading and out and out[-1] != "":
            out.append("")

        out.append(trimmed)

        if is_heading:
            out.append("")

    return re.sub(r"\n{3,}", "\n\n", "\n".join(out)).strip()
