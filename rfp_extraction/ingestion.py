"""
ingestion.py — Load document text for the CLI and API.

OCR is somebody else's job. Plain text and markdown are read as UTF-8;
PDFs only get their text layer, via pdfplumber, one section per page
joined with the chunk separator so the chunker splits per page. A
scanned PDF with no text layer comes back empty and the caller sees an
empty analysis, not an exception.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Union

import pdfplumber

from rfp_extraction.config import config

logger = logging.getLogger(__name__)


def load_document_text(file_path: Union[str, Path]) -> str:
    """
    Read a supported document and return its text.

    Raises:
        FileNotFoundError: path does not exist.
        ValueError: unsupported format or file too large.
    """
    path = Path(file_path)
    _validate_file(path)

    if path.suffix.lower() == ".pdf":
        return _load_pdf(path)

    text = path.read_text(encoding="utf-8", errors="replace")
    logger.info("Loaded %s (%d chars)", path.name, len(text))
    return text


def _load_pdf(path: Path) -> str:
    pages: List[str] = []
    empty = 0

    with pdfplumber.open(str(path)) as pdf:
        logger.info("Opening PDF: %s (%d pages)", path.name, len(pdf.pages))
        for idx, page in enumerate(pdf.pages, start=1):
            text = (page.extract_text() or "").strip()
            if not text:
                empty += 1
                logger.debug("Page %d has no text layer, skipping", idx)
                continue
            pages.append(text)

    if empty:
        logger.warning(
            "%s: %d page(s) had no text layer (scanned?). Run OCR upstream.",
            path.name, empty,
        )
    logger.info("Loaded %s: %d text pages", path.name, len(pages))
    return config.chunking.section_separator.join(pages)


def _validate_file(path: Path) -> None:
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    size_mb = path.stat().st_size / (1024 * 1024)
    if size_mb > config.max_file_size_mb:
        raise ValueError(
            f"File too large ({size_mb:.1f} MB). Max: {config.max_file_size_mb} MB"
        )

    if path.suffix.lower() not in config.supported_formats:
        raise ValueError(
            f"Unsupported format '{path.suffix}'. "
            f"Supported: {', '.join(config.supported_formats)}"
        )
