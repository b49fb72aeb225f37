"""
main.py — Pipeline orchestration for the RFP extraction engine.

Four stages, each timed and logged:

  1. chunk      raw text -> chunk strings (optionally OCR-normalized first)
  2. classify   chunk strings -> scored Chunk models
  3. metadata   client / venue / title with match evidence
  4. workbook   relevant + maybe chunks -> StructuredWorkbook (+ markdown)

and, on request, the estimator over the same raw text.

The pipeline is a class rather than a function because it holds the last
workbook it produced or imported. Importing an edited spreadsheet diffs
against that workbook, so a reviewer sees what changed since the export.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from rfp_extraction.chunking import normalize_ocr_text, split_into_chunks
from rfp_extraction.classifier import (
    RelevanceClassifier,
    aclassify_chunks,
    classify_chunks,
    get_default_classifier,
    label_counts,
)
from rfp_extraction.config import config
from rfp_extraction.estimator import estimate_to_report_text, run_anc_estimator
from rfp_extraction.ingestion import load_document_text
from rfp_extraction.metadata import extract_rfp_meta
from rfp_extraction.schemas import (
    AnalysisResult,
    Chunk,
    StructuredWorkbook,
    WorkbookDiffSummary,
)
from rfp_extraction.workbook import (
    build_structured_workbook,
    diff_workbooks,
    parse_structured_workbook_from_sheets,
    workbook_to_markdown,
)

logger = logging.getLogger("rfp_extraction")


class WorkbookImportError(ValueError):
    """The uploaded sheets do not contain a structured workbook."""


class RfpAnalysisPipeline:
    """
    End-to-end analysis over raw RFP text.

    Usage:
        pipeline = RfpAnalysisPipeline()
        result = pipeline.analyze(text, run_estimate=True)
        print(result.markdown)
    """

    def __init__(
        self,
        classifier: Optional[RelevanceClassifier] = None,
        normalize_ocr: bool = False,
    ):
        self.classifier = classifier or get_default_classifier()
        self.normalize_ocr = normalize_ocr
        self.workbook: Optional[StructuredWorkbook] = None

    def analyze(self, raw_text: str, run_estimate: bool = False) -> AnalysisResult:
        """Run all stages synchronously."""
        started = time.time()
        texts = self._chunk(raw_text)

        t0 = time.time()
        logger.info("[2/4] Classifying %d chunks ...", len(texts))
        chunks = classify_chunks(texts, self.classifier)
        logger.info("  ✓ classified in %.2fs", time.time() - t0)

        return self._finish(raw_text, chunks, run_estimate, started)

    async def aanalyze(self, raw_text: str, run_estimate: bool = False) -> AnalysisResult:
        """Same as analyze, yielding to the event loop during classification."""
        started = time.time()
        texts = self._chunk(raw_text)

        t0 = time.time()
        logger.info("[2/4] Classifying %d chunks (async) ...", len(texts))
        chunks = await aclassify_chunks(texts, self.classifier)
        logger.info("  ✓ classified in %.2fs", time.time() - t0)

        return self._finish(raw_text, chunks, run_estimate, started)

    def analyze_file(self, file_path: str, run_estimate: bool = False) -> AnalysisResult:
        """Load a .txt/.md/.pdf document and analyze it."""
        return self.analyze(load_document_text(file_path), run_estimate=run_estimate)

    def import_workbook(
        self,
        sheets: Mapping[str, Sequence[Mapping[str, Any]]],
    ) -> Tuple[StructuredWorkbook, Optional[WorkbookDiffSummary]]:
        """
        Parse an edited spreadsheet and diff it against the held workbook.

        The held workbook is replaced only when the import succeeds.

        Raises:
            WorkbookImportError: no structured workbook in the sheets.
        """
        imported = parse_structured_workbook_from_sheets(sheets)
        if imported is None:
            raise WorkbookImportError(
                "No structured workbook found. Expected at least one row in "
                "Requirements, Pricing, Schedule, Risks or Assumptions."
            )

        diff = diff_workbooks(self.workbook, imported)
        self.workbook = imported
        return imported, diff

    # ── stages ────────────────────────────────────────────────────────────

    def _chunk(self, raw_text: str) -> List[str]:
        t0 = time.time()
        logger.info("[1/4] Chunking %d chars ...", len(raw_text or ""))
        text = normalize_ocr_text(raw_text) if self.normalize_ocr else raw_text
        texts = split_into_chunks(text)
        logger.info("  ✓ %d chunks in %.2fs", len(texts), time.time() - t0)
        return texts

    def _finish(
        self,
        raw_text: str,
        chunks: List[Chunk],
        run_estimate: bool,
        started: float,
    ) -> AnalysisResult:
        t0 = time.time()
        logger.info("[3/4] Extracting metadata ...")
        meta = extract_rfp_meta(raw_text)
        logger.info(
            "  ✓ client=%r venue=%r title=%r in %.2fs",
            meta.client_name, meta.venue_name, meta.project_title, time.time() - t0,
        )

        t0 = time.time()
        logger.info("[4/4] Building structured workbook ...")
        workbook = build_structured_workbook(chunks, meta)
        markdown = workbook_to_markdown(workbook)
        self.workbook = workbook
        logger.info("  ✓ workbook in %.2fs", time.time() - t0)

        estimate = None
        if run_estimate:
            estimate = run_anc_estimator(
                raw_text,
                project_title=meta.project_title,
                client_name=meta.client_name,
                venue_name=meta.venue_name,
            )

        relevant, maybe, irrelevant = label_counts(chunks)
        logger.info(
            "DONE in %.2fs | %d chunks (%d relevant, %d maybe, %d irrelevant)",
            time.time() - started, len(chunks), relevant, maybe, irrelevant,
        )
        if not chunks:
            logger.warning("No chunks found. Empty or scanned document?")

        return AnalysisResult(
            meta=meta,
            chunks=chunks,
            workbook=workbook,
            markdown=markdown,
            estimate=estimate,
        )


def _load_sheets(path: str) -> Dict[str, List[Dict[str, Any]]]:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object of sheet name -> rows")
    return data


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="rfp-extraction",
        description="Classify RFP sections, extract a structured workbook and estimate LED display cost",
    )
    parser.add_argument("file", help="Path to RFP document (TXT, MD, PDF with text layer)")
    parser.add_argument("--output", "-o", default=None, help="JSON output path (default: stdout)")
    parser.add_argument("--estimate", action="store_true", help="Also run the cost estimator")
    parser.add_argument("--markdown", action="store_true", help="Print markdown instead of JSON")
    parser.add_argument("--normalize-ocr", action="store_true", help="Normalize OCR text before chunking")
    parser.add_argument(
        "--import-sheets", default=None, metavar="JSON",
        help="Edited workbook sheets (JSON) to import and diff against the analysis",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    args = parser.parse_args()

    level = logging.DEBUG if args.verbose else config.log_level.upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )

    pipeline = RfpAnalysisPipeline(normalize_ocr=args.normalize_ocr)

    try:
        result = pipeline.analyze_file(args.file, run_estimate=args.estimate)
        payload: Dict[str, Any] = result.model_dump()

        if args.import_sheets:
            imported, diff = pipeline.import_workbook(_load_sheets(args.import_sheets))
            payload["imported_workbook"] = imported.model_dump()
            payload["diff"] = diff.model_dump() if diff else None

        if args.output:
            os.makedirs(os.path.dirname(args.output) or ".", exist_ok=True)
            with open(args.output, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
            logger.info("Output written to: %s", args.output)

        if args.markdown:
            print(result.markdown)
            if result.estimate is not None:
                print()
                print(estimate_to_report_text(result.estimate))
        elif args.output is None:
            print(json.dumps(payload, indent=2, ensure_ascii=False))
    except FileNotFoundError as exc:
        logger.error("File not found: %s", exc)
        sys.exit(1)
    except WorkbookImportError as exc:
        logger.error("Import rejected: %s", exc)
        sys.exit(1)
    except ValueError as exc:
        logger.error("Invalid input: %s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
