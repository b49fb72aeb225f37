"""
test_pipeline.py — End-to-end tests for the RFP analysis pipeline.

These run the whole chain on a synthetic three-section RFP (cover page,
display schedule, general conditions) with no external services:
  - chunking, classification, metadata and workbook in one pass
  - the optional estimate, titled from the extracted metadata
  - export -> edit -> import -> diff against the held workbook
  - rejected imports and document loading errors
  - the CLI writing JSON

Run with:
    python tests/test_pipeline.py
    python -m pytest tests/test_pipeline.py -v
"""

from __future__ import annotations

import asyncio
import contextlib
import io
import json
import logging
import os
import sys
import tempfile
from pathlib import Path
from unittest import mock

# Make sure the project root is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest

from rfp_extraction.chunking import join_chunks
from rfp_extraction.ingestion import load_document_text
from rfp_extraction.main import RfpAnalysisPipeline, WorkbookImportError, main
from rfp_extraction.workbook import workbook_to_sheets

logging.basicConfig(level=logging.INFO, format="%(levelname)s | %(message)s")
logger = logging.getLogger(__name__)

COVER = (
    "REQUEST FOR PROPOSAL: LED Video Display Replacement\n"
    "Prepared for: City of Springfield\n"
    "The work will take place at the Springfield Memorial Stadium."
)
SCHEDULE = (
    "Section 11 06 60 Display Schedule\n"
    "Contractor shall provide 2 displays, outdoor marquee, 10ft x 20ft, 10mm pixel pitch.\n"
    "Base bid amount $125,000.00\n"
    "Substantial completion by March 15, 2026"
)
CONDITIONS = (
    "Indemnification and arbitration provisions of the general conditions "
    "apply to all parties."
)
SAMPLE_RFP = join_chunks([COVER, SCHEDULE, CONDITIONS])


def _write_temp(content: str, suffix: str) -> str:
    fd, path = tempfile.mkstemp(suffix=suffix)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(content)
    return path


def test_analyze_end_to_end():
    pipeline = RfpAnalysisPipeline()
    result = pipeline.analyze(SAMPLE_RFP)

    assert [c.id for c in result.chunks] == ["chunk-1", "chunk-2", "chunk-3"]
    assert result.chunks[1].label == "relevant"
    assert result.chunks[2].label == "irrelevant"

    assert result.meta.client_name == "City of Springfield"
    assert result.meta.venue_name == "Springfield Memorial Stadium"
    assert result.meta.project_title == "LED Video Display Replacement"

    workbook = result.workbook
    assert "chunk-3" not in [s.id for s in workbook.sources]
    assert workbook.requirements[0].citation == "chunk-2"
    assert [p.amount for p in workbook.pricing] == ["$125,000.00"]
    assert workbook.project.client_name == "City of Springfield"
    assert result.markdown.startswith("# LED Video Display Replacement")
    assert result.estimate is None
    assert pipeline.workbook is workbook
    print("  ✓ test_analyze_end_to_end")


def test_analyze_with_estimate():
    result = RfpAnalysisPipeline().analyze(SAMPLE_RFP, run_estimate=True)
    estimate = result.estimate
    assert estimate is not None
    assert estimate.display.profile == "outdoor_marquee"
    assert estimate.display.quantity == 2
    assert estimate.display.total_sq_ft == 400
    assert estimate.project.project_title == "LED Video Display Replacement"
    assert estimate.project.venue_name == "Springfield Memorial Stadium"
    print("  ✓ test_analyze_with_estimate")


def test_empty_document():
    result = RfpAnalysisPipeline().analyze("", run_estimate=True)
    assert result.chunks == []
    assert result.workbook.is_empty()
    assert result.estimate.display.total_sq_ft == 150
    print("  ✓ test_empty_document")


def test_async_analyze_matches_sync():
    sync = RfpAnalysisPipeline().analyze(SAMPLE_RFP)
    async_result = asyncio.run(RfpAnalysisPipeline().aanalyze(SAMPLE_RFP))
    assert [c.model_dump() for c in async_result.chunks] == [c.model_dump() for c in sync.chunks]
    assert async_result.workbook.requirements == sync.workbook.requirements
    print("  ✓ test_async_analyze_matches_sync")


def test_normalize_ocr_option():
    """OCR normalization splits a run-on page at its headings."""
    page = (
        "SCOPE OF WORK\n"
        "The contractor shall furnish and install LED video boards with 6mm pixel pitch "
        "and 6000 nits brightness on structural steel supports.\n"
        "PAYMENT TERMS\n"
        "Progress payments are made monthly, less retainage of ten percent, net 30 after approval."
    )
    plain = RfpAnalysisPipeline().analyze(page)
    normalized = RfpAnalysisPipeline(normalize_ocr=True).analyze(page)
    assert len(plain.chunks) == 1
    assert len(normalized.chunks) == 2
    print("  ✓ test_normalize_ocr_option")


def test_import_edit_diff():
    """Export, edit a requirement in the spreadsheet, import, diff."""
    pipeline = RfpAnalysisPipeline()
    pipeline.analyze(SAMPLE_RFP)

    sheets = workbook_to_sheets(pipeline.workbook)
    sheets["Requirements"][0]["Requirement"] = "Contractor shall provide 3 displays."

    imported, diff = pipeline.import_workbook(sheets)
    assert imported.requirements[0].text == "Contractor shall provide 3 displays."
    assert diff.requirements.edited == ["REQ-1"]
    assert diff.total_changes == 1
    assert pipeline.workbook is imported
    print("  ✓ test_import_edit_diff")


def test_first_import_has_no_diff():
    sheets = {"Assumptions": [{"ID": "ASM-1", "Assumption": "Power by others"}]}
    workbook, diff = RfpAnalysisPipeline().import_workbook(sheets)
    assert diff is None
    assert workbook.assumptions[0].text == "Power by others"
    print("  ✓ test_first_import_has_no_diff")


def test_rejected_import_keeps_workbook():
    pipeline = RfpAnalysisPipeline()
    result = pipeline.analyze(SAMPLE_RFP)

    with pytest.raises(WorkbookImportError):
        pipeline.import_workbook({"Project": [{"Field": "Client", "Value": "X"}]})
    assert pipeline.workbook is result.workbook
    assert issubclass(WorkbookImportError, ValueError)
    print("  ✓ test_rejected_import_keeps_workbook")


def test_load_text_document():
    path = _write_temp(SAMPLE_RFP, ".txt")
    try:
        assert load_document_text(path) == SAMPLE_RFP
        result = RfpAnalysisPipeline().analyze_file(path)
        assert len(result.chunks) == 3
    finally:
        os.remove(path)
    print("  ✓ test_load_text_document")


def test_load_rejects_bad_inputs():
    with pytest.raises(FileNotFoundError):
        load_document_text("/nonexistent/rfp.txt")

    path = _write_temp("not really a word document", ".docx")
    try:
        with pytest.raises(ValueError):
            load_document_text(path)
    finally:
        os.remove(path)
    print("  ✓ test_load_rejects_bad_inputs")


def test_cli_json_output():
    path = _write_temp(SAMPLE_RFP, ".md")
    out = io.StringIO()
    try:
        with mock.patch.object(sys, "argv", ["rfp-extraction", path, "--estimate"]):
            with contextlib.redirect_stdout(out):
                main()
    finally:
        os.remove(path)

    payload = json.loads(out.getvalue())
    assert payload["meta"]["client_name"] == "City of Springfield"
    assert len(payload["chunks"]) == 3
    assert payload["estimate"]["display"]["profile"] == "outdoor_marquee"
    print("  ✓ test_cli_json_output")


def test_cli_missing_file_exits_1():
    with mock.patch.object(sys, "argv", ["rfp-extraction", "/nonexistent/rfp.txt"]):
        with pytest.raises(SystemExit) as excinfo:
            main()
    assert excinfo.value.code == 1
    print("  ✓ test_cli_missing_file_exits_1")


def run_all_tests():
    """Run all tests and report results."""
    print("\n" + "=" * 60)
    print("  rfp-extraction — Pipeline Tests")
    print("=" * 60 + "\n")

    tests = [
        test_analyze_end_to_end,
        test_analyze_with_estimate,
        test_empty_document,
        test_async_analyze_matches_sync,
        test_normalize_ocr_option,
        test_import_edit_diff,
        test_first_import_has_no_diff,
        test_rejected_import_keeps_workbook,
        test_load_text_document,
        test_load_rejects_bad_inputs,
        test_cli_json_output,
        test_cli_missing_file_exits_1,
    ]

    passed = 0
    failed = 0

    for test_fn in tests:
        try:
            test_fn()
            passed += 1
        except Exception as exc:
            failed += 1
            print(f"  ✗ {test_fn.__name__} FAILED: {exc}")

    print(f"\n{'=' * 60}")
    print(f"  Results: {passed} passed, {failed} failed, {len(tests)} total")
    print(f"{'=' * 60}\n")

    return failed == 0


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)
