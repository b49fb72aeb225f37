"""
test_metadata.py — Client / venue / title extraction with evidence.

Run with:
    python tests/test_metadata.py
    python -m pytest tests/test_metadata.py -v
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

# Make sure the project root is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from rfp_extraction.metadata import extract_rfp_meta

logging.basicConfig(level=logging.INFO, format="%(levelname)s | %(message)s")

COVER_PAGE = (
    "Request for Proposal: LED Video Display Replacement\n"
    "Prepared for: City of Springfield\n"
    "The work will take place at the Springfield Memorial Stadium in 2026.\n"
)


def test_cover_page_fields():
    meta = extract_rfp_meta(COVER_PAGE)
    assert meta.client_name == "City of Springfield"
    assert meta.venue_name == "Springfield Memorial Stadium"
    assert meta.project_title == "LED Video Display Replacement"
    print("  ✓ test_cover_page_fields")


def test_evidence_records_pattern_and_context():
    """Every extracted field says which pattern fired and where."""
    meta = extract_rfp_meta(COVER_PAGE)
    assert set(meta.evidence) == {"client_name", "venue_name", "project_title"}
    assert meta.evidence["client_name"].pattern_index == 0
    assert "Prepared for" in meta.evidence["client_name"].context
    assert meta.evidence["venue_name"].pattern_index == 1
    assert "\n" not in meta.evidence["venue_name"].context
    print("  ✓ test_evidence_records_pattern_and_context")


def test_labelled_fields_win_over_prose():
    text = (
        "Owner: Metro Sports Authority\n"
        "Venue: Riverside Arena\n"
        "Project Title: Arena Scoreboard Upgrade\n"
        "Work at the Harbor Field is excluded."
    )
    meta = extract_rfp_meta(text)
    assert meta.client_name == "Metro Sports Authority"
    assert meta.venue_name == "Riverside Arena"
    assert meta.project_title == "Arena Scoreboard Upgrade"
    assert meta.evidence["venue_name"].pattern_index == 0
    print("  ✓ test_labelled_fields_win_over_prose")


def test_bare_venue_name():
    meta = extract_rfp_meta("Scope covers Lambeau Field concourse displays.")
    assert meta.venue_name == "Lambeau Field"
    assert meta.evidence["venue_name"].pattern_index == 2
    print("  ✓ test_bare_venue_name")


def test_empty_text_gives_empty_meta():
    meta = extract_rfp_meta("")
    assert meta.client_name is None
    assert meta.venue_name is None
    assert meta.project_title is None
    assert meta.evidence == {}
    assert extract_rfp_meta(None).evidence == {}
    print("  ✓ test_empty_text_gives_empty_meta")


def run_all_tests():
    """Run all tests and report results."""
    print("\n" + "=" * 60)
    print("  rfp-extraction — Metadata Tests")
    print("=" * 60 + "\n")

    tests = [
        test_cover_page_fields,
        test_evidence_records_pattern_and_context,
        test_labelled_fields_win_over_prose,
        test_bare_venue_name,
        test_empty_text_gives_empty_meta,
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
