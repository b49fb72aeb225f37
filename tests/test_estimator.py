"""
test_estimator.py — LED estimate: profiles, parsing, formulas, pricing.

The formula tests evaluate every line item's formula string and compare
it with the stored amount. If one of those fails, a formula string and
its computation have drifted apart.

Run with:
    python tests/test_estimator.py
    python -m pytest tests/test_estimator.py -v
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

# Make sure the project root is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest

from rfp_extraction.displays import extract_structured_displays
from rfp_extraction.estimator import (
    classify_display,
    estimate_to_report_text,
    estimate_to_sheets,
    parse_quantity,
    parse_rate_from_keyword,
    parse_sq_ft,
    run_anc_estimator,
)

logging.basicConfig(level=logging.INFO, format="%(levelname)s | %(message)s")

MARQUEE = "2 displays, 10ft x 20ft, outdoor marquee"

COST_IDS = [
    "HW-LED", "LAB-INSTALL", "ELEC", "STRUCT",
    "BUNDLE-SEND", "BUNDLE-SPARES", "BUNDLE-CABLE", "BUNDLE-UPS",
    "BUNDLE-PROC", "BUNDLE-WEATHER", "FEE-PM", "FEE-ENG",
]


def _evaluate(formula: str) -> float:
    """Formulas are plain arithmetic over literal numbers."""
    return eval(formula, {"__builtins__": {}}, {})


def test_marquee_scenario_inputs():
    result = run_anc_estimator(MARQUEE)
    assert result.display.profile == "outdoor_marquee"
    assert result.display.quantity == 2
    assert result.display.total_sq_ft == 400
    assert result.display.vendor_rate_per_sq_ft == 105
    assert result.display.structural_rate_per_sq_ft == 30
    print("  ✓ test_marquee_scenario_inputs")


def test_marquee_line_items():
    result = run_anc_estimator(MARQUEE)
    amounts = {item.id: item.amount for item in result.line_items}

    assert amounts["HW-LED"] == 47586.0
    assert amounts["LAB-INSTALL"] == 116000.0
    assert amounts["ELEC"] == 58000.0
    assert amounts["STRUCT"] == 12000.0
    assert amounts["BUNDLE-SEND"] == 900.0
    assert amounts["BUNDLE-SPARES"] == 951.72
    assert amounts["BUNDLE-CABLE"] == 240.0
    assert amounts["BUNDLE-UPS"] == 0.0
    assert amounts["BUNDLE-PROC"] == 12000.0
    assert amounts["BUNDLE-WEATHER"] == 4800.0
    assert amounts["FEE-PM"] == 10500.0
    assert amounts["FEE-ENG"] == 20000.0
    print("  ✓ test_marquee_line_items")


def test_total_cost_is_sum_of_formulas():
    """Total cost equals the twelve cost formulas evaluated and summed."""
    result = run_anc_estimator(MARQUEE)
    cost_items = [result.line_item(item_id) for item_id in COST_IDS]
    evaluated = sum(_evaluate(item.formula) for item in cost_items)

    assert result.totals.total_cost == round(evaluated, 2)
    assert result.totals.total_cost == 282977.72

    # Fractional areas: lines are rounded for display, the total only once
    for text, expected in (
        ("7 boards 11.1 x 17.9 scoreboard", 930324.54),
        ("3 screens 13.7ft x 21.3ft lobby", 653790.09),
    ):
        result = run_anc_estimator(text)
        cost_items = [result.line_item(item_id) for item_id in COST_IDS]
        evaluated = sum(_evaluate(item.formula) for item in cost_items)
        assert result.totals.total_cost == round(evaluated, 2), text
        assert result.totals.total_cost == expected, text
        assert _evaluate(result.line_item("PRICE-TOTAL").formula) == pytest.approx(evaluated)
    print("  ✓ test_total_cost_is_sum_of_formulas")


def test_every_formula_matches_its_amount():
    for text in (MARQUEE, "", "Center hung scoreboard 25' x 40', sales tax 7%, bond 2%"):
        result = run_anc_estimator(text)
        for item in result.line_items:
            assert round(_evaluate(item.formula), 2) == item.amount, item.id
    print("  ✓ test_every_formula_matches_its_amount")


def test_selling_price_uses_margin_divisor():
    result = run_anc_estimator(MARQUEE)
    totals = result.totals
    assert totals.selling_price == round(totals.total_cost / 0.85, 2)
    assert result.line_item("PRICE-SELL").formula == "282977.72 / 0.85"
    assert totals.gross_margin_dollars == round(totals.selling_price - totals.total_cost, 2)
    assert totals.gross_margin_percent == pytest.approx(15.0, abs=0.01)
    print("  ✓ test_selling_price_uses_margin_divisor")


def test_no_tax_or_bond_defaults_to_zero():
    result = run_anc_estimator(MARQUEE)
    totals = result.totals
    assert totals.tax_rate == 0.0
    assert totals.bond_rate == 0.0
    assert totals.bid_form_subtotal == totals.selling_price
    assert "Tax rate: not found in text; defaulted to 0%" in result.assumptions
    print("  ✓ test_no_tax_or_bond_defaults_to_zero")


def test_tax_and_bond_from_text():
    text = MARQUEE + "\nSales tax: 8.25%. Performance bond 1.5% of contract value."
    result = run_anc_estimator(text)
    totals = result.totals

    assert totals.tax_rate == 0.0825
    assert totals.bond_rate == 0.015
    assert totals.tax_amount == round(totals.selling_price * 0.0825, 2)
    assert totals.bond_amount == round(totals.selling_price * 0.015, 2)
    assert totals.bid_form_subtotal == round(
        totals.selling_price + totals.tax_amount + totals.bond_amount, 2
    )
    tax_notes = [a for a in result.assumptions if a.startswith("Tax rate")]
    assert tax_notes and "8.25%" in tax_notes[0] and "Sales tax" in tax_notes[0]
    print("  ✓ test_tax_and_bond_from_text")


def test_empty_input_uses_default_area():
    result = run_anc_estimator("")
    assert result.display.total_sq_ft == 150
    assert result.display.quantity == 1
    assert result.display.profile == "indoor_standard"
    assert any("150" in a and "default" in a.lower() for a in result.assumptions)
    assert result.project.project_title == "ANC Estimate"
    assert result.project.client_name == "Unknown Client"
    assert result.display_takeoff == []
    print("  ✓ test_empty_input_uses_default_area")


def test_profile_priority():
    """Outdoor marquee beats scoreboard, which beats lobby."""
    assert classify_display("Outdoor marquee next to the scoreboard").profile == "outdoor_marquee"
    assert classify_display("Center-hung scoreboard in the lobby").profile == "center_hung"
    assert classify_display("Atrium media wall").profile == "lobby_atrium"
    assert classify_display("Concourse displays").profile == "indoor_standard"
    print("  ✓ test_profile_priority")


def test_center_hung_bundles():
    result = run_anc_estimator("Center hung scoreboard 25' x 40'")
    assert result.display.structural_rate_per_sq_ft == 60
    assert result.line_item("BUNDLE-UPS").amount == 2500.0
    assert result.line_item("BUNDLE-WEATHER").amount == 0.0
    assert result.line_item("BUNDLE-PROC").amount == 12000.0
    assert result.display.total_sq_ft == 1000
    print("  ✓ test_center_hung_bundles")


def test_small_indoor_display_skips_conditional_bundles():
    result = run_anc_estimator("Lobby display 8' x 12'")
    assert result.display.profile == "lobby_atrium"
    assert result.display.total_sq_ft == 96
    for item_id in ("BUNDLE-UPS", "BUNDLE-PROC", "BUNDLE-WEATHER"):
        item = result.line_item(item_id)
        assert item.amount == 0.0
        assert item.note == "Not triggered"
    print("  ✓ test_small_indoor_display_skips_conditional_bundles")


def test_parse_quantity():
    assert parse_quantity("Provide 3 screens and 2 units") == (3, False)
    assert parse_quantity("0 displays") == (1, True)
    assert parse_quantity("one display") == (1, True)
    print("  ✓ test_parse_quantity")


def test_parse_sq_ft_takes_largest_candidate():
    text = "Board A 10' x 20', board B 15 x 30, lobby wall 500 sq ft"
    assert parse_sq_ft(text) == (500.0, False)
    assert parse_sq_ft("Video wall 12 × 16") == (192.0, False)
    print("  ✓ test_parse_sq_ft_takes_largest_candidate")


def test_parse_sq_ft_ignores_implausible_values():
    """A screen resolution is not a display area."""
    assert parse_sq_ft("Native resolution 1920 x 1080") == (150.0, True)
    assert parse_sq_ft("") == (150.0, True)
    print("  ✓ test_parse_sq_ft_ignores_implausible_values")


def test_parse_sq_ft_reads_thousands_separators():
    assert parse_sq_ft("Main board 1,200 sq ft") == (1200.0, False)
    assert parse_sq_ft("Ribbon 3' x 1,250'") == (3750.0, False)
    assert parse_sq_ft("Plaza wall 12,500.5 square feet") == (12500.5, False)

    result = run_anc_estimator("Main board 1,200 sq ft")
    assert result.display.total_sq_ft == 1200
    assert "Area assumption: 1200 sq ft per display (largest parsed area), 1200 sq ft total" in result.assumptions

    ribbon = extract_structured_displays("Ribbon Boards - 3' x 1,250' - 10mm")[0]
    assert (ribbon.height_ft, ribbon.width_ft, ribbon.sq_ft) == (3.0, 1250.0, 3750.0)
    print("  ✓ test_parse_sq_ft_reads_thousands_separators")


def test_parse_rate_from_keyword():
    rate, context = parse_rate_from_keyword("State sales tax rate is 6%", "tax")
    assert rate == 0.06
    assert "sales tax rate is 6%" in context
    assert parse_rate_from_keyword("no rates here", "tax") == (0.0, None)
    print("  ✓ test_parse_rate_from_keyword")


def test_explicit_project_fields():
    result = run_anc_estimator(
        MARQUEE, project_title="Marquee Refresh", client_name="City", venue_name="Civic Arena",
    )
    assert result.project.project_title == "Marquee Refresh"
    assert result.project.client_name == "City"
    assert result.project.venue_name == "Civic Arena"
    print("  ✓ test_explicit_project_fields")


def test_display_takeoff_lines():
    text = "\n".join([
        "Main Videoboard, In-Bowl - 24' x 42' - 6mm (qty 1)",
        "Ribbon Boards, Fascia - 3' x 360' - 10mm (qty 2)",
        "Ribbon Boards, Fascia - 3' x 360' - 10mm (qty 2)",
        "Outdoor Marquee, Entrance - 10' x 20' - 10mm",
    ])
    displays = extract_structured_displays(text)
    assert len(displays) == 3

    main = displays[0]
    assert main.name == "Main Videoboard, In-Bowl"
    assert main.location == "In-Bowl"
    assert (main.height_ft, main.width_ft, main.sq_ft) == (24.0, 42.0, 1008.0)
    assert main.pitch_mm == 6.0
    assert main.quantity == 1

    ribbon = displays[1]
    assert ribbon.location == "Fascia"
    assert ribbon.quantity == 2
    assert ribbon.sq_ft == 1080.0

    assert displays[2].is_outdoor is True
    assert displays[2].location == "Entrance"
    assert [d.id for d in displays] == ["display-1", "display-2", "display-3"]
    print("  ✓ test_display_takeoff_lines")


def test_report_text():
    report = estimate_to_report_text(run_anc_estimator(MARQUEE))
    assert report.startswith("# ANC Estimate")
    assert "- Profile: Outdoor Marquee" in report
    assert "- Total Cost: $282,977.72" in report
    assert "(105 * 1.1 * 1.03) * 400" in report
    print("  ✓ test_report_text")


def test_estimate_sheets():
    result = run_anc_estimator(MARQUEE)
    sheets = estimate_to_sheets(result)
    assert {
        "Summary Dashboard", "Display Takeoff", "Cost Build",
        "Bundle Logic", "Rate Card", "Assumptions_QA",
    } == set(sheets)
    assert len(sheets["Cost Build"]) == 17
    bundle_amounts = {row["Bundle Item"]: row["Applied Amount"] for row in sheets["Bundle Logic"]}
    assert bundle_amounts["Weatherproof Surcharge"] == 4800.0
    assert bundle_amounts["UPS Battery Backup"] == 0.0
    print("  ✓ test_estimate_sheets")


def run_all_tests():
    """Run all tests and report results."""
    print("\n" + "=" * 60)
    print("  rfp-extraction — Estimator Tests")
    print("=" * 60 + "\n")

    tests = [
        test_marquee_scenario_inputs,
        test_marquee_line_items,
        test_total_cost_is_sum_of_formulas,
        test_every_formula_matches_its_amount,
        test_selling_price_uses_margin_divisor,
        test_no_tax_or_bond_defaults_to_zero,
        test_tax_and_bond_from_text,
        test_empty_input_uses_default_area,
        test_profile_priority,
        test_center_hung_bundles,
        test_small_indoor_display_skips_conditional_bundles,
        test_parse_quantity,
        test_parse_sq_ft_takes_largest_candidate,
        test_parse_sq_ft_ignores_implausible_values,
        test_parse_sq_ft_reads_thousands_separators,
        test_parse_rate_from_keyword,
        test_explicit_project_fields,
        test_display_takeoff_lines,
        test_report_text,
        test_estimate_sheets,
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
