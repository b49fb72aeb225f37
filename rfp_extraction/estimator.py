"""
estimator.py — Deterministic LED display cost and price estimate.

This is a rules engine, not a classifier. From the raw RFP text it picks
a display profile, a quantity and a representative area, then builds a
cost sheet out of the rate tables in config.py:

    LED hardware   = vendor rate * 1.10 duty * 1.03 spares * total sq ft
    install/elec   = budget rate * total sq ft
    structural     = profile structural rate * total sq ft
    bundles        = sending cards, 2% spares, cable kit, and the
                     conditional UPS / backup processor / weatherproofing
    flat fees      = project management, stamped engineering drawings
    selling price  = total cost / (1 - margin target)

Every line item carries its formula as an arithmetic expression over the
exact numbers used, so a reviewer, or a test, can evaluate the string and
get the amount back to the cent. Line amounts are rounded for display; the
total cost sums the unrounded values and rounds once. If you change how
an amount is computed, change its formula string in the same edit.

Every fallback (quantity 1, 150 sq ft, 0% tax/bond) is written into the
assumptions list. Nothing here raises on bad text.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from rfp_extraction.config import EstimatorConfig, config
from rfp_extraction.displays import DIMENSION_RE, NUMBER, extract_structured_displays
from rfp_extraction.schemas import (
    AncEstimateResult,
    EstimateDisplay,
    EstimateLineItem,
    EstimateProject,
    EstimateTotals,
)

logger = logging.getLogger(__name__)

QUANTITY_RE = re.compile(r"\b(\d+)\s*(?:displays|screens|units|boards)\b", re.IGNORECASE)
SQFT_RE = re.compile(
    rf"({NUMBER})\s*(?:sq\.?\s*ft|sqft|sf|square\s+feet)\b", re.IGNORECASE
)
_CONTEXT_CHARS = 30


@dataclass
class DisplayClassification:
    profile: str
    label: str
    product: str
    vendor_rate_per_sq_ft: float
    structural_rate_per_sq_ft: float
    is_outdoor: bool
    is_center_hung: bool


def _money(value: float) -> float:
    return round(value, 2)


def _num(value: float) -> str:
    """Render a number so that evaluating the string gives the same float."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def _fmt_money(value: float) -> str:
    return f"${value:,.2f}"


def _parse_number(value: str) -> float:
    return float(value.replace(",", ""))


def _normalize(text: str) -> str:
    return " ".join(text.lower().split())


def classify_display(raw_text: str, settings: Optional[EstimatorConfig] = None) -> DisplayClassification:
    """
    Pick the display profile. Order matters: an outdoor marquee RFP that
    also mentions the scoreboard is still priced as a marquee.
    """
    settings = settings or config.estimator
    vendor = settings.vendor
    budget = settings.budget
    lower = _normalize(raw_text or "")

    if "outdoor marquee" in lower:
        return DisplayClassification(
            profile="outdoor_marquee",
            label="Outdoor Marquee",
            product="Yaham R10 (10mm), 6500 Nits, Rear Service",
            vendor_rate_per_sq_ft=vendor.outdoor_10mm_marquee,
            structural_rate_per_sq_ft=budget.structural_wall_per_sq_ft,
            is_outdoor=True,
            is_center_hung=False,
        )

    if "center hung" in lower or "center-hung" in lower or "scoreboard" in lower:
        return DisplayClassification(
            profile="center_hung",
            label="Center Hung / Scoreboard",
            product="Yaham R6 or LG 6mm (budgeted at Indoor 4mm dealer-net rate)",
            vendor_rate_per_sq_ft=vendor.indoor_4mm_standard,
            structural_rate_per_sq_ft=budget.structural_ceiling_per_sq_ft,
            is_outdoor=False,
            is_center_hung=True,
        )

    if "lobby" in lower or "atrium" in lower:
        return DisplayClassification(
            profile="lobby_atrium",
            label="Lobby / Atrium",
            product="Yaham C2.5 or LG 2.5mm",
            vendor_rate_per_sq_ft=vendor.indoor_25mm_lobby,
            structural_rate_per_sq_ft=budget.structural_wall_per_sq_ft,
            is_outdoor=False,
            is_center_hung=False,
        )

    return DisplayClassification(
        profile="indoor_standard",
        label="Indoor Standard",
        product="Yaham C4 (assumed standard indoor profile)",
        vendor_rate_per_sq_ft=vendor.indoor_4mm_standard,
        structural_rate_per_sq_ft=budget.structural_wall_per_sq_ft,
        is_outdoor=False,
        is_center_hung=False,
    )


def parse_quantity(raw_text: str) -> Tuple[int, bool]:
    """(quantity, defaulted). First "N displays|screens|units|boards" wins."""
    match = QUANTITY_RE.search(raw_text or "")
    if match:
        quantity = int(match.group(1))
        if quantity > 0:
            return quantity, False
    return 1, True


def parse_sq_ft(raw_text: str, settings: Optional[EstimatorConfig] = None) -> Tuple[float, bool]:
    """
    (area per display, defaulted).

    Takes the largest candidate among explicit "NN sq ft" mentions and
    "W x H" dimension pairs. Values outside (1, 200000) are ignored; a
    1920 x 1080 resolution is not a display area.
    """
    settings = settings or config.estimator
    text = raw_text or ""
    ceiling = settings.max_plausible_sq_ft

    candidates = [_parse_number(m.group(1)) for m in SQFT_RE.finditer(text)]
    candidates += [
        _parse_number(m.group(1)) * _parse_number(m.group(2)) for m in DIMENSION_RE.finditer(text)
    ]
    candidates = [value for value in candidates if 1 < value < ceiling]

    if not candidates:
        return settings.default_sq_ft_per_display, True
    return max(candidates), False


def parse_rate_from_keyword(raw_text: str, keyword: str) -> Tuple[float, Optional[str]]:
    """
    Percentage within 20 non-digit chars after `keyword`, as a fraction.

    Returns (0.0, None) when nothing matches. The second element is the
    matched context so the estimate can show where a rate came from.
    """
    text = raw_text or ""
    pattern = re.compile(re.escape(keyword) + r"[^\d]{0,20}(\d+(?:\.\d+)?)\s*%", re.IGNORECASE)
    match = pattern.search(text)
    if not match:
        return 0.0, None
    rate = round(float(match.group(1)) / 100, 6)
    start = max(0, match.start() - _CONTEXT_CHARS)
    end = min(len(text), match.end() + _CONTEXT_CHARS)
    return rate, " ".join(text[start:end].split())


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def run_anc_estimator(
    raw_text: str,
    project_title: Optional[str] = None,
    client_name: Optional[str] = None,
    venue_name: Optional[str] = None,
    settings: Optional[EstimatorConfig] = None,
) -> AncEstimateResult:
    """Build the full estimate from raw text. Stateless; safe to call anywhere."""
    settings = settings or config.estimator
    budget = settings.budget
    bundles = settings.bundles
    text = raw_text or ""

    classification = classify_display(text, settings)
    quantity, quantity_defaulted = parse_quantity(text)
    sq_ft_per_display, area_defaulted = parse_sq_ft(text, settings)
    total_sq_ft = _money(sq_ft_per_display * quantity)
    sq_ft = _num(total_sq_ft)

    vendor_rate = classification.vendor_rate_per_sq_ft
    structural_rate = classification.structural_rate_per_sq_ft

    # Unrounded values; each line rounds for display, the total rounds once
    hardware = (vendor_rate * budget.duty_multiplier * budget.spares_multiplier) * total_sq_ft
    install = budget.install_labor_per_sq_ft * total_sq_ft
    electrical = budget.electrical_per_sq_ft * total_sq_ft
    structural = structural_rate * total_sq_ft

    sending_card = bundles.sending_card_per_display * quantity
    spare_parts = hardware * bundles.spare_parts_rate
    cable_kit = bundles.signal_cable_kit_per_unit * (total_sq_ft / settings.cable_kit_sq_ft_unit)

    ups_triggered = classification.is_center_hung
    processor_triggered = total_sq_ft > settings.backup_processor_threshold_sq_ft
    weather_triggered = classification.is_outdoor

    ups = bundles.ups_battery_backup if ups_triggered else 0.0
    processor = bundles.backup_video_processor if processor_triggered else 0.0
    weatherproof = (
        bundles.outdoor_weatherproof_per_sq_ft * total_sq_ft if weather_triggered else 0.0
    )

    project_management = budget.project_management_flat
    drawings = budget.engineering_drawings_flat

    hardware_formula = (
        f"({_num(vendor_rate)} * {_num(budget.duty_multiplier)} * "
        f"{_num(budget.spares_multiplier)}) * {sq_ft}"
    )

    cost_values = [
        hardware, install, electrical, structural, sending_card, spare_parts,
        cable_kit, ups, processor, weatherproof, project_management, drawings,
    ]
    cost_items = [
        EstimateLineItem(
            id="HW-LED", group="hardware", label="LED Hardware",
            formula=hardware_formula,
            amount=_money(hardware),
            note="Vendor rate * duty * spares * total sq ft",
        ),
        EstimateLineItem(
            id="LAB-INSTALL", group="labor", label="Install Labor",
            formula=f"{_num(budget.install_labor_per_sq_ft)} * {sq_ft}",
            amount=_money(install),
        ),
        EstimateLineItem(
            id="ELEC", group="labor", label="Electrical",
            formula=f"{_num(budget.electrical_per_sq_ft)} * {sq_ft}",
            amount=_money(electrical),
        ),
        EstimateLineItem(
            id="STRUCT", group="labor", label="Structural",
            formula=f"{_num(structural_rate)} * {sq_ft}",
            amount=_money(structural),
            note="Ceiling rigging rate" if classification.is_center_hung else "Wall mount rate",
        ),
        EstimateLineItem(
            id="BUNDLE-SEND", group="bundles", label="Sending Card",
            formula=f"{_num(bundles.sending_card_per_display)} * {quantity}",
            amount=_money(sending_card),
        ),
        EstimateLineItem(
            id="BUNDLE-SPARES", group="bundles", label="Spare Parts Package",
            formula=f"{hardware_formula} * {_num(bundles.spare_parts_rate)}",
            amount=_money(spare_parts),
        ),
        EstimateLineItem(
            id="BUNDLE-CABLE", group="bundles", label="Signal Cable Kit",
            formula=(
                f"{_num(bundles.signal_cable_kit_per_unit)} * "
                f"({sq_ft} / {_num(settings.cable_kit_sq_ft_unit)})"
            ),
            amount=_money(cable_kit),
        ),
        EstimateLineItem(
            id="BUNDLE-UPS", group="bundles", label="UPS Battery Backup",
            formula=_num(ups),
            amount=_money(ups),
            note="Scoreboard/Center Hung trigger" if ups_triggered else "Not triggered",
        ),
        EstimateLineItem(
            id="BUNDLE-PROC", group="bundles", label="Backup Video Processor",
            formula=_num(processor),
            amount=_money(processor),
            note=(
                f"Display > {_num(settings.backup_processor_threshold_sq_ft)} sq ft trigger"
                if processor_triggered else "Not triggered"
            ),
        ),
        EstimateLineItem(
            id="BUNDLE-WEATHER", group="bundles", label="Weatherproof Enclosure Surcharge",
            formula=(
                f"{_num(bundles.outdoor_weatherproof_per_sq_ft)} * {sq_ft}"
                if weather_triggered else "0"
            ),
            amount=_money(weatherproof),
            note="Outdoor trigger" if weather_triggered else "Not triggered",
        ),
        EstimateLineItem(
            id="FEE-PM", group="flat_fees", label="Project Management",
            formula=_num(project_management),
            amount=_money(project_management),
            note="Flat Fee",
        ),
        EstimateLineItem(
            id="FEE-ENG", group="flat_fees", label="Engineering Stamped Drawings",
            formula=_num(drawings),
            amount=_money(drawings),
            note="Flat Allowance",
        ),
    ]

    total_cost = _money(sum(cost_values))
    divisor = round(1 - budget.margin_target, 6)
    selling_price = _money(total_cost / divisor)

    tax_rate, tax_context = parse_rate_from_keyword(text, "tax")
    bond_rate, bond_context = parse_rate_from_keyword(text, "bond")
    tax_amount = _money(selling_price * tax_rate)
    bond_amount = _money(selling_price * bond_rate)
    bid_form_subtotal = _money(selling_price + tax_amount + bond_amount)
    gross_margin = _money(selling_price - total_cost)
    gross_margin_percent = _money(gross_margin / selling_price * 100) if selling_price else 0.0

    pricing_items = [
        EstimateLineItem(
            id="PRICE-TOTAL", group="pricing", label="Total Cost",
            formula=" + ".join(_num(value) for value in cost_values),
            amount=total_cost,
            note="Sum of all internal costs",
        ),
        EstimateLineItem(
            id="PRICE-SELL", group="pricing", label="Selling Price",
            formula=f"{_num(total_cost)} / {_num(divisor)}",
            amount=selling_price,
            note=f"Margin target {_num(budget.margin_target * 100)}%",
        ),
        EstimateLineItem(
            id="PRICE-TAX", group="pricing", label="Tax",
            formula=f"{_num(selling_price)} * {_num(tax_rate)}",
            amount=tax_amount,
        ),
        EstimateLineItem(
            id="PRICE-BOND", group="pricing", label="Bond",
            formula=f"{_num(selling_price)} * {_num(bond_rate)}",
            amount=bond_amount,
        ),
        EstimateLineItem(
            id="PRICE-BID", group="pricing", label="Bid Form Subtotal",
            formula=f"{_num(selling_price)} + {_num(tax_amount)} + {_num(bond_amount)}",
            amount=bid_form_subtotal,
            note="Selling Price + Tax + Bond",
        ),
    ]

    assumptions = [
        f"Profile selected: {classification.label}",
        f"Product assumption: {classification.product}",
        (
            "Quantity: 1 (no display count found in text; defaulted to 1)"
            if quantity_defaulted else f"Quantity: {quantity}"
        ),
    ]
    if area_defaulted:
        assumptions.append(
            f"Area assumption: no area or dimensions found in text; defaulted to "
            f"{_num(settings.default_sq_ft_per_display)} sq ft per display "
            f"({sq_ft} sq ft total)"
        )
        logger.warning(
            "No display area found; using default %.0f sq ft per display",
            settings.default_sq_ft_per_display,
        )
    else:
        assumptions.append(
            f"Area assumption: {_num(sq_ft_per_display)} sq ft per display "
            f"(largest parsed area), {sq_ft} sq ft total"
        )
    assumptions.append(
        f"Hardware formula: (Vendor * {_num(budget.duty_multiplier)} duty * "
        f"{_num(budget.spares_multiplier)} spares) * SqFt"
    )
    assumptions.append(f"Margin target: {budget.margin_target * 100:.0f}%")
    for name, rate, context in (("Tax", tax_rate, tax_context), ("Bond", bond_rate, bond_context)):
        if context is None:
            assumptions.append(f"{name} rate: not found in text; defaulted to 0%")
        else:
            assumptions.append(f'{name} rate: {_num(round(rate * 100, 4))}% matched from "{context}"')

    result = AncEstimateResult(
        project=EstimateProject(
            project_title=(project_title or settings.default_project_title).strip(),
            client_name=(client_name or settings.default_client_name).strip(),
            venue_name=(venue_name or settings.default_venue_name).strip(),
            generated_at=_now_iso(),
        ),
        assumptions=assumptions,
        display=EstimateDisplay(
            profile=classification.profile,
            label=classification.label,
            product=classification.product,
            quantity=quantity,
            total_sq_ft=total_sq_ft,
            vendor_rate_per_sq_ft=vendor_rate,
            structural_rate_per_sq_ft=structural_rate,
        ),
        line_items=cost_items + pricing_items,
        totals=EstimateTotals(
            total_cost=total_cost,
            selling_price=selling_price,
            tax_rate=tax_rate,
            tax_amount=tax_amount,
            bond_rate=bond_rate,
            bond_amount=bond_amount,
            bid_form_subtotal=bid_form_subtotal,
            gross_margin_dollars=gross_margin,
            gross_margin_percent=gross_margin_percent,
        ),
        display_takeoff=extract_structured_displays(text),
    )

    logger.info(
        "Estimate: profile=%s qty=%d area=%.2f sq ft total_cost=%.2f selling=%.2f",
        classification.profile, quantity, total_sq_ft, total_cost, selling_price,
    )
    return result


# ── Presentation ──────────────────────────────────────────────────────────

def estimate_to_report_text(result: AncEstimateResult) -> str:
    """Plain-text estimate report for email/clipboard."""
    totals = result.totals
    lines = [
        f"# {result.project.project_title}",
        f"Client: {result.project.client_name}",
        f"Venue: {result.project.venue_name}",
        f"Generated: {result.project.generated_at}",
        "",
        "Display Assumptions",
        f"- Profile: {result.display.label}",
        f"- Product: {result.display.product}",
        f"- Quantity: {result.display.quantity}",
        f"- Total SqFt: {_num(result.display.total_sq_ft)}",
        "",
        "Line Items",
    ]
    for item in result.line_items:
        lines.append(f"- {item.label}: {_fmt_money(item.amount)} ({item.formula})")
    lines += [
        "",
        "Totals",
        f"- Total Cost: {_fmt_money(totals.total_cost)}",
        f"- Selling Price: {_fmt_money(totals.selling_price)}",
        f"- Tax ({totals.tax_rate * 100:.2f}%): {_fmt_money(totals.tax_amount)}",
        f"- Bond ({totals.bond_rate * 100:.2f}%): {_fmt_money(totals.bond_amount)}",
        f"- Bid Form Subtotal: {_fmt_money(totals.bid_form_subtotal)}",
        f"- Gross Margin: {_fmt_money(totals.gross_margin_dollars)} "
        f"({totals.gross_margin_percent:.2f}%)",
        "",
        "Assumptions",
    ]
    lines += [f"- {assumption}" for assumption in result.assumptions]
    return "\n".join(lines)


def estimate_to_sheets(
    result: AncEstimateResult,
    settings: Optional[EstimatorConfig] = None,
) -> Dict[str, List[Dict[str, Any]]]:
    """
    Sheet name -> column-keyed rows for the estimator workbook. A
    spreadsheet writer handles formats and column widths.
    """
    settings = settings or config.estimator
    vendor = settings.vendor
    budget = settings.budget
    bundles = settings.bundles
    totals = result.totals

    def _amount(item_id: str) -> float:
        item = result.line_item(item_id)
        return item.amount if item else 0.0

    return {
        "Summary Dashboard": [
            {"Metric": "Project", "Value": result.project.project_title},
            {"Metric": "Client", "Value": result.project.client_name},
            {"Metric": "Venue", "Value": result.project.venue_name},
            {"Metric": "Generated", "Value": result.project.generated_at},
            {"Metric": "Display Profile", "Value": result.display.label},
            {"Metric": "Product", "Value": result.display.product},
            {"Metric": "Quantity", "Value": result.display.quantity},
            {"Metric": "Total SqFt", "Value": result.display.total_sq_ft},
            {"Metric": "Total Cost", "Value": totals.total_cost},
            {"Metric": "Selling Price", "Value": totals.selling_price},
            {"Metric": "Gross Margin $", "Value": totals.gross_margin_dollars},
            {"Metric": "Gross Margin %", "Value": totals.gross_margin_percent / 100},
            {"Metric": "Tax Rate", "Value": totals.tax_rate},
            {"Metric": "Tax Amount", "Value": totals.tax_amount},
            {"Metric": "Bond Rate", "Value": totals.bond_rate},
            {"Metric": "Bond Amount", "Value": totals.bond_amount},
            {"Metric": "Bid Form Subtotal", "Value": totals.bid_form_subtotal},
        ],
        "Display Takeoff": [
            {"Display": d.name, "Location": d.location, "Qty": d.quantity, "SqFt": d.sq_ft,
             "Pitch (mm)": d.pitch_mm, "Outdoor": d.is_outdoor}
            for d in result.display_takeoff
        ],
        "Cost Build": [
            {"ID": item.id, "Group": item.group, "Item": item.label, "Formula": item.formula,
             "Amount": item.amount, "Note": item.note}
            for item in result.line_items
        ],
        "Bundle Logic": [
            {"Trigger": "All displays", "Bundle Item": "Sending Card",
             "Rule": f"{_fmt_money(bundles.sending_card_per_display)} per display",
             "Applied Amount": _amount("BUNDLE-SEND")},
            {"Trigger": "All displays", "Bundle Item": "Spare Parts",
             "Rule": f"{bundles.spare_parts_rate * 100:.0f}% of LED hardware",
             "Applied Amount": _amount("BUNDLE-SPARES")},
            {"Trigger": "All displays", "Bundle Item": "Signal Cable Kit",
             "Rule": f"{_fmt_money(bundles.signal_cable_kit_per_unit)} * "
                     f"(SqFt / {_num(settings.cable_kit_sq_ft_unit)})",
             "Applied Amount": _amount("BUNDLE-CABLE")},
            {"Trigger": "Scoreboard / Center Hung", "Bundle Item": "UPS Battery Backup",
             "Rule": _fmt_money(bundles.ups_battery_backup),
             "Applied Amount": _amount("BUNDLE-UPS")},
            {"Trigger": f"Display > {_num(settings.backup_processor_threshold_sq_ft)} SqFt",
             "Bundle Item": "Backup Video Processor",
             "Rule": _fmt_money(bundles.backup_video_processor),
             "Applied Amount": _amount("BUNDLE-PROC")},
            {"Trigger": "Outdoor", "Bundle Item": "Weatherproof Surcharge",
             "Rule": f"{_fmt_money(bundles.outdoor_weatherproof_per_sq_ft)} / SqFt",
             "Applied Amount": _amount("BUNDLE-WEATHER")},
        ],
        "Rate Card": [
            {"Rate Type": "Outdoor 10mm (Marquee)", "Value": vendor.outdoor_10mm_marquee, "Source": "Vendor Rate Card"},
            {"Rate Type": "Outdoor 4mm (High Res)", "Value": vendor.outdoor_4mm_high_res, "Source": "Vendor Rate Card"},
            {"Rate Type": "Indoor 2.5mm (Lobby)", "Value": vendor.indoor_25mm_lobby, "Source": "Vendor Rate Card"},
            {"Rate Type": "Indoor 4mm (Standard)", "Value": vendor.indoor_4mm_standard, "Source": "Vendor Rate Card"},
            {"Rate Type": "Install Labor / SqFt", "Value": budget.install_labor_per_sq_ft, "Source": "Budget Rate"},
            {"Rate Type": "Electrical / SqFt", "Value": budget.electrical_per_sq_ft, "Source": "Budget Rate"},
            {"Rate Type": "Structural Wall / SqFt", "Value": budget.structural_wall_per_sq_ft, "Source": "Budget Rate"},
            {"Rate Type": "Structural Ceiling / SqFt", "Value": budget.structural_ceiling_per_sq_ft, "Source": "Budget Rate"},
            {"Rate Type": "Project Management", "Value": budget.project_management_flat, "Source": "Budget Rate"},
            {"Rate Type": "Engineering Stamped Drawings", "Value": budget.engineering_drawings_flat, "Source": "Budget Rate"},
            {"Rate Type": "Margin Target", "Value": budget.margin_target, "Source": "Pricing Policy"},
        ],
        "Assumptions_QA": [
            {"Assumption / QA Check": assumption, "Status": "Review", "Estimator Notes": ""}
            for assumption in result.assumptions
        ] + [
            {"Assumption / QA Check": check, "Status": "Required", "Estimator Notes": ""}
            for check in (
                "Verify dimensions against drawing details",
                "Confirm tax and bond rates with bid form",
                "Confirm alternates and deducts",
                "Confirm freight and logistics scope",
            )
        ],
    }
