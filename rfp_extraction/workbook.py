"""
workbook.py — Structured workbook: build, render, export, import, diff.

The workbook is the reviewable output of an analysis run. Five record
collections (requirements, pricing, schedule, risks, assumptions), each
record citing the chunk it came from, plus the list of those chunks.

Build walks every relevant/maybe chunk line by line. Each line is tested
against five independent triggers; a line that says "Contractor shall
deliver by March 1, 2026 for $25,000" legitimately lands in requirements,
schedule AND pricing. Collections are then deduplicated on their primary
text (case/whitespace-insensitive, first wins), capped at 200, and only
then numbered, so IDs are dense: REQ-1..REQ-n.

Round-trip format is tabular rows keyed by the column headers below,
grouped by sheet name. The markdown rendering is for humans only.

Diff is a keyed set difference on record `id`. An editor that renumbers
records turns every edit into remove+add.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Type, TypeVar

from rfp_extraction.config import WorkbookConfig, config
from rfp_extraction.schemas import (
    Chunk,
    CollectionDiff,
    RfpMeta,
    StructuredWorkbook,
    WorkbookAssumption,
    WorkbookDiffSummary,
    WorkbookPricing,
    WorkbookProject,
    WorkbookRecord,
    WorkbookRequirement,
    WorkbookRisk,
    WorkbookSchedule,
    WorkbookSource,
)

logger = logging.getLogger(__name__)

REQUIREMENT_RE = re.compile(
    r"\b(must|required|shall|submittal|compliance|deliverable|specification)\b", re.IGNORECASE
)
HIGH_PRIORITY_RE = re.compile(r"\b(must|required|shall)\b", re.IGNORECASE)
ASSUMPTION_RE = re.compile(
    r"\b(assumption|assumed|excluded|exclusions?|not included|by others|owner provided|"
    r"owner furnished|by owner)\b",
    re.IGNORECASE,
)
SCHEDULE_RE = re.compile(
    r"\b(deadline|due|completion|milestone|notice to proceed|ntp|calendar days?|"
    r"timeline|substantial completion)\b",
    re.IGNORECASE,
)
DATE_RE = re.compile(
    r"\b(?:jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?\s+\d{1,2},?\s+\d{2,4}\b"
    r"|\b\d{1,2}/\d{1,2}/\d{2,4}\b"
    r"|\b20\d{2}\b",
    re.IGNORECASE,
)
RISK_RE = re.compile(
    r"\b(liability|indemnif\w*|bond|insurance|penalty|penalties|arbitration|retainage|"
    r"liquidated damages|termination)\b",
    re.IGNORECASE,
)
HIGH_SEVERITY_RE = re.compile(
    r"\b(liquidated damages|termination|indemnif\w*|penalty|penalties)\b", re.IGNORECASE
)
AMOUNT_RE = re.compile(r"\$[\d,]+(?:\.\d{2})?")
LEGACY_CITATION_RE = re.compile(r"\((chunk-\d+)\)", re.IGNORECASE)

DEFAULT_PROJECT_TITLE = "RFP Project"
IMPORTED_PROJECT_TITLE = "Imported RFP Project"
DEFAULT_CLIENT = "Unknown Client"
DEFAULT_VENUE = "Unknown Venue"

# Sheet name -> ordered column headers
SHEET_COLUMNS: Dict[str, List[str]] = {
    "Project": ["Field", "Value"],
    "Requirements": ["ID", "Requirement", "Category", "Priority", "Source", "Citation"],
    "Pricing": ["ID", "Item", "Amount", "Source", "Citation"],
    "Schedule": ["ID", "Milestone", "Due", "Source", "Citation"],
    "Risks": ["ID", "Risk", "Severity", "Source", "Citation"],
    "Assumptions": ["ID", "Assumption", "Source", "Citation"],
    "Sources": ["Chunk ID", "Title", "Score", "Label"],
}

# collection -> (id prefix, fields compared by diff)
_COLLECTIONS: Dict[str, tuple] = {
    "requirements": ("REQ", ("text", "category", "priority")),
    "pricing": ("PRC", ("item", "amount")),
    "schedule": ("SCH", ("milestone", "due_text")),
    "risks": ("RSK", ("risk", "severity")),
    "assumptions": ("ASM", ("text",)),
}

R = TypeVar("R", bound=WorkbookRecord)


def _clean(text: str) -> str:
    return " ".join(text.split())


def _split_lines(text: str, min_chars: int) -> List[str]:
    lines = (_clean(line) for line in text.split("\n"))
    return [line for line in lines if len(line) >= min_chars]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _truncate(line: str, limit: int) -> str:
    return line[:limit].rstrip()


def _text_key(field_name: str) -> Callable[[dict], str]:
    return lambda record: _clean(record[field_name]).lower()


def _pricing_key(record: dict) -> str:
    # One line can carry several amounts; each amount is its own record
    return _clean(record["item"]).lower() + "|" + record["amount"]


def _dedupe(records: List[dict], key: Callable[[dict], str]) -> List[dict]:
    seen = set()
    out: List[dict] = []
    for record in records:
        record_key = key(record)
        if not record_key or record_key in seen:
            continue
        seen.add(record_key)
        out.append(record)
    return out


def _finalize(
    drafts: List[dict],
    key: Callable[[dict], str],
    prefix: str,
    model: Type[R],
    cap: int,
) -> List[R]:
    """Dedupe, cap, then number. IDs only go to surviving records."""
    unique = _dedupe(drafts, key)
    dropped = len(drafts) - len(unique)
    if dropped:
        logger.info("%s: dropped %d duplicate records", prefix, dropped)
    if len(unique) > cap:
        logger.info("%s: capped %d records at %d", prefix, len(unique), cap)
    return [
        model(id=f"{prefix}-{index}", **draft)
        for index, draft in enumerate(unique[:cap], start=1)
    ]


# ── Build ─────────────────────────────────────────────────────────────────

def build_structured_workbook(
    chunks: Sequence[Chunk],
    meta: Optional[RfpMeta] = None,
    settings: Optional[WorkbookConfig] = None,
) -> StructuredWorkbook:
    """
    Extract structured records from relevant and maybe chunks.

    Irrelevant chunks contribute nothing, not even a source entry.
    """
    settings = settings or config.workbook
    meta = meta or RfpMeta()
    selected = [chunk for chunk in chunks if chunk.label != "irrelevant"]

    requirements: List[dict] = []
    pricing: List[dict] = []
    schedule: List[dict] = []
    risks: List[dict] = []
    assumptions: List[dict] = []

    for chunk in selected:
        provenance = {"source": chunk.title, "citation": chunk.id}
        category = chunk.category_hits[0] if chunk.category_hits else "General"

        for line in _split_lines(chunk.text, settings.min_line_chars):
            if REQUIREMENT_RE.search(line):
                requirements.append({
                    "text": line,
                    "category": category,
                    "priority": "High" if HIGH_PRIORITY_RE.search(line) else "Medium",
                    **provenance,
                })

            for amount in AMOUNT_RE.findall(line):
                pricing.append({
                    "item": _truncate(line, settings.item_max_chars),
                    "amount": amount,
                    **provenance,
                })

            date_match = DATE_RE.search(line)
            if SCHEDULE_RE.search(line) or date_match:
                schedule.append({
                    "milestone": _truncate(line, settings.item_max_chars),
                    "due_text": date_match.group(0) if date_match else "TBD",
                    **provenance,
                })

            if chunk.risk_hits or RISK_RE.search(line):
                risks.append({
                    "risk": _truncate(line, settings.text_max_chars),
                    "severity": "High" if HIGH_SEVERITY_RE.search(line) else "Medium",
                    **provenance,
                })

            if ASSUMPTION_RE.search(line):
                assumptions.append({
                    "text": _truncate(line, settings.text_max_chars),
                    **provenance,
                })

    cap = settings.max_records
    workbook = StructuredWorkbook(
        project=WorkbookProject(
            project_title=meta.project_title or DEFAULT_PROJECT_TITLE,
            client_name=meta.client_name or DEFAULT_CLIENT,
            venue_name=meta.venue_name or DEFAULT_VENUE,
            generated_at=_now_iso(),
        ),
        requirements=_finalize(requirements, _text_key("text"), "REQ", WorkbookRequirement, cap),
        pricing=_finalize(pricing, _pricing_key, "PRC", WorkbookPricing, cap),
        schedule=_finalize(schedule, _text_key("milestone"), "SCH", WorkbookSchedule, cap),
        risks=_finalize(risks, _text_key("risk"), "RSK", WorkbookRisk, cap),
        assumptions=_finalize(assumptions, _text_key("text"), "ASM", WorkbookAssumption, cap),
        sources=[
            WorkbookSource(id=chunk.id, title=chunk.title, score=chunk.score, label=chunk.label)
            for chunk in selected
        ],
    )

    logger.info(
        "Built workbook from %d/%d chunks: %d requirements, %d pricing, "
        "%d schedule, %d risks, %d assumptions",
        len(selected), len(chunks),
        len(workbook.requirements), len(workbook.pricing), len(workbook.schedule),
        len(workbook.risks), len(workbook.assumptions),
    )
    return workbook


# ── Markdown (display only, lossy) ────────────────────────────────────────

def _cite(record: WorkbookRecord) -> str:
    return record.citation or record.source


def workbook_to_markdown(workbook: StructuredWorkbook, settings: Optional[WorkbookConfig] = None) -> str:
    settings = settings or config.workbook
    limit = settings.markdown_max_items
    project = workbook.project
    sections = [
        f"# {project.project_title}\n\n"
        f"- Client: {project.client_name}\n"
        f"- Venue: {project.venue_name}\n"
        f"- Generated: {project.generated_at}"
    ]

    if workbook.requirements:
        sections.append("## Requirements\n\n" + "\n".join(
            f"- [{r.priority}] {r.text} ({r.category}) [{_cite(r)}]"
            for r in workbook.requirements[:limit]
        ))

    if workbook.pricing:
        sections.append("## Pricing\n\n| Item | Amount | Citation |\n|---|---|---|\n" + "\n".join(
            "| {} | {} | [{}] |".format(p.item.replace("|", "\\|"), p.amount, _cite(p))
            for p in workbook.pricing[:limit]
        ))

    if workbook.schedule:
        sections.append("## Schedule\n\n" + "\n".join(
            f"- {s.milestone} (Due: {s.due_text}) [{_cite(s)}]"
            for s in workbook.schedule[:limit]
        ))

    if workbook.risks:
        sections.append("## Risks\n\n" + "\n".join(
            f"- [{r.severity}] {r.risk} [{_cite(r)}]"
            for r in workbook.risks[:limit]
        ))

    if workbook.assumptions:
        sections.append("## Assumptions\n\n" + "\n".join(
            f"- {a.text} [{_cite(a)}]"
            for a in workbook.assumptions[:limit]
        ))

    return "\n\n".join(sections)


# ── Sheet rows (round-trip format) ────────────────────────────────────────

def workbook_to_sheets(workbook: StructuredWorkbook) -> Dict[str, List[Dict[str, Any]]]:
    """Sheet name -> list of column-keyed rows, ready for a spreadsheet writer."""
    project = workbook.project
    return {
        "Project": [
            {"Field": "Project Title", "Value": project.project_title},
            {"Field": "Client", "Value": project.client_name},
            {"Field": "Venue", "Value": project.venue_name},
            {"Field": "Generated At", "Value": project.generated_at},
        ],
        "Requirements": [
            {"ID": r.id, "Requirement": r.text, "Category": r.category, "Priority": r.priority,
             "Source": r.source, "Citation": r.citation}
            for r in workbook.requirements
        ],
        "Pricing": [
            {"ID": p.id, "Item": p.item, "Amount": p.amount, "Source": p.source, "Citation": p.citation}
            for p in workbook.pricing
        ],
        "Schedule": [
            {"ID": s.id, "Milestone": s.milestone, "Due": s.due_text, "Source": s.source,
             "Citation": s.citation}
            for s in workbook.schedule
        ],
        "Risks": [
            {"ID": r.id, "Risk": r.risk, "Severity": r.severity, "Source": r.source,
             "Citation": r.citation}
            for r in workbook.risks
        ],
        "Assumptions": [
            {"ID": a.id, "Assumption": a.text, "Source": a.source, "Citation": a.citation}
            for a in workbook.assumptions
        ],
        "Sources": [
            {"Chunk ID": s.id, "Title": s.title, "Score": s.score, "Label": s.label}
            for s in workbook.sources
        ],
    }


def _as_string(value: Any, fallback: str = "") -> str:
    """Spreadsheet readers hand back str, int, float or None per cell."""
    if isinstance(value, bool):
        return fallback
    if isinstance(value, str):
        return value.strip() or fallback
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else str(value)
    return fallback


def _as_float(value: Any) -> float:
    try:
        return float(_as_string(value, "0"))
    except ValueError:
        return 0.0


class _CitationResolver:
    """Reads the Citation column, falling back to "(chunk-N)" in Source."""

    def __init__(self):
        self.inferred = 0

    def __call__(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        source = _as_string(row.get("Source"))
        citation = _as_string(row.get("Citation"))
        if citation:
            return {"source": source, "citation": citation, "citation_inferred": False}

        match = LEGACY_CITATION_RE.search(source)
        if match:
            self.inferred += 1
            return {"source": source, "citation": match.group(1).lower(), "citation_inferred": True}
        return {"source": source, "citation": "", "citation_inferred": False}


def _parse_rows(
    rows: Sequence[Mapping[str, Any]],
    prefix: str,
    model: Type[R],
    build: Callable[[Mapping[str, Any]], Dict[str, Any]],
    key_field: str,
    cite: _CitationResolver,
) -> List[R]:
    records: List[R] = []
    for index, row in enumerate(rows):
        fields = build(row)
        if not fields[key_field]:
            continue
        records.append(model(id=_as_string(row.get("ID"), f"{prefix}-{index + 1}"), **fields, **cite(row)))
    return records


def parse_structured_workbook_from_sheets(
    sheets: Mapping[str, Sequence[Mapping[str, Any]]],
) -> Optional[StructuredWorkbook]:
    """
    Rebuild a workbook from sheet rows.

    Returns None when none of the five record sheets has a usable row.
    That means "this is not one of our exports", and the caller must
    surface it as a rejected import.
    """
    project_map: Dict[str, str] = {}
    for row in sheets.get("Project") or []:
        key = _as_string(row.get("Field"))
        if key:
            project_map[key] = _as_string(row.get("Value"))

    cite = _CitationResolver()

    requirements = _parse_rows(
        sheets.get("Requirements") or [], "REQ", WorkbookRequirement,
        lambda row: {
            "text": _as_string(row.get("Requirement")),
            "category": _as_string(row.get("Category"), "General"),
            "priority": "High" if _as_string(row.get("Priority"), "Medium") == "High" else "Medium",
        },
        "text", cite,
    )
    pricing = _parse_rows(
        sheets.get("Pricing") or [], "PRC", WorkbookPricing,
        lambda row: {"item": _as_string(row.get("Item")), "amount": _as_string(row.get("Amount"))},
        "item", cite,
    )
    schedule = _parse_rows(
        sheets.get("Schedule") or [], "SCH", WorkbookSchedule,
        lambda row: {
            "milestone": _as_string(row.get("Milestone")),
            "due_text": _as_string(row.get("Due"), "TBD"),
        },
        "milestone", cite,
    )
    risks = _parse_rows(
        sheets.get("Risks") or [], "RSK", WorkbookRisk,
        lambda row: {
            "risk": _as_string(row.get("Risk")),
            "severity": "High" if _as_string(row.get("Severity"), "Medium") == "High" else "Medium",
        },
        "risk", cite,
    )
    assumptions = _parse_rows(
        sheets.get("Assumptions") or [], "ASM", WorkbookAssumption,
        lambda row: {"text": _as_string(row.get("Assumption"))},
        "text", cite,
    )

    sources = [
        WorkbookSource(
            id=_as_string(row.get("Chunk ID")),
            title=_as_string(row.get("Title")),
            score=_as_float(row.get("Score")),
            label=_as_string(row.get("Label"), "maybe"),
        )
        for row in sheets.get("Sources") or []
        if _as_string(row.get("Chunk ID")) or _as_string(row.get("Title"))
    ]

    workbook = StructuredWorkbook(
        project=WorkbookProject(
            project_title=project_map.get("Project Title") or IMPORTED_PROJECT_TITLE,
            client_name=project_map.get("Client") or DEFAULT_CLIENT,
            venue_name=project_map.get("Venue") or DEFAULT_VENUE,
            generated_at=project_map.get("Generated At") or _now_iso(),
        ),
        requirements=requirements,
        pricing=pricing,
        schedule=schedule,
        risks=risks,
        assumptions=assumptions,
        sources=sources,
    )

    if workbook.is_empty():
        logger.warning("Import rejected: no structured rows in sheets %s", sorted(sheets))
        return None

    if cite.inferred:
        logger.warning(
            "Recovered %d citations from legacy '(chunk-N)' source labels; "
            "re-export to get a dedicated Citation column",
            cite.inferred,
        )

    unresolved = find_unresolved_citations(workbook)
    if unresolved:
        logger.warning(
            "%d imported records cite chunks missing from Sources: %s",
            len(unresolved), ", ".join(unresolved[:10]),
        )

    logger.info(
        "Imported workbook: %d requirements, %d pricing, %d schedule, %d risks, %d assumptions",
        len(requirements), len(pricing), len(schedule), len(risks), len(assumptions),
    )
    return workbook


def find_unresolved_citations(workbook: StructuredWorkbook) -> List[str]:
    """IDs of records whose non-empty citation is not in sources[]."""
    known = {source.id for source in workbook.sources}
    unresolved: List[str] = []
    for name in _COLLECTIONS:
        for record in getattr(workbook, name):
            if record.citation and record.citation not in known:
                unresolved.append(record.id)
    return unresolved


# ── Diff ──────────────────────────────────────────────────────────────────

def _diff_collection(
    previous: Sequence[WorkbookRecord],
    current: Sequence[WorkbookRecord],
    fields: Sequence[str],
) -> CollectionDiff:
    before = {record.id: record for record in previous}
    after = {record.id: record for record in current}

    edited = [
        record_id for record_id, record in after.items()
        if record_id in before
        and any(getattr(record, f) != getattr(before[record_id], f) for f in fields)
    ]
    return CollectionDiff(
        added=[record_id for record_id in after if record_id not in before],
        removed=[record_id for record_id in before if record_id not in after],
        edited=edited,
    )


def diff_workbooks(
    previous: Optional[StructuredWorkbook],
    current: StructuredWorkbook,
) -> Optional[WorkbookDiffSummary]:
    """
    Compare two workbook versions by record id.

    Returns None when there is no previous version (first import).
    Source and citation changes are ignored; only semantic fields count.
    """
    if previous is None:
        return None

    summary = WorkbookDiffSummary(
        project_fields_changed=[
            name for name in ("project_title", "client_name", "venue_name")
            if getattr(previous.project, name) != getattr(current.project, name)
        ],
        **{
            name: _diff_collection(getattr(previous, name), getattr(current, name), fields)
            for name, (_, fields) in _COLLECTIONS.items()
        },
    )
    logger.info("Workbook diff: %d changes", summary.total_changes)
    return summary
