"""
schemas.py — Pydantic v2 models for every structure the engine produces.

Three families live here:
  - chunk scoring (ChunkScore, Chunk) and document metadata (RfpMeta)
  - the structured workbook, its five record types and the diff summary
  - the estimator result

Chunks are frozen once scored. Workbook records are plain mutable models
because the editor collaborator rewrites them before re-import; identity
across an edit is the record `id`, nothing else.
"""

from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

RelevanceLabel = Literal["relevant", "maybe", "irrelevant"]
Priority = Literal["High", "Medium"]
DisplayProfile = Literal["outdoor_marquee", "center_hung", "lobby_atrium", "indoor_standard"]
LineItemGroup = Literal["hardware", "labor", "bundles", "flat_fees", "pricing"]


# ── Chunks and metadata ───────────────────────────────────────────────────

class ChunkScore(BaseModel):
    """Classifier verdict for one piece of text."""
    label: RelevanceLabel = "irrelevant"
    score: float = 0.0
    reason: str = "low keyword signal"
    category_hits: List[str] = Field(default_factory=list)
    risk_hits: List[str] = Field(default_factory=list)
    matched_keywords: List[str] = Field(default_factory=list)
    booster_hits: List[str] = Field(default_factory=list)
    drawing_candidate: bool = False


class Chunk(ChunkScore):
    """A scored section of the document. `id` is `chunk-<n>`, 1-based."""
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    text: str


class MetaEvidence(BaseModel):
    """Which pattern produced an extracted field, and the text around it."""
    pattern_index: int
    context: str


class RfpMeta(BaseModel):
    client_name: Optional[str] = None
    venue_name: Optional[str] = None
    project_title: Optional[str] = None
    evidence: Dict[str, MetaEvidence] = Field(default_factory=dict)


# ── Structured workbook ───────────────────────────────────────────────────

class WorkbookRecord(BaseModel):
    id: str
    source: str = ""
    citation: str = ""
    # True when the citation was recovered from a "(chunk-N)" source label
    citation_inferred: bool = False


class WorkbookRequirement(WorkbookRecord):
    text: str
    category: str = "General"
    priority: Priority = "Medium"


class WorkbookPricing(WorkbookRecord):
    item: str
    amount: str


class WorkbookSchedule(WorkbookRecord):
    milestone: str
    due_text: str = "TBD"


class WorkbookRisk(WorkbookRecord):
    risk: str
    severity: Priority = "Medium"


class WorkbookAssumption(WorkbookRecord):
    text: str


class WorkbookSource(BaseModel):
    id: str
    title: str
    score: float = 0.0
    label: str = "maybe"


class WorkbookProject(BaseModel):
    project_title: str
    client_name: str
    venue_name: str
    generated_at: str


class StructuredWorkbook(BaseModel):
    project: WorkbookProject
    requirements: List[WorkbookRequirement] = Field(default_factory=list)
    pricing: List[WorkbookPricing] = Field(default_factory=list)
    schedule: List[WorkbookSchedule] = Field(default_factory=list)
    risks: List[WorkbookRisk] = Field(default_factory=list)
    assumptions: List[WorkbookAssumption] = Field(default_factory=list)
    sources: List[WorkbookSource] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (
            self.requirements or self.pricing or self.schedule
            or self.risks or self.assumptions
        )


class CollectionDiff(BaseModel):
    added: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)
    edited: List[str] = Field(default_factory=list)

    @property
    def change_count(self) -> int:
        return len(self.added) + len(self.removed) + len(self.edited)


class WorkbookDiffSummary(BaseModel):
    requirements: CollectionDiff = Field(default_factory=CollectionDiff)
    pricing: CollectionDiff = Field(default_factory=CollectionDiff)
    schedule: CollectionDiff = Field(default_factory=CollectionDiff)
    risks: CollectionDiff = Field(default_factory=CollectionDiff)
    assumptions: CollectionDiff = Field(default_factory=CollectionDiff)
    project_fields_changed: List[str] = Field(default_factory=list)

    @property
    def total_changes(self) -> int:
        return sum(
            getattr(self, name).change_count
            for name in ("requirements", "pricing", "schedule", "risks", "assumptions")
        ) + len(self.project_fields_changed)

    @property
    def has_changes(self) -> bool:
        return self.total_changes > 0


# ── Estimator ─────────────────────────────────────────────────────────────

class StructuredDisplay(BaseModel):
    """One display line picked out of the text (takeoff, informational)."""
    id: str
    name: str
    location: str
    width_ft: float
    height_ft: float
    sq_ft: float
    pitch_mm: Optional[float] = None
    quantity: int = 1
    is_outdoor: bool = False


class EstimateProject(BaseModel):
    project_title: str
    client_name: str
    venue_name: str
    generated_at: str


class EstimateDisplay(BaseModel):
    profile: DisplayProfile
    label: str
    product: str
    quantity: int
    total_sq_ft: float
    vendor_rate_per_sq_ft: float
    structural_rate_per_sq_ft: float


class EstimateLineItem(BaseModel):
    """
    One row of the cost build. `formula` is an arithmetic expression over
    the literal numbers used, so evaluating it reproduces `amount` before
    rounding to cents. `note` carries the trigger/flat-fee wording.
    """
    id: str
    group: LineItemGroup
    label: str
    formula: str
    amount: float
    note: str = ""


class EstimateTotals(BaseModel):
    total_cost: float
    selling_price: float
    tax_rate: float
    tax_amount: float
    bond_rate: float
    bond_amount: float
    bid_form_subtotal: float
    gross_margin_dollars: float
    gross_margin_percent: float


class AncEstimateResult(BaseModel):
    project: EstimateProject
    assumptions: List[str] = Field(default_factory=list)
    display: EstimateDisplay
    line_items: List[EstimateLineItem] = Field(default_factory=list)
    totals: EstimateTotals
    display_takeoff: List[StructuredDisplay] = Field(default_factory=list)

    def line_item(self, item_id: str) -> Optional[EstimateLineItem]:
        for item in self.line_items:
            if item.id == item_id:
                return item
        return None


# ── Pipeline output ───────────────────────────────────────────────────────

class AnalysisResult(BaseModel):
    """Everything one analysis run produces."""
    meta: RfpMeta
    chunks: List[Chunk] = Field(default_factory=list)
    workbook: StructuredWorkbook
    markdown: str = ""
    estimate: Optional[AncEstimateResult] = None
