"""
config.py — Central configuration for the RFP extraction engine.

Every tunable number lives here: classifier weights and thresholds,
workbook caps, and the estimator rate tables. The relevance weights were
tuned by hand against scanned stadium/arena RFPs and have no derivation
beyond "these reproduce the labels reviewers agreed with", so they are
kept as named fields rather than literals buried in classifier.py. If you
retune them, rerun tests/test_classifier.py; the hard-override and reason
ordering tests are the ones that catch accidental behaviour changes.

Rate tables are budget numbers, not quotes. They change when the vendor
rate card changes and nowhere else.
"""

from dataclasses import dataclass, field
import os
import logging
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class ChunkingConfig:
    """
    Chunk splitting parameters.

    Fragments under 80 chars after a blank-line split are almost always
    OCR line-wrap debris (page numbers, running headers, a lone "Page 4
    of 31"), so they are dropped. Text that was already assembled from
    discrete sections uses the separator and is split on it verbatim.
    """
    section_separator: str = "\n\n---\n\n"
    min_fragment_chars: int = 80
    title_max_chars: int = 110


@dataclass
class ClassifierConfig:
    """
    Relevance scoring weights.

    Must-keep phrases (spec section numbers, bid-form markers) are worth 6
    each and force a `relevant` label on their own. Noise keywords are
    legal boilerplate and carry a negative weight that is NOT density
    normalized, so a long indemnification clause stays negative.
    """
    must_keep_weight: float = 6.0
    signal_weight: float = 2.0
    noise_weight: float = -1.8
    language_weight: float = 1.0

    category_keyword_weight: float = 2.0
    category_keyword_cap: float = 4.0
    category_pattern_weight: float = 1.25
    category_pattern_cap: float = 2.5

    risk_pattern_weight: float = 0.75
    risk_bucket_cap: float = 3.0

    booster_weight: float = 0.7

    drawing_bonus: float = 1.4
    drawing_max_chars: int = 350

    relevant_threshold: float = 7.0
    maybe_threshold: float = 2.5

    max_reasons: int = 3
    max_matched_keywords: int = 8

    # Hand control back to the host every N chunks in the async path
    yield_every: int = 8

    rules_path: Optional[str] = os.getenv("RFP_RULES_PATH")


@dataclass
class WorkbookConfig:
    """Structured workbook limits."""
    max_records: int = 200
    min_line_chars: int = 8
    item_max_chars: int = 120
    text_max_chars: int = 140
    markdown_max_items: int = 80


@dataclass(frozen=True)
class VendorRates:
    """LED hardware dealer-net rates, $/sq ft, from the vendor rate card."""
    outdoor_10mm_marquee: float = 105
    outdoor_4mm_high_res: float = 158
    indoor_25mm_lobby: float = 200
    indoor_4mm_standard: float = 120


@dataclass(frozen=True)
class BudgetRates:
    install_labor_per_sq_ft: float = 290
    electrical_per_sq_ft: float = 145
    structural_wall_per_sq_ft: float = 30
    structural_ceiling_per_sq_ft: float = 60
    project_management_flat: float = 10500
    engineering_drawings_flat: float = 20000
    margin_target: float = 0.15
    duty_multiplier: float = 1.10
    spares_multiplier: float = 1.03


@dataclass(frozen=True)
class BundleRates:
    sending_card_per_display: float = 450
    spare_parts_rate: float = 0.02
    signal_cable_kit_per_unit: float = 15
    ups_battery_backup: float = 2500
    backup_video_processor: float = 12000
    outdoor_weatherproof_per_sq_ft: float = 12


@dataclass
class EstimatorConfig:
    """
    Estimator rate tables and fallbacks.

    The 150 sq ft default is a mid-size concourse board. It only kicks in
    when no area or dimension parses out of the text, and the estimate
    always says so in its assumptions list.
    """
    vendor: VendorRates = field(default_factory=VendorRates)
    budget: BudgetRates = field(default_factory=BudgetRates)
    bundles: BundleRates = field(default_factory=BundleRates)

    default_sq_ft_per_display: float = 150.0
    cable_kit_sq_ft_unit: float = 25.0
    backup_processor_threshold_sq_ft: float = 300.0
    max_plausible_sq_ft: float = 200000.0

    default_project_title: str = "ANC Estimate"
    default_client_name: str = "Unknown Client"
    default_venue_name: str = "Unknown Venue"


@dataclass
class Config:
    """Master config — instantiated once, used everywhere."""
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    workbook: WorkbookConfig = field(default_factory=WorkbookConfig)
    estimator: EstimatorConfig = field(default_factory=EstimatorConfig)

    max_file_size_mb: int = 50
    supported_formats: tuple = (".txt", ".md", ".pdf")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    def __post_init__(self):
        """Fail fast on nonsense weights instead of mislabelling a whole
        document set."""
        cls = self.classifier
        if not 0 < cls.maybe_threshold < cls.relevant_threshold:
            raise ValueError(
                f"Thresholds must satisfy 0 < maybe < relevant, got "
                f"maybe={cls.maybe_threshold} relevant={cls.relevant_threshold}"
            )
        if cls.noise_weight >= 0:
            raise ValueError(f"Noise weight must be negative, got {cls.noise_weight}")
        if cls.yield_every < 1:
            raise ValueError(f"yield_every must be >= 1, got {cls.yield_every}")

        if self.workbook.max_records < 1:
            raise ValueError(f"Workbook cap must be positive, got {self.workbook.max_records}")

        margin = self.estimator.budget.margin_target
        if not 0 <= margin < 1:
            raise ValueError(f"Margin target must be in [0, 1), got {margin}")

        if cls.risk_pattern_weight >= abs(cls.noise_weight):
            logger.warning(
                "Risk pattern weight %.2f >= |noise weight| %.2f. Boilerplate "
                "clauses may now score positive.",
                cls.risk_pattern_weight, abs(cls.noise_weight),
            )


# Shared instance. Modules import this, not Config
config = Config()
