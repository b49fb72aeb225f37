"""
rules.py — Keyword and pattern rule sets for the relevance classifier.

The rule set is data, not behaviour. It is frozen, built once, and handed
to RelevanceClassifier explicitly so tests (and customers with their own
vocabulary) can swap in a different set without monkeypatching module
globals.

Keywords are matched as whole words/phrases against a lowercased copy of
the chunk with punctuation folded to spaces ("I-Beam" -> "i beam"), so the
keyword lists below are written in that folded form. Patterns are regular
expressions run case-insensitively against the lowercased chunk with
whitespace collapsed but punctuation intact ($, ', x, mm all matter there).

A JSON file with the same shape as `ClassifierRules.to_dict()` can replace
the defaults via RFP_RULES_PATH.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from rfp_extraction.config import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeywordCategory:
    name: str
    keywords: Tuple[str, ...]
    patterns: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RiskBucket:
    name: str
    patterns: Tuple[str, ...]


@dataclass(frozen=True)
class Booster:
    name: str
    pattern: str


@dataclass(frozen=True)
class ClassifierRules:
    must_keep: Tuple[str, ...]
    signal: Tuple[str, ...]
    noise: Tuple[str, ...]
    mandatory_language: Tuple[str, ...]
    deadline_language: Tuple[str, ...]
    categories: Tuple[KeywordCategory, ...]
    risk_buckets: Tuple[RiskBucket, ...]
    boosters: Tuple[Booster, ...]
    drawing_vocabulary: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "must_keep": list(self.must_keep),
            "signal": list(self.signal),
            "noise": list(self.noise),
            "mandatory_language": list(self.mandatory_language),
            "deadline_language": list(self.deadline_language),
            "categories": [
                {"name": c.name, "keywords": list(c.keywords), "patterns": list(c.patterns)}
                for c in self.categories
            ],
            "risk_buckets": [
                {"name": b.name, "patterns": list(b.patterns)} for b in self.risk_buckets
            ],
            "boosters": [{"name": b.name, "pattern": b.pattern} for b in self.boosters],
            "drawing_vocabulary": list(self.drawing_vocabulary),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClassifierRules":
        """
        Build a rule set from plain data, compiling every pattern once to
        reject bad regexes at load time rather than mid-document.

        Raises:
            ValueError: missing keys or an invalid regex.
        """
        try:
            rules = cls(
                must_keep=tuple(data["must_keep"]),
                signal=tuple(data["signal"]),
                noise=tuple(data["noise"]),
                mandatory_language=tuple(data.get("mandatory_language", ())),
                deadline_language=tuple(data.get("deadline_language", ())),
                categories=tuple(
                    KeywordCategory(
                        name=c["name"],
                        keywords=tuple(c.get("keywords", ())),
                        patterns=tuple(c.get("patterns", ())),
                    )
                    for c in data["categories"]
                ),
                risk_buckets=tuple(
                    RiskBucket(name=b["name"], patterns=tuple(b["patterns"]))
                    for b in data["risk_buckets"]
                ),
                boosters=tuple(
                    Booster(name=b["name"], pattern=b["pattern"]) for b in data["boosters"]
                ),
                drawing_vocabulary=tuple(data.get("drawing_vocabulary", ())),
            )
        except (KeyError, TypeError) as exc:
            raise ValueError(f"Malformed rule set: {exc!r}") from exc

        for pattern in rules.all_patterns():
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"Invalid rule pattern {pattern!r}: {exc}") from exc
        return rules

    def all_patterns(self):
        for category in self.categories:
            yield from category.patterns
        for bucket in self.risk_buckets:
            yield from bucket.patterns
        for booster in self.boosters:
            yield booster.pattern
        yield from self.drawing_vocabulary


DEFAULT_RULES = ClassifierRules(
    must_keep=(
        "11 06 60",
        "display schedule",
        "exhibit b",
        "division 26",
        "division 27",
        "bid form",
        "schedule of values",
    ),
    signal=(
        "pixel pitch",
        "nits",
        "structural",
        "warranty",
        "refresh rate",
        "service access",
    ),
    noise=(
        "indemnification",
        "force majeure",
        "arbitration",
    ),
    mandatory_language=("mandatory", "must", "shall"),
    deadline_language=("deadline", "due date", "submission"),
    categories=(
        KeywordCategory(
            name="Display Hardware",
            keywords=("led", "video board", "scoreboard", "ribbon board", "fascia"),
            patterns=(
                r"\bvideo\s+(?:boards?|displays?|walls?)\b",
                r"\bled\s+(?:modules?|panels?|cabinets?|tiles?)\b",
            ),
        ),
        KeywordCategory(
            name="Display Specs",
            keywords=("pixel pitch", "nits", "brightness", "resolution", "ip65"),
            patterns=(
                r"\b\d+(?:\.\d+)?\s*mm\s+(?:pixel\s+)?pitch\b",
                r"\b\d{3,5}\s*nits?\b",
                r"\b\d{3,4}\s*[x×]\s*\d{3,4}\s*(?:px|pixels?)\b",
            ),
        ),
        KeywordCategory(
            name="Electrical",
            keywords=("voltage", "amperage", "circuit breaker", "conduit"),
            patterns=(
                r"\b\d{3}\s*(?:v|vac|volts?)\b",
                r"\b\d+\s*(?:a|amp|amps)\s+(?:circuit|breaker|service)s?\b",
                r"\bpanel\s*boards?\b",
            ),
        ),
        KeywordCategory(
            name="Structural",
            keywords=("rigging", "steel", "i beam", "anchor", "dead load"),
            patterns=(
                r"\b\d[\d,]*\s*(?:lbs?|pounds)\b",
                r"\bstructural\s+(?:steel|engineer|calculations?)\b",
                r"\bseismic\b",
            ),
        ),
        KeywordCategory(
            name="Installation",
            keywords=("crane", "lift", "scaffolding", "commissioning"),
            patterns=(
                r"\binstall(?:ation|ed|ing|er)?\b",
                r"\bsite\s+(?:survey|visit|walk)s?\b",
            ),
        ),
        KeywordCategory(
            name="Control/Data",
            keywords=("fiber", "hdmi", "processor", "media player"),
            patterns=(
                r"\bcat\s*6a?\b",
                r"\bsingle[-\s]mode\b",
                r"\bcontrol\s+(?:room|system|software)\b",
            ),
        ),
        KeywordCategory(
            name="Permits",
            keywords=("building code", "zoning", "fire marshal"),
            patterns=(
                r"\bpermits?\b",
                r"\b(?:nec|ibc|ul\s*48)\b",
            ),
        ),
        KeywordCategory(
            name="Commercial",
            keywords=("pricing", "bid", "rfp", "sow", "warranty"),
            patterns=(
                r"\bbid\s+(?:bond|security)\b",
                r"\bunit\s+pric(?:e|es|ing)\b",
                r"\blump\s+sum\b",
            ),
        ),
    ),
    risk_buckets=(
        RiskBucket("Liquidated Damages", (r"\bliquidated\s+damages\b", r"\bpenalt(?:y|ies)\b")),
        RiskBucket("Performance Bond", (r"\bperformance\s+bond\b", r"\bpayment\s+bond\b", r"\bsurety\b")),
        RiskBucket("Payment Terms", (r"\bpayment\s+terms?\b", r"\bnet\s*\d{2}\b", r"\bprogress\s+payments?\b")),
        RiskBucket("Retainage", (r"\bretainage\b", r"\bretention\s+of\b")),
        RiskBucket("Change Order", (r"\bchange\s+orders?\b",)),
        RiskBucket("Force Majeure", (r"\bforce\s+majeure\b",)),
        RiskBucket("Indemnification", (r"\bindemnif\w*", r"\bhold\s+harmless\b")),
        RiskBucket("Insurance", (r"\binsurance\b", r"\badditional\s+insured\b")),
        RiskBucket("Termination", (r"\bterminat(?:e|ed|ion)\b",)),
        RiskBucket("Dispute Resolution", (r"\barbitration\b", r"\bmediation\b", r"\bdispute\s+resolution\b")),
    ),
    boosters=(
        Booster("dollar amount", r"\$\s?\d[\d,]*(?:\.\d{2})?"),
        Booster("dimension", r"\b\d+(?:\.\d+)?\s*(?:'|ft|feet)\s*(?:h|w)?\s*[x×]\s*\d+(?:\.\d+)?\s*(?:'|ft|feet)\s*(?:h|w)?"),
        Booster("millimeter spec", r"\b\d+(?:\.\d+)?\s*mm\b"),
        Booster("brightness value", r"\b\d[\d,]*\s*(?:nits?|cd/m2|cd/m²)\b"),
        Booster("led display", r"\bled\b[^.\n]{0,40}?\b(?:displays?|screens?|boards?|walls?)\b"),
        Booster("phase marker", r"\bphase\s+(?:\d+|[ivx]+|one|two|three)\b"),
        Booster("year marker", r"\b(?:19|20)\d{2}\b"),
    ),
    drawing_vocabulary=(
        r"\bscale\b",
        r"\bdetail\b",
        r"\belevation\b",
        r"\bsection\b",
        r"\bplan\b",
        r"\bsheet\s+\d+\s+of\s+\d+\b",
        r"\bav[-\s]?\d{1,3}(?:\.\d{1,2})?\b",
    ),
)


def load_rules(path: Optional[str] = None) -> ClassifierRules:
    """
    Load a rule set from JSON, or return DEFAULT_RULES when no path is
    configured. Called once when a classifier is built without explicit
    rules.
    """
    path = path or config.classifier.rules_path
    if not path:
        return DEFAULT_RULES

    rules_file = Path(path)
    if not rules_file.exists():
        raise FileNotFoundError(f"Rule file not found: {rules_file}")

    with open(rules_file, "r", encoding="utf-8") as f:
        data = json.load(f)

    rules = ClassifierRules.from_dict(data)
    logger.info(
        "Loaded rule set from %s (%d categories, %d risk buckets, %d boosters)",
        rules_file, len(rules.categories), len(rules.risk_buckets), len(rules.boosters),
    )
    return rules
