"""
classifier.py — Multi-signal relevance scoring for RFP chunks.

Each chunk is scored on its own text only, so classification is
embarrassingly parallel and byte-for-byte reproducible. No embeddings,
no model: a chunk's score is the sum of five independent signals.

  1. Weighted keyword density. Must-keep phrases (+6), signal keywords
     (+2), noise keywords (-1.8) and mandatory/deadline language (+1) are
     totalled and, when the total is positive, divided by sqrt(length).
     A 4,000 char general-conditions section should not beat a 300 char
     display schedule just by being long. Negative totals are left alone
     so boilerplate suppression does not get diluted.
  2. Category bonus. Eight domain categories, each worth up to 4 from
     keywords and up to 2.5 from patterns, not density normalized.
  3. Risk bonus. Ten commercial-risk buckets, each worth up to 3.
  4. Boosters. Structural evidence (dollar amounts, 10'H x 20'W, 6mm,
     5000 nits, phase/year markers), +0.7 per distinct booster.
  5. Drawing bonus. Short chunks with drawing-sheet vocabulary get +1.4
     and a flag the UI uses to offer a page preview.

Any must-keep phrase forces `relevant` regardless of score. That override
and the reason ordering (must-keep, then mandatory/deadline language,
then everything else) are what downstream reviewers rely on.
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
from typing import Iterator, List, Optional, Pattern, Sequence, Tuple

from rfp_extraction.chunking import to_chunk_title
from rfp_extraction.config import ClassifierConfig, config
from rfp_extraction.rules import ClassifierRules, load_rules
from rfp_extraction.schemas import Chunk, ChunkScore

logger = logging.getLogger(__name__)

_FOLD_RE = re.compile(r"[^0-9a-z]+")
_SPACE_RE = re.compile(r"\s+")

# Module-level default classifier, built on first use
_default_classifier: Optional["RelevanceClassifier"] = None


def _fold(text: str) -> str:
    """Lowercase, punctuation to spaces, whitespace collapsed."""
    return _FOLD_RE.sub(" ", text.lower()).strip()


def _keyword_re(keyword: str) -> Pattern[str]:
    return re.compile(r"(?<![0-9a-z])" + re.escape(_fold(keyword)) + r"(?![0-9a-z])")


class RelevanceClassifier:
    """
    Scores chunk text against an injected rule set and weight table.

    Usage:
        classifier = RelevanceClassifier()
        result = classifier.score("Division 26 electrical ...")
        result.label  # "relevant"
    """

    def __init__(
        self,
        rules: Optional[ClassifierRules] = None,
        weights: Optional[ClassifierConfig] = None,
    ):
        self.rules = rules or load_rules()
        self.weights = weights or config.classifier

        self._must_keep = [(kw, _keyword_re(kw)) for kw in self.rules.must_keep]
        self._signal = [(kw, _keyword_re(kw)) for kw in self.rules.signal]
        self._noise = [(kw, _keyword_re(kw)) for kw in self.rules.noise]
        self._mandatory = [_keyword_re(kw) for kw in self.rules.mandatory_language]
        self._deadline = [_keyword_re(kw) for kw in self.rules.deadline_language]
        self._categories = [
            (
                category.name,
                [(kw, _keyword_re(kw)) for kw in category.keywords],
                [re.compile(p, re.IGNORECASE) for p in category.patterns],
            )
            for category in self.rules.categories
        ]
        self._risk_buckets = [
            (bucket.name, [re.compile(p, re.IGNORECASE) for p in bucket.patterns])
            for bucket in self.rules.risk_buckets
        ]
        self._boosters = [
            (booster.name, re.compile(booster.pattern, re.IGNORECASE))
            for booster in self.rules.boosters
        ]
        self._drawing = [re.compile(p, re.IGNORECASE) for p in self.rules.drawing_vocabulary]

    def score(self, text: str) -> ChunkScore:
        """Score one chunk of text. Never raises; empty text is irrelevant."""
        w = self.weights
        text = text or ""
        folded = _fold(text)
        hay = _SPACE_RE.sub(" ", text.lower()).strip()

        matched: List[str] = []
        must_keep_reasons: List[str] = []
        language_reasons: List[str] = []
        other_reasons: List[str] = []

        def _note_keyword(keyword: str) -> None:
            if keyword not in matched:
                matched.append(keyword)

        # ── 1. weighted keyword total ──
        raw_total = 0.0
        must_keep_hit = False

        for keyword, regex in self._must_keep:
            count = len(regex.findall(folded))
            if count:
                must_keep_hit = True
                raw_total += w.must_keep_weight * count
                _note_keyword(keyword)
                must_keep_reasons.append(f'must-keep: "{keyword}"')

        for keyword, regex in self._signal:
            count = len(regex.findall(folded))
            if count:
                raw_total += w.signal_weight * count
                _note_keyword(keyword)
                other_reasons.append(f'signal: "{keyword}"')

        for keyword, regex in self._noise:
            count = len(regex.findall(folded))
            if count:
                raw_total += w.noise_weight * count
                _note_keyword(keyword)
                other_reasons.append(f'noise: "{keyword}"')

        if any(regex.search(folded) for regex in self._mandatory):
            raw_total += w.language_weight
            language_reasons.append("mandatory language")
        if any(regex.search(folded) for regex in self._deadline):
            raw_total += w.language_weight
            language_reasons.append("submission/deadline language")

        if raw_total > 0:
            density = raw_total / math.sqrt(max(len(hay), 1))
        else:
            density = raw_total

        # ── 2. categories ──
        category_hits: List[str] = []
        category_score = 0.0
        for name, keywords, patterns in self._categories:
            keyword_hits = 0
            for keyword, regex in keywords:
                if regex.search(folded):
                    keyword_hits += 1
                    _note_keyword(keyword)
            pattern_hits = sum(1 for regex in patterns if regex.search(hay))
            if keyword_hits or pattern_hits:
                category_hits.append(name)
                category_score += min(w.category_keyword_cap, keyword_hits * w.category_keyword_weight)
                category_score += min(w.category_pattern_cap, pattern_hits * w.category_pattern_weight)
                other_reasons.append(f"category: {name}")

        # ── 3. risk buckets ──
        risk_hits: List[str] = []
        risk_score = 0.0
        for name, patterns in self._risk_buckets:
            occurrences = sum(len(regex.findall(hay)) for regex in patterns)
            if occurrences:
                risk_hits.append(name)
                risk_score += min(w.risk_bucket_cap, occurrences * w.risk_pattern_weight)
                other_reasons.append(f"risk: {name}")

        # ── 4. boosters ──
        booster_hits = [name for name, regex in self._boosters if regex.search(hay)]
        booster_score = len(booster_hits) * w.booster_weight
        for name in booster_hits:
            other_reasons.append(f"booster: {name}")

        # ── 5. drawing sheet ──
        drawing_candidate = (
            len(text.strip()) < w.drawing_max_chars
            and any(regex.search(hay) for regex in self._drawing)
        )
        # Flag is kept for the UI, but noise-led text gets no bonus
        drawing_bonus = w.drawing_bonus if drawing_candidate and raw_total >= 0 else 0.0
        if drawing_candidate:
            other_reasons.append("drawing sheet candidate")

        score = round(density + category_score + risk_score + booster_score + drawing_bonus, 2)

        if score >= w.relevant_threshold or must_keep_hit:
            label = "relevant"
        elif score >= w.maybe_threshold:
            label = "maybe"
        else:
            label = "irrelevant"

        reasons = (must_keep_reasons + language_reasons + other_reasons)[: w.max_reasons]

        return ChunkScore(
            label=label,
            score=score,
            reason=", ".join(reasons) or "low keyword signal",
            category_hits=category_hits,
            risk_hits=risk_hits,
            matched_keywords=matched[: w.max_matched_keywords],
            booster_hits=booster_hits,
            drawing_candidate=drawing_candidate,
        )

    def build_chunk(self, text: str, index: int) -> Chunk:
        """Score `text` and wrap it as the chunk at 0-based `index`."""
        result = self.score(text)
        chunk = Chunk(
            id=f"chunk-{index + 1}",
            title=to_chunk_title(text, index),
            text=text,
            **result.model_dump(),
        )
        logger.debug("%s [%s] score=%.2f (%s)", chunk.id, chunk.label, chunk.score, chunk.reason)
        return chunk


def get_default_classifier() -> RelevanceClassifier:
    """Lazy-build and cache a classifier over the configured rule set."""
    global _default_classifier
    if _default_classifier is None:
        _default_classifier = RelevanceClassifier()
    return _default_classifier


def score_rfp_chunk(text: str, classifier: Optional[RelevanceClassifier] = None) -> ChunkScore:
    return (classifier or get_default_classifier()).score(text)


def iter_chunk_batches(
    texts: Sequence[str],
    classifier: Optional[RelevanceClassifier] = None,
    batch_size: Optional[int] = None,
) -> Iterator[List[Chunk]]:
    """
    Classify chunk texts lazily, `batch_size` at a time.

    A caller that wants to stop early just stops iterating; nothing is
    held open between batches.
    """
    classifier = classifier or get_default_classifier()
    batch_size = batch_size or classifier.weights.yield_every

    batch: List[Chunk] = []
    for index, text in enumerate(texts):
        batch.append(classifier.build_chunk(text, index))
        if len(batch) >= batch_size:
            yield batch
            batch = []
    if batch:
        yield batch


def classify_chunks(
    texts: Sequence[str],
    classifier: Optional[RelevanceClassifier] = None,
) -> List[Chunk]:
    """Score every chunk text and return Chunk models in document order."""
    chunks: List[Chunk] = []
    for batch in iter_chunk_batches(texts, classifier):
        chunks.extend(batch)
    _log_summary(chunks)
    return chunks


async def aclassify_chunks(
    texts: Sequence[str],
    classifier: Optional[RelevanceClassifier] = None,
) -> List[Chunk]:
    """
    Same result as classify_chunks, but hands control back to the event
    loop between batches so a server stays responsive on 500-page RFPs.
    """
    chunks: List[Chunk] = []
    for batch in iter_chunk_batches(texts, classifier):
        chunks.extend(batch)
        await asyncio.sleep(0)
    _log_summary(chunks)
    return chunks


def label_counts(chunks: Sequence[Chunk]) -> Tuple[int, int, int]:
    """(relevant, maybe, irrelevant) counts."""
    relevant = sum(1 for c in chunks if c.label == "relevant")
    maybe = sum(1 for c in chunks if c.label == "maybe")
    return relevant, maybe, len(chunks) - relevant - maybe


def _log_summary(chunks: Sequence[Chunk]) -> None:
    relevant, maybe, irrelevant = label_counts(chunks)
    logger.info(
        "Classified %d chunks: %d relevant, %d maybe, %d irrelevant",
        len(chunks), relevant, maybe, irrelevant,
    )
