"""
Module to score every content item
"""
import re
from dataclasses import dataclass, replace
from functools import lru_cache
from typing import Iterable, List, Optional, Sequence, Tuple

from nycping.core.entities import ContentItem, TransitSeverity
from nycping.processing.dedup_key import SimilarityFn, title_similarity
from nycping.services.config import CurationConfig


@dataclass(frozen=True)
class TransitClassification:
    severity: TransitSeverity
    score: float
    is_actionable: bool
    reason: str


@dataclass(frozen=True)
class SuppressionDecision:
    suppress: bool
    reason: str


@lru_cache(maxsize=64)
def _compile(patterns: Tuple[str, ...]) -> Tuple[re.Pattern, ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


def _first_match(text: str, patterns: Tuple[str, ...]) -> Optional[str]:
    for pattern in _compile(patterns):
        found = pattern.search(text)
        if found:
            return found.group(0)
    return None


def classify_transit_alert(title: str, body: str, config: CurationConfig) -> TransitClassification:
    """
    Severity for a transit alert. Suppression patterns (elevators, short
    delays, boarding boilerplate) always win and force a non-actionable
    `info` classification.
    """
    text = f"{title} {body}"
    scores = config.transit_severity_scores

    suppressed = _first_match(text, config.transit_suppression_patterns)
    if suppressed:
        severity = TransitSeverity.INFO
        return TransitClassification(severity, scores[severity], False, f"suppressed: {suppressed}")

    for severity, patterns in config.transit_severity_rules:
        matched = _first_match(text, patterns)
        if matched:
            return TransitClassification(
                severity, scores[severity], severity.is_actionable, f"matched: {matched}"
            )

    severity = TransitSeverity.INFO
    return TransitClassification(severity, scores[severity], False, "no severity signal")


def should_suppress_transit_alert(
    title: str,
    body: str,
    config: CurationConfig,
    existing: Sequence[Tuple[str, str]] = (),
    similarity: SimilarityFn = title_similarity,
) -> SuppressionDecision:
    """
    `existing` holds (title, body) of alerts already accepted; a new alert
    that looks like one of them but is less severe is suppressed.
    """
    classification = classify_transit_alert(title, body, config)
    if not classification.is_actionable:
        return SuppressionDecision(True, f"Low severity ({classification.severity.value})")

    for other_title, other_body in existing:
        other = classify_transit_alert(other_title, other_body, config)
        if (
            other.severity.rank > classification.severity.rank
            and similarity(title, other_title) >= config.similarity_threshold
        ):
            return SuppressionDecision(True, f"Similar to existing {other.severity.value} alert")

    return SuppressionDecision(False, "High-signal alert")


def keyword_signal(text: str, config: CurationConfig) -> float:
    """
    Multiplier from keyword lists: each matched domain group boosts,
    each off-topic keyword penalizes.
    """
    text = text.lower()
    groups = sum(
        1 for words in config.domain_keywords.values()
        if any(_contains_word(text, w) for w in words)
    )
    boost = min(groups * config.keyword_boost, config.max_keyword_boost)

    off_topic = sum(1 for w in config.off_topic_keywords if _contains_word(text, w))
    penalty = max(1.0 - off_topic * config.off_topic_penalty, config.min_penalty_factor)

    return (1.0 + boost) * penalty


def _contains_word(text: str, word: str) -> bool:
    return re.search(rf"(?<!\w){re.escape(word)}(?!\w)", text) is not None


def score(item: ContentItem, config: CurationConfig) -> float:
    """
    priorityScore in [0, 100]: trust-tier base x keyword signal, averaged
    with the content type's default priority, then severity and status
    change adjustments.
    """
    tiers = config.tier_base_scores
    base = tiers.get(item.trust_tier, min(tiers.values()) if tiers else 40.0)
    raw = base * keyword_signal(f"{item.title} {item.body}", config)

    default = config.default_priority.get(item.content_type, 40.0)
    value = (raw + default) / 2

    if item.severity is not None:
        value = max(value, config.transit_severity_scores.get(item.severity, 0.0))

    if item.status_changed:
        value += config.status_change_bonus

    return round(min(max(value, 0.0), 100.0), 2)


def score_items(items: Iterable[ContentItem], config: CurationConfig) -> List[ContentItem]:
    """
    Read-time scoring pass. Transit alerts are (re)classified so the
    severity and actionability reflect the current rule tables.
    """
    scored = []
    for item in items:
        if item.content_type.is_transit_alert:
            classification = classify_transit_alert(item.title, item.body, config)
            item = replace(item, severity=classification.severity)
        scored.append(replace(item, priority_score=score(item, config)))
    return scored

