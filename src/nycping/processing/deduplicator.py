"""
Dedup passes: per-source at ingestion, across sources at ingestion,
and across content types at digest assembly.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

from nycping.core.entities import ContentItem
from nycping.processing.dedup_key import (
    SimilarityFn,
    canonical_url,
    content_fingerprint,
    story_key,
    title_similarity,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Rejection:
    item: ContentItem
    duplicate_of: ContentItem
    reason: str


@dataclass
class DedupOutcome:
    accepted: List[ContentItem] = field(default_factory=list)
    rejected: List[Rejection] = field(default_factory=list)
    # Previously stored items that lost to a better representative.
    superseded: List[ContentItem] = field(default_factory=list)

    @property
    def accepted_ids(self) -> List[str]:
        return [item.id for item in self.accepted]


def _by_score(items: Iterable[ContentItem]) -> List[ContentItem]:
    return sorted(items, key=lambda i: (-i.priority_score, i.created_at, i.id))


def _in_window(item: ContentItem, now: datetime, window: timedelta) -> bool:
    return item.created_at >= now - window


class IngestionDeduplicator:
    """
    Same-source filter. A candidate is a duplicate when an item from the same
    source, seen in the trailing window, carries the same route/line/location
    tags and either the same dedup key or a near-identical title.
    """

    def __init__(
        self,
        window: timedelta = timedelta(hours=24),
        threshold: float = 0.8,
        similarity: SimilarityFn = title_similarity,
    ):
        self.window = window
        self.threshold = threshold
        self.similarity = similarity

    def _match(self, candidate: ContentItem, other: ContentItem) -> Optional[str]:
        if candidate.id == other.id:
            # Same upstream record: an update, handled by upsert.
            return None
        if candidate.source != other.source or candidate.content_type != other.content_type:
            return None
        if candidate.tags != other.tags:
            return None
        if candidate.dedup_key == other.dedup_key:
            return "exact_key_match"
        score = self.similarity(candidate.title, other.title)
        if score >= self.threshold:
            return f"similar_title_{score:.2f}"
        return None

    def filter(
        self,
        candidates: Sequence[ContentItem],
        existing: Sequence[ContentItem],
        now: datetime,
    ) -> DedupOutcome:
        outcome = DedupOutcome()
        recent = [item for item in existing if _in_window(item, now, self.window)]

        for candidate in _by_score(candidates):
            duplicate: Optional[Tuple[ContentItem, str]] = None
            for other in (*recent, *outcome.accepted):
                reason = self._match(candidate, other)
                if reason:
                    duplicate = (other, reason)
                    break

            if duplicate:
                other, reason = duplicate
                logger.debug(f"Ingestion duplicate: {candidate.title} ~ {other.id} ({reason})")
                outcome.rejected.append(Rejection(candidate, other, reason))
            else:
                outcome.accepted.append(candidate)

        logger.info(f"Ingestion dedup: {len(candidates)} -> {len(outcome.accepted)} items")
        return outcome


def preferred(a: ContentItem, b: ContentItem) -> ContentItem:
    """
    Winner between two duplicates from different sources: higher trust tier
    (lower number), then higher score, then earliest createdAt, then smallest id.
    """
    def rank(item: ContentItem):
        return (item.trust_tier, -item.priority_score, item.created_at, item.id)

    return a if rank(a) <= rank(b) else b


class CrossSourceDeduplicator:
    """
    Catches the same event reported by two outlets.
    """

    def __init__(
        self,
        window: timedelta = timedelta(hours=48),
        threshold: float = 0.8,
        similarity: SimilarityFn = title_similarity,
    ):
        self.window = window
        self.threshold = threshold
        self.similarity = similarity

    def match_reason(self, a: ContentItem, b: ContentItem) -> Optional[str]:
        if a.source == b.source:
            return None
        if a.dedup_key == b.dedup_key:
            return "exact_key_match"
        url_a, url_b = canonical_url(a.url), canonical_url(b.url)
        if url_a and url_a == url_b:
            return "same_url"
        score = self.similarity(a.title, b.title)
        if score >= self.threshold:
            return f"similar_title_{score:.2f}"
        fingerprint = content_fingerprint(a.title)
        if fingerprint and fingerprint == content_fingerprint(b.title):
            return "same_fingerprint"
        return None

    def filter(
        self,
        candidates: Sequence[ContentItem],
        existing: Sequence[ContentItem],
        now: datetime,
    ) -> DedupOutcome:
        outcome = DedupOutcome()
        recent = [item for item in existing if _in_window(item, now, self.window)]

        for candidate in _by_score(candidates):
            matches = [
                (other, reason)
                for other in (*recent, *outcome.accepted)
                if (reason := self.match_reason(candidate, other))
            ]
            winners = [other for other, _ in matches if preferred(candidate, other) is other]

            if winners:
                reason = next(r for o, r in matches if o is winners[0])
                logger.info(
                    f"Cross-source duplicate dropped: {candidate.source}/{candidate.title} "
                    f"(kept {winners[0].source}/{winners[0].id}, {reason})"
                )
                outcome.rejected.append(Rejection(candidate, winners[0], reason))
                continue

            for other, reason in matches:
                if other in outcome.accepted:
                    outcome.accepted.remove(other)
                    outcome.rejected.append(Rejection(other, candidate, reason))
                else:
                    outcome.superseded.append(other)
                logger.info(
                    f"Cross-source duplicate superseded: {other.source}/{other.id} "
                    f"by {candidate.source}/{candidate.title} ({reason})"
                )
            outcome.accepted.append(candidate)

        logger.info(f"Cross-source dedup: {len(candidates)} -> {len(outcome.accepted)} items")
        return outcome


def cross_type_dedup(
    items: Sequence[ContentItem],
    *,
    threshold: float = 0.8,
    fuzzy: bool = True,
    similarity: SimilarityFn = title_similarity,
) -> DedupOutcome:
    """
    Digest-assembly pass over every surviving item, in fixed family order
    (news > alerts > events > sample_sales > other). The highest-scored
    representative of each story survives; on equal score the earlier item
    in family order wins. Items from different sources also collide on a
    shared entity fingerprint.
    """
    ordered = sorted(
        items,
        key=lambda i: (i.content_type.family, -i.priority_score, i.created_at, i.id),
    )
    outcome = DedupOutcome()

    for item in ordered:
        key = story_key(item.title)
        fingerprint = content_fingerprint(item.title)
        match: Optional[Tuple[int, str]] = None
        for idx, kept in enumerate(outcome.accepted):
            if story_key(kept.title) == key:
                match = (idx, "same_story_key")
                break
            if fuzzy and similarity(item.title, kept.title) >= threshold:
                match = (idx, "similar_title")
                break
            if item.source != kept.source and fingerprint and fingerprint == content_fingerprint(kept.title):
                match = (idx, "same_fingerprint")
                break

        if match is None:
            outcome.accepted.append(item)
            continue

        idx, reason = match
        kept = outcome.accepted[idx]
        if item.priority_score > kept.priority_score:
            outcome.accepted[idx] = item
            outcome.rejected.append(Rejection(kept, item, reason))
            logger.debug(f"Cross-type: {item.id} replaces {kept.id} ({reason})")
        else:
            outcome.rejected.append(Rejection(item, kept, reason))
            logger.debug(f"Cross-type: {item.id} dropped for {kept.id} ({reason})")

    logger.info(f"Cross-type dedup: {len(items)} -> {len(outcome.accepted)} items")
    return outcome
