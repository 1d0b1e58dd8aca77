"""
Slot Router - places fresh items into one of the three daily slots.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, FrozenSet, List, Sequence

from nycping.core.entities import ContentItem, Eligibility, Slot, UrgencyClass
from nycping.processing.freshness import partition_fresh
from nycping.services.config import CurationConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeferredItem:
    item: ContentItem
    to_slot: Slot


@dataclass(frozen=True)
class SkippedItem:
    item: ContentItem
    reason: str


@dataclass
class SlotPlan:
    slot: Slot
    included: List[ContentItem] = field(default_factory=list)
    deferred: List[DeferredItem] = field(default_factory=list)
    skipped: List[SkippedItem] = field(default_factory=list)
    required_ids: FrozenSet[str] = frozenset()
    immediate: List[ContentItem] = field(default_factory=list)

    @property
    def counted_items(self) -> List[ContentItem]:
        """Items that count toward the slot minimum (batchable never does)."""
        return [item for item in self.included if not item.is_batchable]

    @property
    def has_required(self) -> bool:
        return any(
            item.id in self.required_ids and not item.is_batchable
            for item in self.included
        )


def _ranked(items: List[ContentItem]) -> List[ContentItem]:
    return sorted(items, key=lambda i: (-i.priority_score, i.created_at, i.id))


class SlotRouter:
    """
    Applies the eligibility matrix and per-slot capacities:
    required, preferred, allowed, fallback, then batchable leftovers;
    everything unplaced and not excluded is deferred to the next slot.
    """

    def __init__(self, config: CurationConfig):
        self.config = config

    def route(self, items: Sequence[ContentItem], slot: Slot, now: datetime) -> SlotPlan:
        capacity = self.config.slot_capacity[slot]
        plan = SlotPlan(slot=slot)

        usable, stale = partition_fresh(items, now, self.config.freshness_hours)
        plan.skipped.extend(SkippedItem(item, reason) for item, reason in stale)

        buckets: Dict[Eligibility, List[ContentItem]] = {e: [] for e in Eligibility}
        batchable: List[ContentItem] = []
        for item in usable:
            if not item.is_actionable:
                plan.skipped.append(SkippedItem(item, "non_actionable"))
                continue
            eligibility = self.config.eligibility_for(item.content_type, slot)
            if eligibility is Eligibility.EXCLUDED:
                plan.skipped.append(SkippedItem(item, "excluded_for_slot"))
            elif item.is_batchable and eligibility is not Eligibility.REQUIRED:
                batchable.append(item)
            else:
                buckets[eligibility].append(item)

        # 1. Required items go in regardless of capacity.
        required = _ranked(buckets[Eligibility.REQUIRED])
        plan.included.extend(required)
        plan.required_ids = frozenset(item.id for item in required)

        leftovers: List[ContentItem] = []

        def fill(candidates: List[ContentItem], limit: int) -> None:
            for item in _ranked(candidates):
                if len(plan.included) < limit:
                    plan.included.append(item)
                else:
                    leftovers.append(item)

        # 2-3. Preferred, then allowed, up to max capacity.
        fill(buckets[Eligibility.PREFERRED], capacity.max_items)
        fill(buckets[Eligibility.ALLOWED], capacity.max_items)

        # 4. Fallback-only items only to reach the minimum.
        fallback_limit = min(
            capacity.max_items,
            len(plan.included) + max(capacity.min_items - len(plan.counted_items), 0),
        )
        fill(buckets[Eligibility.FALLBACK], fallback_limit)

        # Batchable items only ever take leftover capacity.
        fill(batchable, capacity.max_items)

        # 5. Overflow rolls to the next chronological slot.
        next_slot = slot.next
        plan.deferred.extend(DeferredItem(item, next_slot) for item in leftovers)

        plan.immediate = [
            item for item in plan.included
            if item.urgency is UrgencyClass.URGENT
            and item.priority_score >= self.config.immediate_priority
        ]

        logger.info(
            f"[{slot.value}] routed {len(items)} items: included={len(plan.included)} "
            f"deferred={len(plan.deferred)} skipped={len(plan.skipped)}"
        )
        return plan


def select_immediate(
    items: Sequence[ContentItem],
    now: datetime,
    config: CurationConfig,
) -> List[ContentItem]:
    """Urgent, high-priority items that go out outside the slot schedule."""
    usable, _ = partition_fresh(items, now, config.freshness_hours)
    return _ranked([
        item for item in usable
        if item.is_actionable
        and item.urgency is UrgencyClass.URGENT
        and item.priority_score >= config.immediate_priority
    ])
