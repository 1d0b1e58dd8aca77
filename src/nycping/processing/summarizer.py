from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Optional

from nycping.core.entities import (
    ContentItem,
    Digest,
    DigestEntry,
    DigestMode,
    ModuleId,
    UrgencyClass,
)
from nycping.core.schemas import EnhancedDigestContent
from nycping.processing.clustering import build_clusters

# Section order in the rendered email.
SECTION_ORDER = (
    ModuleId.TRANSIT,
    ModuleId.PARKING,
    ModuleId.WEATHER,
    ModuleId.NEWS,
    ModuleId.EVENTS,
    ModuleId.HOUSING,
    ModuleId.DEALS,
    ModuleId.FOOD,
)


def _summary(body: str, max_length: int = 280) -> str:
    body = " ".join(body.split())
    if len(body) <= max_length:
        return body
    return body[: max_length - 1].rsplit(" ", 1)[0] + "…"


def summarize_item(item: ContentItem, escalation: bool = False) -> DigestEntry:
    return DigestEntry(
        item_id=item.id,
        title=item.title.strip(),
        summary=_summary(item.body),
        module=item.module_id,
        url=item.url,
        is_escalation=escalation,
        is_urgent=item.urgency is UrgencyClass.URGENT,
    )


def build_digest(
    *,
    slot: str,
    day: date,
    items: Iterable[ContentItem],
    escalations: Iterable[str] = (),
    mode: DigestMode = DigestMode.STANDARD,
    enhanced: Optional[EnhancedDigestContent] = None,
) -> Digest:
    """
    Standard digest is the items grouped by module. In enhanced mode the
    briefing, story clusters and horizon notes are layered on top.
    """
    escalated = set(escalations)
    grouped: Dict[ModuleId, List[DigestEntry]] = defaultdict(list)
    ids = []
    for item in sorted(items, key=lambda i: -i.priority_score):
        grouped[item.module_id].append(summarize_item(item, item.id in escalated))
        ids.append(item.id)

    sections = {module: grouped[module] for module in SECTION_ORDER if grouped.get(module)}
    digest = Digest(slot=slot, day=day, mode=mode, sections=sections)

    if mode is DigestMode.ENHANCED and enhanced is not None:
        digest.briefing = enhanced.briefing.strip()
        digest.clusters = build_clusters(enhanced, ids)
        digest.horizon = [note.strip() for note in enhanced.horizon if note.strip()]

    return digest
