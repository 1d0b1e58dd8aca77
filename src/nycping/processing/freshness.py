from datetime import datetime, timedelta
from typing import Iterable, List, Mapping, Tuple

from nycping.core.entities import ContentItem, UrgencyClass


def freshness_window(item: ContentItem, windows: Mapping[UrgencyClass, float]) -> timedelta:
    return timedelta(hours=windows[item.urgency])


def is_fresh(item: ContentItem, now: datetime, windows: Mapping[UrgencyClass, float]) -> bool:
    """Age equal to the window is still fresh."""
    return now - item.created_at <= freshness_window(item, windows)


def is_expired(item: ContentItem, now: datetime) -> bool:
    """An item past its endsAt is gone whatever its urgency."""
    return item.ends_at is not None and item.ends_at < now


def partition_fresh(
    items: Iterable[ContentItem],
    now: datetime,
    windows: Mapping[UrgencyClass, float],
) -> Tuple[List[ContentItem], List[Tuple[ContentItem, str]]]:
    """
    Split into (usable, skipped). Stale and expired items are skipped, never deferred.
    """
    usable, skipped = [], []
    for item in items:
        if is_expired(item, now):
            skipped.append((item, "expired"))
        elif not is_fresh(item, now, windows):
            skipped.append((item, "stale"))
        else:
            usable.append(item)
    return usable, skipped
