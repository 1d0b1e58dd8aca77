"""Shared fixtures and item factory"""

import itertools
from datetime import datetime, timedelta, timezone

import pytest

from nycping.core.entities import ContentItem, ContentType
from nycping.processing.dedup_key import generate_dedup_key
from nycping.services.config import CurationConfig
from nycping.services.database import Database

# 09:00 in New York (EDT), outside quiet hours
NOW = datetime(2026, 3, 10, 13, 0, tzinfo=timezone.utc)

_ids = itertools.count(1)
_DEFAULTS = CurationConfig()


def make_item(
    title: str = "City Council passes new bike lane plan",
    content_type: ContentType = ContentType.LOCAL_NEWS,
    source: str = "gothamist",
    **overrides,
) -> ContentItem:
    """Build a ContentItem with sensible defaults; any field can be overridden."""
    external_id = overrides.pop("external_id", str(next(_ids)))
    fields = dict(
        id=f"{source}:{external_id}",
        source=source,
        external_id=external_id,
        content_type=content_type,
        title=title,
        body=overrides.pop("body", f"{title}."),
        dedup_key=generate_dedup_key(content_type, title),
        urgency=_DEFAULTS.urgency_for(content_type),
        created_at=NOW - timedelta(minutes=10),
        priority_score=50.0,
        trust_tier=2,
    )
    fields.update(overrides)
    return ContentItem(**fields)


@pytest.fixture
def config() -> CurationConfig:
    return CurationConfig()


@pytest.fixture
def db(tmp_path) -> Database:
    return Database(str(tmp_path / "nycping.db"))
