"""
Base classes for Ingestion
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Type

from pydantic import BaseModel

from nycping.core.entities import ContentItem, ContentType, TransitSeverity, UrgencyClass
from nycping.processing.dedup_key import generate_dedup_key
from nycping.services.config import CurationConfig
from nycping.services.content_store import item_id_for


def build_item(
    *,
    config: CurationConfig,
    source: str,
    external_id: str,
    content_type: ContentType,
    title: str,
    body: str,
    created_at: datetime,
    url: Optional[str] = None,
    tags: Iterable[str] = (),
    starts_at: Optional[datetime] = None,
    ends_at: Optional[datetime] = None,
    urgency: Optional[UrgencyClass] = None,
    severity: Optional[TransitSeverity] = None,
) -> ContentItem:
    """Fill in the derived fields (id, dedup key, urgency, trust tier)."""
    return ContentItem(
        id=item_id_for(source, external_id),
        source=source,
        external_id=external_id,
        content_type=content_type,
        title=title.strip(),
        body=body.strip(),
        dedup_key=generate_dedup_key(content_type, title),
        urgency=urgency or config.urgency_for(content_type),
        created_at=created_at,
        severity=severity,
        tags=frozenset(t.strip().upper() for t in tags if t and t.strip()),
        trust_tier=config.trust_tier_for(source),
        url=url,
        starts_at=starts_at,
        ends_at=ends_at,
    )


class SourceAdapter(ABC):
    """
    Base interface for all ingestion sources.
    """

    name: str
    schema: Type[BaseModel]

    @abstractmethod
    async def fetch_records(self, hours: int) -> List[Dict[str, Any]]:
        """
        Fetch raw records published within the last N hours.
        Transport failures raise SourceFetchError; record shape is not checked here.
        """
        raise NotImplementedError

    @abstractmethod
    def to_item(self, record: BaseModel, config: CurationConfig, now: datetime) -> Optional[ContentItem]:
        """Turn one validated record into a ContentItem, or None to skip it."""
        raise NotImplementedError
