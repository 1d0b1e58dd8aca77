"""
Ingestion from local news RSS sources
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import feedparser
import httpx

from nycping.core.entities import ContentItem, ContentType
from nycping.core.errors import SourceFetchError
from nycping.core.schemas import NewsArticleRecord
from nycping.ingestion.base import SourceAdapter, build_item
from nycping.services.config import CurationConfig

logger = logging.getLogger(__name__)

BREAKING_MARKERS = ("breaking", "developing", "just in")


class RSSAdapter(SourceAdapter):
    schema = NewsArticleRecord

    def __init__(
        self,
        feed_urls: List[str],
        source_name: str,
        content_type: ContentType = ContentType.LOCAL_NEWS,
        timeout: float = 30.0,
    ):
        self.feed_urls = feed_urls
        self.name = source_name
        self.content_type = content_type
        self.timeout = timeout

    async def fetch_records(self, hours: int) -> List[Dict[str, Any]]:
        cutoff = datetime.now(timezone.utc) - timedelta(hours=hours)
        records: List[Dict[str, Any]] = []
        failures = 0

        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            for url in self.feed_urls:
                try:
                    resp = await client.get(url)
                    resp.raise_for_status()
                except httpx.HTTPError as e:
                    failures += 1
                    logger.warning(f"[{self.name}] feed {url} failed: {e}")
                    continue

                feed = feedparser.parse(resp.text)
                for entry in feed.entries:
                    published = None
                    if getattr(entry, "published_parsed", None):
                        published = datetime(*entry.published_parsed[:6], tzinfo=timezone.utc)

                    if published and published < cutoff:
                        continue

                    records.append({
                        "guid": entry.get("id") or entry.get("link"),
                        "title": entry.get("title", ""),
                        "summary": entry.get("summary", ""),
                        "link": entry.get("link"),
                        "published": published,
                    })

        if self.feed_urls and failures == len(self.feed_urls):
            raise SourceFetchError(self.name, "all feeds failed")
        return records

    def to_item(self, record: NewsArticleRecord, config: CurationConfig, now: datetime) -> Optional[ContentItem]:
        content_type = self.content_type
        if any(marker in record.title.lower() for marker in BREAKING_MARKERS):
            content_type = ContentType.BREAKING_NEWS

        return build_item(
            config=config,
            source=self.name,
            external_id=record.guid,
            content_type=content_type,
            title=record.title,
            body=record.summary,
            created_at=min(record.published or now, now),
            url=record.link,
        )
