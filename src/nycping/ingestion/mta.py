"""
Ingest subway alerts from the MTA GTFS-RT JSON feed
"""
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx

from nycping.core.entities import ContentItem, ContentType, TransitSeverity, UrgencyClass
from nycping.core.errors import SourceFetchError
from nycping.core.schemas import TransitAlertRecord
from nycping.core.scoring import classify_transit_alert
from nycping.ingestion.base import SourceAdapter, build_item
from nycping.services.config import CurationConfig

SUBWAY_ROUTES = frozenset({
    "1", "2", "3", "4", "5", "6", "7",
    "A", "C", "E", "B", "D", "F", "M", "G", "J", "Z", "L", "N", "Q", "R", "W", "S",
    "SIR",
})

_BRACKET_ROUTE_RE = re.compile(r"\[([A-Z0-9]{1,3})\]")
_TRAIN_ROUTE_RE = re.compile(r"\b([A-Z0-9]{1,3}) (?:train|line)s?\b", re.IGNORECASE)


def extract_affected_lines(text: str) -> List[str]:
    """Subway lines named as "[G]" or "G train" in alert text."""
    found = _BRACKET_ROUTE_RE.findall(text) + [m.upper() for m in _TRAIN_ROUTE_RE.findall(text)]
    lines = []
    for route in found:
        if route in SUBWAY_ROUTES and route not in lines:
            lines.append(route)
    return lines


def _translation(block: Optional[Dict[str, Any]]) -> str:
    if not block:
        return ""
    translations = block.get("translation") or []
    for t in translations:
        if t.get("language") in (None, "en"):
            return t.get("text", "")
    return translations[0].get("text", "") if translations else ""


def _epoch(value: Any) -> Optional[str]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).isoformat()


def flatten_entity(entity: Dict[str, Any]) -> Dict[str, Any]:
    """One GTFS-RT entity -> flat dict shaped like TransitAlertRecord."""
    alert = entity.get("alert") or {}
    periods = alert.get("active_period") or [{}]
    routes = [
        informed.get("route_id")
        for informed in alert.get("informed_entity") or []
        if informed.get("route_id")
    ]
    return {
        "id": entity.get("id"),
        "header": _translation(alert.get("header_text")),
        "description": _translation(alert.get("description_text")),
        "routes": routes,
        "active_start": _epoch(periods[0].get("start")),
        "active_end": _epoch(periods[-1].get("end")),
    }


def records_from_feed(payload: Dict[str, Any], cutoff: datetime) -> List[Any]:
    """Flattened alerts still active after `cutoff`. Malformed entities pass through raw."""
    records: List[Any] = []
    for entity in payload.get("entity") or []:
        if not isinstance(entity, dict):
            records.append(entity)
            continue
        try:
            record = flatten_entity(entity)
        except (AttributeError, TypeError, ValueError, OverflowError, OSError):
            # Left raw so validation reports it.
            records.append(entity)
            continue
        end = record.get("active_end")
        if end and datetime.fromisoformat(end) < cutoff:
            continue
        records.append(record)
    return records


_CONTENT_TYPE = {
    TransitSeverity.OUTAGE: ContentType.TRANSIT_OUTAGE,
    TransitSeverity.MAJOR: ContentType.TRANSIT_DELAY,
}


class MTAAlertsAdapter(SourceAdapter):
    schema = TransitAlertRecord

    def __init__(self, feed_url: str, name: str = "mta", timeout: float = 30.0, api_key: str | None = None):
        self.feed_url = feed_url
        self.name = name
        self.timeout = timeout
        self.api_key = api_key

    async def fetch_records(self, hours: int) -> List[Dict[str, Any]]:
        headers = {"x-api-key": self.api_key} if self.api_key else {}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, headers=headers) as client:
                resp = await client.get(self.feed_url)
                resp.raise_for_status()
                payload = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SourceFetchError(self.name, str(e)) from e

        if not isinstance(payload, dict):
            raise SourceFetchError(self.name, "unexpected feed shape")

        return records_from_feed(payload, datetime.now(timezone.utc) - timedelta(hours=hours))

    def to_item(self, record: TransitAlertRecord, config: CurationConfig, now: datetime) -> Optional[ContentItem]:
        classification = classify_transit_alert(record.header, record.description, config)
        content_type = _CONTENT_TYPE.get(classification.severity, ContentType.TRANSIT_ALERT)
        tags = record.routes or extract_affected_lines(f"{record.header} {record.description}")

        return build_item(
            config=config,
            source=self.name,
            external_id=record.id,
            content_type=content_type,
            title=record.header,
            body=record.description,
            created_at=now,
            tags=tags,
            starts_at=record.active_start,
            ends_at=record.active_end,
            severity=classification.severity,
            urgency=UrgencyClass.URGENT if classification.severity is TransitSeverity.OUTAGE else None,
        )
