"""
Ingestion of alternate side parking status from the NYC 311 service calendar
"""
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

import httpx

from nycping.core.entities import ContentItem, ContentType
from nycping.core.errors import SourceFetchError
from nycping.core.schemas import ASPDayRecord
from nycping.ingestion.base import SourceAdapter, build_item
from nycping.services.config import CurationConfig
from nycping.services.scheduler import NYC_TZ, local_day

logger = logging.getLogger(__name__)

NYC_311_CALENDAR_URL = "https://portal.311.nyc.gov/home-cal/"
ASP_CALENDAR_NAME = "Alternate Side Parking"


def asp_record_from_calendar(payload: Dict[str, Any], day: date) -> Optional[Dict[str, Any]]:
    """
    The ASP entry of one day's 311 calendar, flattened. A holiday or
    emergency status overrides the weekday/weekend default.
    """
    entry = next(
        (
            r for r in payload.get("results") or []
            if isinstance(r, dict) and (r.get("CalendarType") or {}).get("Name") == ASP_CALENDAR_NAME
        ),
        None,
    )
    if entry is None:
        return None

    detail = (entry.get("CalendarDetailStatus") or "").strip()
    if detail:
        status = detail
    elif day.weekday() == 6:
        status = entry.get("SundayRecordName") or "NOT IN EFFECT"
    elif day.weekday() == 5:
        status = entry.get("SaturdayRecordName") or "IN EFFECT"
    else:
        status = entry.get("WeekDayRecordName") or "IN EFFECT"

    return {
        "day": day.isoformat(),
        "status": status,
        "suspended": detail.upper() == "SUSPENDED",
        "reason": entry.get("CalendarDetailName") or "",
        "message": entry.get("CalendarDetailMessage") or "",
    }


def _start_of(day: date, tz: str) -> datetime:
    return datetime.combine(day, time.min, tzinfo=ZoneInfo(tz)).astimezone(timezone.utc)


class ASPStatusAdapter(SourceAdapter):
    """
    Today's status feeds the morning digest; tomorrow's feeds the evening one.
    """
    schema = ASPDayRecord

    def __init__(
        self,
        url: str = NYC_311_CALENDAR_URL,
        name: str = "nyc_311",
        timeout: float = 30.0,
        tz: str = NYC_TZ,
    ):
        self.url = url
        self.name = name
        self.timeout = timeout
        self.tz = tz

    async def fetch_records(self, hours: int) -> List[Dict[str, Any]]:
        today = local_day(datetime.now(timezone.utc), self.tz)
        headers = {"User-Agent": "NYC Ping ASP status (nycping.com)", "Accept": "application/json"}
        records = []

        try:
            async with httpx.AsyncClient(timeout=self.timeout, headers=headers) as client:
                for day in (today, today + timedelta(days=1)):
                    resp = await client.get(self.url, params={"today": day.isoformat()})
                    resp.raise_for_status()
                    payload = resp.json()
                    if not isinstance(payload, dict):
                        raise SourceFetchError(self.name, "unexpected calendar shape")

                    record = asp_record_from_calendar(payload, day)
                    if record is None:
                        logger.warning(f"[{self.name}] no ASP entry for {day}")
                        continue
                    records.append(record)
        except (httpx.HTTPError, ValueError) as e:
            raise SourceFetchError(self.name, str(e)) from e

        return records

    def to_item(self, record: ASPDayRecord, config: CurationConfig, now: datetime) -> Optional[ContentItem]:
        today = local_day(now, config.timezone)
        if record.day == today:
            content_type, when, external_id = ContentType.ASP_STATUS, "today", f"asp-{record.day}"
        elif record.day == today + timedelta(days=1):
            content_type, when, external_id = ContentType.ASP_TOMORROW, "tomorrow", f"asp-tomorrow-{record.day}"
        else:
            return None

        if record.suspended:
            title = f"Alternate side parking suspended {when}"
            if record.reason:
                title += f" for {record.reason}"
        else:
            title = f"Alternate side parking {record.status.lower()} {when}"

        body = record.message or (
            "No need to move your car." if record.suspended
            else "Check the street signs before you park."
        )
        # Tomorrow's heads-up lapses once that day begins.
        ends_day = record.day + timedelta(days=1) if content_type is ContentType.ASP_STATUS else record.day

        return build_item(
            config=config,
            source=self.name,
            external_id=external_id,
            content_type=content_type,
            title=title,
            body=body,
            created_at=now,
            ends_at=_start_of(ends_day, config.timezone),
        )
