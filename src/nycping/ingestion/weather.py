"""
Ingestion from the National Weather Service gridpoint forecast (Central Park)
"""
import logging
import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import httpx

from nycping.core.entities import ContentItem, ContentType
from nycping.core.errors import SourceFetchError
from nycping.core.schemas import ForecastPeriodRecord
from nycping.ingestion.base import SourceAdapter, build_item
from nycping.services.config import CurationConfig
from nycping.services.scheduler import local_day

logger = logging.getLogger(__name__)

NWS_FORECAST_URL = "https://api.weather.gov/gridpoints/OKX/33,37/forecast"
USER_AGENT = "NYC Ping weather (nycping.com)"

SNOW_WORDS = ("snow", "flurries", "wintry mix", "sleet", "freezing rain")
SIGNIFICANT_SNOW_INCHES = 0.5
SNOW_LOOKAHEAD = timedelta(hours=48)

_RANGE_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(?:to|-)\s*(\d+(?:\.\d+)?)\s*inch")
_UP_TO_RE = re.compile(r"up to (\d+(?:\.\d+)?)\s*inch")
_AROUND_RE = re.compile(r"around (\d+(?:\.\d+)?)\s*inch")
_INCHES_RE = re.compile(r"(\d+(?:\.\d+)?)\s*inch")


def parse_snow_amount(text: str) -> Optional[Tuple[float, str]]:
    """
    Estimated inches and a short description, or None when the forecast
    does not mention snow. Ranges use the midpoint; "up to" is discounted.
    """
    text = (text or "").lower()
    if not any(word in text for word in SNOW_WORDS):
        return None

    if match := _RANGE_RE.search(text):
        low, high = float(match.group(1)), float(match.group(2))
        return (low + high) / 2, f"{match.group(1)}-{match.group(2)} inches"
    if match := _UP_TO_RE.search(text):
        return float(match.group(1)) * 0.75, f"up to {match.group(1)} inches"
    if match := _AROUND_RE.search(text):
        return float(match.group(1)), f"around {match.group(1)} inches"
    if match := _INCHES_RE.search(text):
        return float(match.group(1)), f"{match.group(1)} inches"
    if "dusting" in text or "coating" in text:
        return 0.25, "dusting"
    if "trace" in text or "light snow" in text:
        return 0.1, "trace amounts"
    return 0.25, "possible snow"


def flatten_period(period: Dict[str, Any]) -> Dict[str, Any]:
    """One NWS forecast period -> flat dict shaped like ForecastPeriodRecord."""
    precipitation = period.get("probabilityOfPrecipitation") or {}
    return {
        "number": period.get("number"),
        "name": period.get("name"),
        "start_time": period.get("startTime"),
        "end_time": period.get("endTime"),
        "is_daytime": period.get("isDaytime", True),
        "temperature": period.get("temperature"),
        "temperature_unit": period.get("temperatureUnit") or "F",
        "short_forecast": period.get("shortForecast"),
        "detailed_forecast": period.get("detailedForecast") or "",
        "precipitation_chance": precipitation.get("value"),
    }


def records_from_forecast(payload: Dict[str, Any]) -> List[Any]:
    records: List[Any] = []
    for period in (payload.get("properties") or {}).get("periods") or []:
        try:
            records.append(flatten_period(period))
        except AttributeError:
            records.append(period)
    return records


class NWSForecastAdapter(SourceAdapter):
    """
    The current forecast period becomes the daily weather item; any period in
    the next two days with significant snow becomes a weather advisory.
    """
    schema = ForecastPeriodRecord

    def __init__(self, url: str = NWS_FORECAST_URL, name: str = "nws", timeout: float = 30.0):
        self.url = url
        self.name = name
        self.timeout = timeout

    async def fetch_records(self, hours: int) -> List[Dict[str, Any]]:
        headers = {"User-Agent": USER_AGENT, "Accept": "application/geo+json"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, headers=headers) as client:
                resp = await client.get(self.url)
                resp.raise_for_status()
                payload = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SourceFetchError(self.name, str(e)) from e

        if not isinstance(payload, dict):
            raise SourceFetchError(self.name, "unexpected forecast shape")
        records = records_from_forecast(payload)
        logger.info(f"[{self.name}] fetched {len(records)} forecast periods")
        return records

    def to_item(self, record: ForecastPeriodRecord, config: CurationConfig, now: datetime) -> Optional[ContentItem]:
        snow = parse_snow_amount(record.detailed_forecast or record.short_forecast)
        day = local_day(record.start_time, config.timezone)

        if record.number == 1:
            return self._daily(record, config, now, day.isoformat(), snow)

        significant = snow is not None and snow[0] >= SIGNIFICANT_SNOW_INCHES
        if significant and record.start_time <= now + SNOW_LOOKAHEAD:
            part = "day" if record.is_daytime else "night"
            return build_item(
                config=config,
                source=self.name,
                external_id=f"snow-{day.isoformat()}-{part}",
                content_type=ContentType.WEATHER_ADVISORY,
                title=f"Snow expected {record.name}: {snow[1]}",
                body=record.detailed_forecast or record.short_forecast,
                created_at=now,
                starts_at=record.start_time,
                ends_at=record.end_time,
            )
        return None

    def _daily(
        self,
        record: ForecastPeriodRecord,
        config: CurationConfig,
        now: datetime,
        day: str,
        snow: Optional[Tuple[float, str]],
    ) -> ContentItem:
        # Headline fields only; NWS rewrites the detailed text every hour.
        extreme = "high" if record.is_daytime else "low"
        title = (
            f"{record.name}: {record.short_forecast}, "
            f"{extreme} of {record.temperature}°{record.temperature_unit}"
        )
        body = []
        if record.precipitation_chance:
            body.append(f"{record.precipitation_chance}% chance of precipitation.")
        if snow is not None:
            body.append(f"Snow: {snow[1]}.")

        return build_item(
            config=config,
            source=self.name,
            external_id=f"forecast-{day}",
            content_type=ContentType.WEATHER_DAILY,
            title=title,
            body=" ".join(body) or f"{record.short_forecast}.",
            created_at=now,
            starts_at=record.start_time,
            ends_at=record.end_time,
        )
