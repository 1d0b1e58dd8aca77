"""
Pydantic schemas for raw scraper records and LLM output.
"""
from datetime import date, datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


def _as_utc(value):
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class _Record(BaseModel):
    @field_validator("*", mode="before")
    @classmethod
    def _strip_strings(cls, value):
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("*")
    @classmethod
    def _assume_utc(cls, value):
        # Feeds sometimes drop the offset; naive times are read as UTC.
        return _as_utc(value)


class TransitAlertRecord(_Record):
    """
    One alert entity flattened out of the MTA GTFS-RT JSON feed.
    """
    id: str = Field(..., min_length=1)
    header: str = Field(..., min_length=1)
    description: str = ""
    routes: List[str] = []
    active_start: Optional[datetime] = None
    active_end: Optional[datetime] = None


class NewsArticleRecord(_Record):
    guid: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    summary: str = ""
    link: Optional[str] = None
    published: Optional[datetime] = None


class HousingLotteryRecord(_Record):
    lottery_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    neighborhood: str = ""
    borough: str = ""
    units: Optional[int] = Field(default=None, ge=0)
    deadline: Optional[datetime] = None
    url: Optional[str] = None


class SampleSaleRecord(_Record):
    id: str = Field(..., min_length=1)
    brand: str = Field(..., min_length=1)
    location: str = ""
    discount: str = ""
    starts: Optional[datetime] = None
    ends: Optional[datetime] = None
    url: Optional[str] = None

    @field_validator("ends")
    @classmethod
    def _ends_after_start(cls, value, info):
        starts = info.data.get("starts")
        if value is not None and starts is not None and _as_utc(value) < _as_utc(starts):
            raise ValueError("sale ends before it starts")
        return value


class ForecastPeriodRecord(_Record):
    """
    One NWS forecast period ("Today", "Tonight", "Wednesday", ...).
    """
    number: int = Field(..., ge=1)
    name: str = Field(..., min_length=1)
    start_time: datetime
    end_time: Optional[datetime] = None
    is_daytime: bool = True
    temperature: int
    temperature_unit: str = "F"
    short_forecast: str = Field(..., min_length=1)
    detailed_forecast: str = ""
    precipitation_chance: Optional[int] = Field(default=None, ge=0, le=100)


class ASPDayRecord(_Record):
    day: date
    status: str = Field(..., min_length=1)
    suspended: bool = False
    reason: str = ""
    message: str = ""


class ClusterOutput(BaseModel):
    title: str
    summary: str = ""
    item_ids: List[str] = []


class EnhancedDigestContent(BaseModel):
    """
    Pydantic schema for the enhanced digest returned by the LLM.
    """
    briefing: str = ""
    clusters: List[ClusterOutput] = []
    horizon: List[str] = []

    def section_counts(self) -> dict:
        return {
            "briefing": 1 if self.briefing.strip() else 0,
            "clusters": len([c for c in self.clusters if c.item_ids]),
            "horizon": len([h for h in self.horizon if h.strip()]),
        }
