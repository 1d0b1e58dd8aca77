"""
Ingestion from JSON list feeds (housing lotteries, sample sales)
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from nycping.core.entities import ContentItem, ContentType
from nycping.core.errors import SourceFetchError
from nycping.core.schemas import HousingLotteryRecord, SampleSaleRecord
from nycping.ingestion.base import SourceAdapter, build_item
from nycping.services.config import CurationConfig


async def _fetch_json_list(name: str, url: str, timeout: float) -> List[Any]:
    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            resp = await client.get(url)
            resp.raise_for_status()
            payload = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        raise SourceFetchError(name, str(e)) from e

    if isinstance(payload, dict):
        payload = payload.get("items") or payload.get("data") or []
    if not isinstance(payload, list):
        raise SourceFetchError(name, "expected a JSON list")
    return payload


class HousingLotteryAdapter(SourceAdapter):
    schema = HousingLotteryRecord

    def __init__(self, url: str, name: str = "housing_connect", timeout: float = 30.0):
        self.url = url
        self.name = name
        self.timeout = timeout

    async def fetch_records(self, hours: int) -> List[Dict[str, Any]]:
        # Lotteries stay open for weeks; the deadline is the filter, not the post date.
        return await _fetch_json_list(self.name, self.url, self.timeout)

    def to_item(self, record: HousingLotteryRecord, config: CurationConfig, now: datetime) -> Optional[ContentItem]:
        if record.deadline is not None and record.deadline < now:
            return None
        where = ", ".join(p for p in (record.neighborhood, record.borough) if p)
        body_parts = [f"Affordable housing lottery in {where}." if where else "Affordable housing lottery."]
        if record.units:
            body_parts.append(f"{record.units} units.")
        if record.deadline:
            body_parts.append(f"Apply by {record.deadline:%b %d}.")

        return build_item(
            config=config,
            source=self.name,
            external_id=record.lottery_id,
            content_type=ContentType.HOUSING,
            title=f"Housing lottery: {record.name}",
            body=" ".join(body_parts),
            created_at=now,
            url=record.url,
            tags=[record.borough] if record.borough else (),
            ends_at=record.deadline,
        )


class SampleSaleAdapter(SourceAdapter):
    schema = SampleSaleRecord

    def __init__(self, url: str, name: str = "sample_sales", timeout: float = 30.0):
        self.url = url
        self.name = name
        self.timeout = timeout

    async def fetch_records(self, hours: int) -> List[Dict[str, Any]]:
        return await _fetch_json_list(self.name, self.url, self.timeout)

    def to_item(self, record: SampleSaleRecord, config: CurationConfig, now: datetime) -> Optional[ContentItem]:
        if record.ends is not None and record.ends < now:
            return None
        details = " ".join(p for p in (record.discount, f"at {record.location}" if record.location else "") if p)

        return build_item(
            config=config,
            source=self.name,
            external_id=record.id,
            content_type=ContentType.SAMPLE_SALE,
            title=f"{record.brand} sample sale",
            body=details or f"{record.brand} sample sale.",
            created_at=now,
            url=record.url,
            starts_at=record.starts,
            ends_at=record.ends,
        )
