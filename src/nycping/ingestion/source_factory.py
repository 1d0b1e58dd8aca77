"""
Source Factory - Creates ingestion adapters from configuration.
"""
import logging
import os
from typing import List

from nycping.core.entities import ContentType
from nycping.ingestion.asp import NYC_311_CALENDAR_URL, ASPStatusAdapter
from nycping.ingestion.base import SourceAdapter
from nycping.ingestion.json_feed import HousingLotteryAdapter, SampleSaleAdapter
from nycping.ingestion.mta import MTAAlertsAdapter
from nycping.ingestion.rss import RSSAdapter
from nycping.ingestion.weather import NWS_FORECAST_URL, NWSForecastAdapter
from nycping.services.config import AppConfig, SourceConfig, get_enabled_sources

logger = logging.getLogger(__name__)


def create_source_adapter(source_config: SourceConfig, timeout: float = 30.0) -> SourceAdapter:
    """
    Create a source adapter from configuration.

    Raises:
        ValueError: If source type is unknown or a required field is missing
    """
    source_type = source_config.type.lower()

    if source_type == "mta":
        if not source_config.url:
            raise ValueError("MTA source requires 'url' field")
        return MTAAlertsAdapter(
            feed_url=source_config.url,
            name=source_config.name,
            timeout=timeout,
            api_key=os.getenv("MTA_API_KEY"),
        )

    elif source_type == "rss":
        if not source_config.feeds:
            raise ValueError("RSS source requires 'feeds' field")
        content_type = ContentType(source_config.content_type) if source_config.content_type else ContentType.LOCAL_NEWS
        return RSSAdapter(
            feed_urls=source_config.feeds,
            source_name=source_config.name,
            content_type=content_type,
            timeout=timeout,
        )

    elif source_type == "housing":
        if not source_config.url:
            raise ValueError("Housing source requires 'url' field")
        return HousingLotteryAdapter(source_config.url, name=source_config.name, timeout=timeout)

    elif source_type == "sample_sales":
        if not source_config.url:
            raise ValueError("Sample sales source requires 'url' field")
        return SampleSaleAdapter(source_config.url, name=source_config.name, timeout=timeout)

    elif source_type == "weather":
        return NWSForecastAdapter(source_config.url or NWS_FORECAST_URL, name=source_config.name, timeout=timeout)

    elif source_type == "asp":
        return ASPStatusAdapter(source_config.url or NYC_311_CALENDAR_URL, name=source_config.name, timeout=timeout)

    else:
        raise ValueError(f"Unknown source type: {source_type}")


def create_adapters_from_config(config: AppConfig) -> List[SourceAdapter]:
    """Create all enabled source adapters. A misconfigured source is logged and skipped."""
    adapters = []

    for source_config in get_enabled_sources(config):
        try:
            adapter = create_source_adapter(source_config, timeout=config.SCRAPE_TIMEOUT_SECONDS)
            adapters.append(adapter)
            logger.info(f"Created {source_config.type} adapter: {source_config.name}")
        except ValueError as e:
            logger.error(f"Failed to create adapter for {source_config.name}: {e}")

    return adapters
