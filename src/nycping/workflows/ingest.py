"""
Ingestion pipeline: fetch, validate, score, dedup and upsert every source.
One failing source never stops the others.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from nycping.core.entities import ContentItem
from nycping.core.errors import SourceFetchError
from nycping.core.scoring import score_items, should_suppress_transit_alert
from nycping.delivery.operator_alerts import OperatorAlerter
from nycping.ingestion.base import SourceAdapter
from nycping.processing.deduplicator import CrossSourceDeduplicator, IngestionDeduplicator
from nycping.processing.validation import ScraperError, validate_and_filter_records
from nycping.services.config import CurationConfig
from nycping.services.content_store import SqliteContentStore

logger = logging.getLogger(__name__)


@dataclass
class SourceReport:
    source: str
    fetched: int = 0
    invalid: int = 0
    suppressed: int = 0
    duplicates: int = 0
    created: int = 0
    updated: int = 0
    error: Optional[str] = None


@dataclass
class IngestReport:
    sources: Dict[str, SourceReport] = field(default_factory=dict)

    @property
    def stored(self) -> int:
        return sum(r.created + r.updated for r in self.sources.values())

    @property
    def failed_sources(self) -> List[str]:
        return [name for name, r in self.sources.items() if r.error]


class IngestPipeline:
    def __init__(
        self,
        sources: Sequence[SourceAdapter],
        store: SqliteContentStore,
        config: CurationConfig,
        alerter: Optional[OperatorAlerter] = None,
    ):
        self.sources = sources
        self.store = store
        self.config = config
        self.alerter = alerter
        self.ingestion_dedup = IngestionDeduplicator(
            window=timedelta(hours=config.ingestion_window_hours),
            threshold=config.similarity_threshold,
        )
        self.cross_source_dedup = CrossSourceDeduplicator(
            window=timedelta(hours=config.cross_source_window_hours),
            threshold=config.similarity_threshold,
        )

    async def run(self, hours: int = 24, now: Optional[datetime] = None) -> IngestReport:
        now = now or datetime.now(timezone.utc)
        report = IngestReport()

        for source in self.sources:
            source_report = SourceReport(source=source.name)
            report.sources[source.name] = source_report
            try:
                await self._ingest_source(source, source_report, hours, now)
            except SourceFetchError as e:
                source_report.error = str(e)
                logger.error(f"[{source.name}] fetch failed: {e}", extra={"source": source.name})
            except Exception as e:
                source_report.error = f"{type(e).__name__}: {e}"
                logger.exception(f"[{source.name}] ingestion failed", extra={"source": source.name})

        logger.info(
            f"Ingestion complete: stored={report.stored} failed_sources={report.failed_sources}"
        )
        return report

    async def _ingest_source(
        self,
        source: SourceAdapter,
        source_report: SourceReport,
        hours: int,
        now: datetime,
    ) -> None:
        records = await source.fetch_records(hours)
        source_report.fetched = len(records)

        validation = validate_and_filter_records(source.name, records, source.schema)
        errors = list(validation.errors)

        candidates: List[ContentItem] = []
        for record in validation.valid:
            try:
                item = source.to_item(record, self.config, now)
            except (TypeError, ValueError) as e:
                errors.append(ScraperError(source.name, record.model_dump(mode="json"), str(e), now))
                continue
            if item is not None:
                candidates.append(item)

        source_report.invalid = len(errors)
        if errors and self.alerter is not None:
            await self.alerter.report(source.name, errors)

        candidates = score_items(candidates, self.config)

        same_source = await self.store.find_recent_by_source(
            source.name, now - timedelta(hours=self.config.ingestion_window_hours)
        )
        candidates = self._suppress_transit_noise(candidates, same_source, source_report)

        outcome = self.ingestion_dedup.filter(candidates, same_source, now)
        source_report.duplicates += len(outcome.rejected)

        others = await self.store.find_recent(
            None, now - timedelta(hours=self.config.cross_source_window_hours)
        )
        cross = self.cross_source_dedup.filter(outcome.accepted, others, now)
        source_report.duplicates += len(cross.rejected)

        for item in cross.accepted:
            result = await self.store.upsert_by_external_id(item)
            if result.created:
                source_report.created += 1
            elif result.version_bumped:
                source_report.updated += 1

        logger.info(
            f"[{source.name}] fetched={source_report.fetched} invalid={source_report.invalid} "
            f"suppressed={source_report.suppressed} duplicates={source_report.duplicates} "
            f"created={source_report.created} updated={source_report.updated}",
            extra={"source": source.name},
        )

    def _suppress_transit_noise(
        self,
        candidates: List[ContentItem],
        existing: Sequence[ContentItem],
        source_report: SourceReport,
    ) -> List[ContentItem]:
        """Drop new low-signal transit alerts. Updates to stored alerts always pass."""
        known_ids = {item.id for item in existing}
        seen = [(item.title, item.body) for item in existing if item.content_type.is_transit_alert]
        kept = []
        for item in candidates:
            if item.content_type.is_transit_alert and item.id not in known_ids:
                decision = should_suppress_transit_alert(item.title, item.body, self.config, seen)
                if decision.suppress:
                    logger.debug(f"Suppressed {item.id}: {decision.reason}")
                    source_report.suppressed += 1
                    continue
                seen.append((item.title, item.body))
            kept.append(item)
        return kept
