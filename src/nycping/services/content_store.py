"""
Content store - persisted ContentItems with idempotent upsert by (source, external_id).
"""
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Tuple

from nycping.core.entities import ContentItem, ContentType, TransitSeverity, UrgencyClass
from nycping.services.database import Database, from_db_time, to_db_time

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpsertResult:
    item: ContentItem
    created: bool
    version_bumped: bool


def item_id_for(source: str, external_id: str) -> str:
    return f"{source}:{external_id}"


def has_material_change(old: ContentItem, new: ContentItem) -> bool:
    """Changes that mean the upstream status moved, not just a re-scrape."""
    return (
        old.title != new.title
        or old.body != new.body
        or old.ends_at != new.ends_at
        or old.severity != new.severity
        or old.content_type != new.content_type
    )


class ContentStore(ABC):
    @abstractmethod
    async def find_recent(
        self, content_type: Optional[ContentType], since: datetime
    ) -> List[ContentItem]:
        raise NotImplementedError

    @abstractmethod
    async def upsert_by_external_id(self, item: ContentItem) -> UpsertResult:
        raise NotImplementedError

    @abstractmethod
    async def clear_status_changed(self, delivered: Iterable[Tuple[str, int]]) -> int:
        raise NotImplementedError


_COLUMNS = (
    "id, source, external_id, content_type, title, body, dedup_key, urgency, "
    "priority_score, severity, tags, trust_tier, url, created_at, starts_at, "
    "ends_at, version, status_changed"
)


def _row_to_item(row) -> ContentItem:
    return ContentItem(
        id=row[0],
        source=row[1],
        external_id=row[2],
        content_type=ContentType(row[3]),
        title=row[4],
        body=row[5],
        dedup_key=row[6],
        urgency=UrgencyClass(row[7]),
        priority_score=row[8],
        severity=TransitSeverity(row[9]) if row[9] else None,
        tags=frozenset(json.loads(row[10] or "[]")),
        trust_tier=row[11],
        url=row[12],
        created_at=from_db_time(row[13]),
        starts_at=from_db_time(row[14]),
        ends_at=from_db_time(row[15]),
        version=row[16],
        status_changed=bool(row[17]),
    )


class SqliteContentStore(ContentStore):
    def __init__(self, database: Database):
        self.db = database

    async def find_recent(
        self, content_type: Optional[ContentType], since: datetime
    ) -> List[ContentItem]:
        await self.db.init_tables()
        cutoff = to_db_time(since)
        if content_type is not None:
            rows = await self.db.fetchall(
                f"""SELECT {_COLUMNS} FROM content_items
                    WHERE content_type = ? AND (created_at >= ? OR updated_at >= ?)
                    ORDER BY created_at DESC""",
                (ContentType(content_type).value, cutoff, cutoff),
            )
        else:
            rows = await self.db.fetchall(
                f"""SELECT {_COLUMNS} FROM content_items
                    WHERE created_at >= ? OR updated_at >= ?
                    ORDER BY created_at DESC""",
                (cutoff, cutoff),
            )
        return [_row_to_item(row) for row in rows]

    async def find_recent_by_source(self, source: str, since: datetime) -> List[ContentItem]:
        await self.db.init_tables()
        rows = await self.db.fetchall(
            f"SELECT {_COLUMNS} FROM content_items WHERE source = ? AND created_at >= ?",
            (source, to_db_time(since)),
        )
        return [_row_to_item(row) for row in rows]

    async def get(self, item_id: str) -> Optional[ContentItem]:
        await self.db.init_tables()
        row = await self.db.fetchone(
            f"SELECT {_COLUMNS} FROM content_items WHERE id = ?", (item_id,)
        )
        return _row_to_item(row) if row else None

    async def upsert_by_external_id(self, item: ContentItem) -> UpsertResult:
        """
        Insert on first sighting. A later sighting with a material change
        bumps the version and sets status_changed; otherwise only the score
        is refreshed. createdAt is never moved.
        """
        await self.db.init_tables()
        item_id = item_id_for(item.source, item.external_id)
        now = to_db_time(datetime.now(timezone.utc))

        async with self.db.connect() as conn:
            cursor = await conn.execute(
                f"SELECT {_COLUMNS} FROM content_items WHERE source = ? AND external_id = ?",
                (item.source, item.external_id),
            )
            row = await cursor.fetchone()

            if row is None:
                stored = replace(item, id=item_id, version=1, status_changed=False)
                await conn.execute(
                    f"""INSERT INTO content_items ({_COLUMNS}, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        stored.id, stored.source, stored.external_id, stored.content_type.value,
                        stored.title, stored.body, stored.dedup_key, stored.urgency.value,
                        stored.priority_score,
                        stored.severity.value if stored.severity else None,
                        json.dumps(sorted(stored.tags)), stored.trust_tier, stored.url,
                        to_db_time(stored.created_at), to_db_time(stored.starts_at),
                        to_db_time(stored.ends_at), stored.version, 0, now,
                    ),
                )
                await conn.commit()
                logger.debug(f"Inserted {stored.id}")
                return UpsertResult(stored, created=True, version_bumped=False)

            existing = _row_to_item(row)
            if not has_material_change(existing, item):
                await conn.execute(
                    "UPDATE content_items SET priority_score = ? WHERE id = ?",
                    (item.priority_score, existing.id),
                )
                await conn.commit()
                return UpsertResult(
                    replace(existing, priority_score=item.priority_score),
                    created=False,
                    version_bumped=False,
                )

            stored = replace(
                item,
                id=existing.id,
                created_at=existing.created_at,
                version=existing.version + 1,
                status_changed=True,
            )
            await conn.execute(
                """UPDATE content_items SET
                       content_type = ?, title = ?, body = ?, dedup_key = ?, urgency = ?,
                       priority_score = ?, severity = ?, tags = ?, url = ?, starts_at = ?,
                       ends_at = ?, version = ?, status_changed = 1, updated_at = ?
                   WHERE id = ?""",
                (
                    stored.content_type.value, stored.title, stored.body, stored.dedup_key,
                    stored.urgency.value, stored.priority_score,
                    stored.severity.value if stored.severity else None,
                    json.dumps(sorted(stored.tags)), stored.url,
                    to_db_time(stored.starts_at), to_db_time(stored.ends_at),
                    stored.version, now, stored.id,
                ),
            )
            await conn.commit()
            logger.info(f"Version bump {stored.id}: v{existing.version} -> v{stored.version}")
            return UpsertResult(stored, created=False, version_bumped=True)

    async def clear_status_changed(self, delivered: Iterable[Tuple[str, int]]) -> int:
        """
        Clear the flag for the (id, version) pairs actually delivered. A newer
        version stored meanwhile keeps its flag.
        """
        pairs = sorted(set(delivered))
        if not pairs:
            return 0
        await self.db.init_tables()
        async with self.db.connect() as conn:
            cursor = await conn.executemany(
                "UPDATE content_items SET status_changed = 0 WHERE id = ? AND version = ?",
                pairs,
            )
            await conn.commit()
            return cursor.rowcount

    async def cleanup(self, days: int = 30) -> int:
        """Remove items older than specified days."""
        await self.db.init_tables()
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        count = await self.db.execute(
            "DELETE FROM content_items WHERE created_at < ? AND updated_at < ?",
            (to_db_time(cutoff), to_db_time(cutoff)),
        )
        logger.info(f"Cleaned up {count} old content items")
        return count
