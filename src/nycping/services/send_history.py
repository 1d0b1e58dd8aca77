"""
SendHistory - per-user record of delivered (item, version) pairs.
Backs the don't-repeat rule, the one-digest-per-slot check and the daily cap.
"""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from nycping.core.entities import (
    ContentItem,
    DeliveredItem,
    SendRecord,
    TransitSeverity,
    UserSendState,
)
from nycping.services.database import Database, to_db_time

logger = logging.getLogger(__name__)


class SendHistory:
    def __init__(self, database: Database, lookback_hours: float = 72):
        self.db = database
        self.lookback_hours = lookback_hours

    async def initialize(self) -> None:
        await self.db.init_tables()

    async def load_state(self, user_id: str, day: date, now: Optional[datetime] = None) -> UserSendState:
        """
        What the user already received: every (item, version) in the lookback
        window and the digests sent on `day`. Digests claimed by an
        in-flight run count as sent.
        """
        await self.initialize()
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(hours=self.lookback_hours)

        rows = await self.db.fetchall(
            """SELECT item_id, version, severity FROM send_records
               WHERE user_id = ? AND (sent_at >= ? OR day = ?)""",
            (user_id, to_db_time(cutoff), day.isoformat()),
        )
        delivered: Dict[str, DeliveredItem] = {}
        for item_id, version, severity in rows:
            prior = delivered.get(item_id)
            if prior is None or version > prior.version:
                delivered[item_id] = DeliveredItem(
                    version=version,
                    severity=TransitSeverity(severity) if severity else None,
                )

        slot_rows = await self.db.fetchall(
            "SELECT slot FROM digest_sends WHERE user_id = ? AND day = ?",
            (user_id, day.isoformat()),
        )
        slots = frozenset(row[0] for row in slot_rows)
        # Urgent sweeps bypass the cap and do not count toward it.
        sends_today = len([s for s in slots if not s.startswith("urgent")])
        return UserSendState(sends_today=sends_today, slots_sent=slots, delivered=delivered)

    async def claim(
        self,
        user_id: str,
        slot: str,
        day: date,
        mode: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Reserve the (user, day, slot) digest before it goes to the transport.
        False when another run already claimed or sent it.
        """
        await self.initialize()
        claimed_at = to_db_time(now or datetime.now(timezone.utc))
        count = await self.db.execute(
            """INSERT OR IGNORE INTO digest_sends (user_id, day, slot, mode, status, sent_at)
               VALUES (?, ?, ?, ?, 'pending', ?)""",
            (user_id, day.isoformat(), slot, mode, claimed_at),
        )
        if not count:
            logger.info(f"Digest {slot} for user={user_id} day={day} already claimed")
        return count == 1

    async def release_claim(self, user_id: str, slot: str, day: date) -> None:
        """Drop an unsent claim so a later run can retry the digest."""
        await self.db.execute(
            "DELETE FROM digest_sends WHERE user_id = ? AND day = ? AND slot = ? AND status = 'pending'",
            (user_id, day.isoformat(), slot),
        )

    async def mark_sent(
        self,
        items: Iterable[ContentItem],
        user_id: str,
        slot: str,
        day: date,
        mode: str,
        message_id: Optional[str] = None,
        sent_at: Optional[datetime] = None,
    ) -> List[SendRecord]:
        """
        Record a delivered digest. Inserts are idempotent on
        (user, day, slot, item, version).
        """
        await self.initialize()
        sent_at = to_db_time(sent_at or datetime.now(timezone.utc))
        records = [
            SendRecord(
                user_id=user_id,
                day=day,
                slot=slot,
                item_id=item.id,
                version=item.version,
                severity=item.severity,
            )
            for item in items
        ]

        async with self.db.connect() as conn:
            await conn.executemany(
                """INSERT OR IGNORE INTO send_records
                   (user_id, day, slot, item_id, version, severity, sent_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                [
                    (
                        r.user_id, r.day.isoformat(), r.slot, r.item_id, r.version,
                        r.severity.value if r.severity else None, sent_at,
                    )
                    for r in records
                ],
            )
            await conn.execute(
                """INSERT INTO digest_sends (user_id, day, slot, mode, message_id, status, sent_at)
                   VALUES (?, ?, ?, ?, ?, 'sent', ?)
                   ON CONFLICT (user_id, day, slot) DO UPDATE SET
                       mode = excluded.mode,
                       message_id = excluded.message_id,
                       status = 'sent',
                       sent_at = excluded.sent_at""",
                (user_id, day.isoformat(), slot, mode, message_id, sent_at),
            )
            await conn.commit()

        logger.debug(f"Recorded {len(records)} items for user={user_id} slot={slot} day={day}")
        return records

    async def cleanup(self, days: int = 30) -> int:
        """Remove old send records."""
        await self.initialize()
        cutoff = to_db_time(datetime.now(timezone.utc) - timedelta(days=days))
        count = await self.db.execute("DELETE FROM send_records WHERE sent_at < ?", (cutoff,))
        count += await self.db.execute("DELETE FROM digest_sends WHERE sent_at < ?", (cutoff,))
        logger.info(f"Cleaned up {count} old send records")
        return count
