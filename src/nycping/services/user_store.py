import json
import logging
from typing import Iterable, List, Optional

from nycping.core.entities import Slot, Tier, User
from nycping.services.database import Database

logger = logging.getLogger(__name__)


def default_slots(tier: Tier) -> frozenset:
    """Free tier gets the morning digest; premium gets all three."""
    if tier is Tier.PREMIUM:
        return frozenset(Slot)
    return frozenset({Slot.MORNING})


class UserStore:
    def __init__(self, database: Database):
        self.db = database

    async def add_user(
        self,
        user_id: str,
        email: str,
        tier: Tier = Tier.FREE,
        slots: Optional[Iterable[Slot]] = None,
    ) -> User:
        await self.db.init_tables()
        user = User(
            id=user_id,
            email=email,
            tier=tier,
            slots=frozenset(slots) if slots else default_slots(tier),
        )
        await self.db.execute(
            """INSERT INTO users (id, email, tier, slots) VALUES (?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET email = excluded.email,
                   tier = excluded.tier, slots = excluded.slots, active = 1""",
            (user.id, user.email, user.tier.value, json.dumps(sorted(s.value for s in user.slots))),
        )
        logger.info(f"Saved user {user.id} ({user.tier.value})")
        return user

    async def list_active(self) -> List[User]:
        await self.db.init_tables()
        rows = await self.db.fetchall(
            "SELECT id, email, tier, slots FROM users WHERE active = 1 ORDER BY id"
        )
        return [
            User(
                id=row[0],
                email=row[1],
                tier=Tier(row[2]),
                slots=frozenset(Slot(s) for s in json.loads(row[3] or "[]")),
            )
            for row in rows
        ]

    async def deactivate(self, user_id: str) -> None:
        await self.db.execute("UPDATE users SET active = 0 WHERE id = ?", (user_id,))
