"""Content store, send history, job lock and user store tests"""

from datetime import date, timedelta

import pytest

from conftest import NOW, make_item
from nycping.core.entities import ContentType, Slot, Tier, TransitSeverity
from nycping.core.errors import LockUnavailable
from nycping.services.content_store import SqliteContentStore
from nycping.services.job_lock import JobLock
from nycping.services.send_history import SendHistory
from nycping.services.user_store import UserStore

DAY = date(2026, 3, 10)


class TestContentStore:
    """Test idempotent upsert and version bumps"""

    @pytest.mark.asyncio
    async def test_first_sighting_is_version_one(self, db):
        store = SqliteContentStore(db)
        result = await store.upsert_by_external_id(make_item("ASP in effect", external_id="asp-1"))

        assert result.created is True
        assert result.item.version == 1
        assert (await store.get(result.item.id)).title == "ASP in effect"

    @pytest.mark.asyncio
    async def test_unchanged_resighting_is_a_no_op(self, db):
        store = SqliteContentStore(db)
        item = make_item("ASP in effect", external_id="asp-1")
        await store.upsert_by_external_id(item)
        again = await store.upsert_by_external_id(item)

        assert again.created is False
        assert again.version_bumped is False
        assert again.item.version == 1

    @pytest.mark.asyncio
    async def test_material_change_bumps_version(self, db):
        store = SqliteContentStore(db)
        original = make_item(
            "Alternate side parking in effect", ContentType.ASP_STATUS,
            source="nyc_dot", external_id="asp-today", created_at=NOW - timedelta(hours=2),
        )
        await store.upsert_by_external_id(original)
        updated = make_item(
            "Alternate side parking suspended", ContentType.ASP_STATUS,
            source="nyc_dot", external_id="asp-today", created_at=NOW,
        )
        result = await store.upsert_by_external_id(updated)

        assert result.version_bumped is True
        assert result.item.version == 2
        assert result.item.status_changed is True
        assert result.item.created_at == original.created_at

        stored = await store.get(original.id)
        assert stored.version == 2
        assert stored.created_at == original.created_at

    @pytest.mark.asyncio
    async def test_find_recent_and_clear_status_changed(self, db):
        store = SqliteContentStore(db)
        item = make_item("Water main break", external_id="w1", severity=TransitSeverity.MAJOR,
                         tags=frozenset({"G", "F"}))
        await store.upsert_by_external_id(item)
        await store.upsert_by_external_id(make_item("Water main break, street closed", external_id="w1"))

        [found] = await store.find_recent(None, NOW - timedelta(hours=1))
        assert found.status_changed is True
        assert await store.find_recent(ContentType.HOUSING, NOW - timedelta(hours=1)) == []

        assert await store.clear_status_changed([(found.id, found.version)]) == 1
        assert (await store.get(found.id)).status_changed is False

    @pytest.mark.asyncio
    async def test_clearing_a_delivered_version_keeps_a_newer_flag(self, db):
        store = SqliteContentStore(db)
        await store.upsert_by_external_id(make_item("ASP in effect", ContentType.ASP_STATUS, external_id="asp"))
        v2 = (await store.upsert_by_external_id(
            make_item("ASP suspended", ContentType.ASP_STATUS, external_id="asp"))).item
        v3 = (await store.upsert_by_external_id(
            make_item("ASP suspension revoked", ContentType.ASP_STATUS, external_id="asp"))).item

        assert await store.clear_status_changed([(v2.id, v2.version)]) == 0
        stored = await store.get(v3.id)
        assert (stored.version, stored.status_changed) == (3, True)

    @pytest.mark.asyncio
    async def test_round_trips_optional_fields(self, db):
        store = SqliteContentStore(db)
        item = make_item(
            "[G] Significant delays", ContentType.TRANSIT_DELAY, source="mta",
            severity=TransitSeverity.MAJOR, tags=frozenset({"G"}), url="https://mta.info/alerts",
            ends_at=NOW + timedelta(hours=2),
        )
        await store.upsert_by_external_id(item)
        stored = await store.get(item.id)

        assert stored.severity is TransitSeverity.MAJOR
        assert stored.tags == frozenset({"G"})
        assert stored.ends_at == item.ends_at


class TestSendHistory:
    """Test delivered-item state"""

    @pytest.mark.asyncio
    async def test_mark_sent_then_load_state(self, db):
        history = SendHistory(db)
        a, b = make_item("Story one"), make_item("Story two", version=2)
        await history.mark_sent([a, b], "u1", "morning", DAY, "standard", sent_at=NOW)

        state = await history.load_state("u1", DAY, NOW)
        assert state.sends_today == 1
        assert state.slots_sent == frozenset({"morning"})
        assert state.delivered[a.id].version == 1
        assert state.delivered[b.id].version == 2

    @pytest.mark.asyncio
    async def test_mark_sent_is_idempotent(self, db):
        history = SendHistory(db)
        item = make_item("Story one")
        await history.mark_sent([item], "u1", "morning", DAY, "standard", sent_at=NOW)
        await history.mark_sent([item], "u1", "morning", DAY, "standard", sent_at=NOW)

        state = await history.load_state("u1", DAY, NOW)
        assert state.sends_today == 1
        assert list(state.delivered) == [item.id]

    @pytest.mark.asyncio
    async def test_urgent_sends_do_not_count_toward_cap(self, db):
        history = SendHistory(db)
        await history.mark_sent([make_item("Outage")], "u1", "urgent-0830", DAY, "standard", sent_at=NOW)

        state = await history.load_state("u1", DAY, NOW)
        assert state.sends_today == 0
        assert "urgent-0830" in state.slots_sent

    @pytest.mark.asyncio
    async def test_history_is_per_user(self, db):
        history = SendHistory(db)
        await history.mark_sent([make_item("Story")], "u1", "morning", DAY, "standard", sent_at=NOW)

        state = await history.load_state("u2", DAY, NOW)
        assert state.sends_today == 0
        assert state.delivered == {}

    @pytest.mark.asyncio
    async def test_claim_is_exclusive_per_user_and_slot(self, db):
        history = SendHistory(db)

        assert await history.claim("u1", "morning", DAY, "standard", NOW) is True
        assert await history.claim("u1", "morning", DAY, "standard", NOW) is False
        assert await history.claim("u2", "morning", DAY, "standard", NOW) is True
        assert (await history.load_state("u1", DAY, NOW)).slots_sent == frozenset({"morning"})

    @pytest.mark.asyncio
    async def test_released_claim_can_be_retried(self, db):
        history = SendHistory(db)
        await history.claim("u1", "morning", DAY, "standard", NOW)
        await history.release_claim("u1", "morning", DAY)

        assert (await history.load_state("u1", DAY, NOW)).slots_sent == frozenset()
        assert await history.claim("u1", "morning", DAY, "standard", NOW) is True

    @pytest.mark.asyncio
    async def test_release_never_drops_a_sent_digest(self, db):
        history = SendHistory(db)
        item = make_item("Story")
        await history.claim("u1", "morning", DAY, "standard", NOW)
        await history.mark_sent([item], "u1", "morning", DAY, "standard", message_id="m-1", sent_at=NOW)
        await history.release_claim("u1", "morning", DAY)

        state = await history.load_state("u1", DAY, NOW)
        assert state.slots_sent == frozenset({"morning"})
        assert await history.claim("u1", "morning", DAY, "standard", NOW) is False


class TestJobLock:
    """Test the TTL-bounded job lock"""

    @pytest.mark.asyncio
    async def test_second_acquire_fails_until_release(self, db):
        lock = JobLock(db)
        lock_id = await lock.acquire("digest-morning")

        assert lock_id is not None
        assert await lock.acquire("digest-morning") is None

        await lock.release("digest-morning", lock_id)
        assert await lock.acquire("digest-morning") is not None

    @pytest.mark.asyncio
    async def test_locks_are_per_job(self, db):
        lock = JobLock(db)
        assert await lock.acquire("digest-morning") is not None
        assert await lock.acquire("digest-evening") is not None

    @pytest.mark.asyncio
    async def test_expired_lock_is_taken_over(self, db):
        lock = JobLock(db)
        stale = await lock.acquire("digest-morning", ttl_seconds=-1)
        fresh = await lock.acquire("digest-morning")

        assert fresh is not None
        assert fresh != stale

    @pytest.mark.asyncio
    async def test_release_ignores_foreign_lock_id(self, db):
        lock = JobLock(db)
        await lock.acquire("digest-morning")
        await lock.release("digest-morning", "someone-else")
        assert await lock.acquire("digest-morning") is None

    @pytest.mark.asyncio
    async def test_hold_releases_on_exception(self, db):
        lock = JobLock(db)
        with pytest.raises(RuntimeError):
            async with lock.hold("digest-morning"):
                raise RuntimeError("boom")
        assert await lock.acquire("digest-morning") is not None

    @pytest.mark.asyncio
    async def test_hold_raises_when_taken(self, db):
        lock = JobLock(db)
        await lock.acquire("digest-morning")
        with pytest.raises(LockUnavailable):
            async with lock.hold("digest-morning"):
                pass


class TestUserStore:
    """Test subscriber storage"""

    @pytest.mark.asyncio
    async def test_default_slots_by_tier(self, db):
        users = UserStore(db)
        await users.add_user("free", "free@example.com")
        await users.add_user("premium", "premium@example.com", Tier.PREMIUM)

        by_id = {u.id: u for u in await users.list_active()}
        assert by_id["free"].slots == frozenset({Slot.MORNING})
        assert by_id["premium"].slots == frozenset(Slot)

    @pytest.mark.asyncio
    async def test_deactivated_users_are_not_listed(self, db):
        users = UserStore(db)
        await users.add_user("u1", "u1@example.com")
        await users.deactivate("u1")
        assert await users.list_active() == []
