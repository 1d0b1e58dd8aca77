"""Digest orchestrator tests: locking, enhanced fallback and per-user isolation"""

import asyncio
import json
from datetime import date, datetime, timedelta, timezone

import pytest

from conftest import NOW, make_item
from nycping.core.entities import ContentType, DigestMode, Slot, Tier, TransitSeverity, UrgencyClass
from nycping.delivery.base import DeliveryChannel, DeliveryResult
from nycping.services.config import AppConfig
from nycping.services.content_store import SqliteContentStore
from nycping.services.job_lock import JobLock
from nycping.services.send_history import SendHistory
from nycping.services.user_store import UserStore
from nycping.workflows.digest_job import DigestJobOptions, DigestOrchestrator

DAY = date(2026, 3, 10)
# 23:00 in New York, inside quiet hours
NIGHT = datetime(2026, 3, 10, 3, 0, tzinfo=timezone.utc)


class RecordingChannel(DeliveryChannel):
    """Channel that records messages; selected recipients fail"""

    name = "memory"

    def __init__(self, reject=(), explode=()):
        self.sent = []
        self.reject = set(reject)
        self.explode = set(explode)

    async def send_email(self, *, to, subject, html, text):
        if to in self.explode:
            raise ConnectionResetError("smtp connection dropped")
        if to in self.reject:
            return DeliveryResult(success=False, error="mailbox unavailable")
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})
        return DeliveryResult(success=True, id=f"msg-{len(self.sent)}")


class SlowChannel(RecordingChannel):
    """Channel whose transport takes a while"""

    def __init__(self, delay):
        super().__init__()
        self.delay = delay

    async def send_email(self, *, to, subject, html, text):
        await asyncio.sleep(self.delay)
        return await super().send_email(to=to, subject=subject, html=html, text=text)


class FakeLLM:
    def __init__(self, content=None, error=None, delay=0.0):
        self.content = content
        self.error = error
        self.delay = delay
        self.calls = 0

    async def complete(self, prompt, system=None):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return {"content": self.content, "latency_ms": 5}


class BrokenStore(SqliteContentStore):
    async def find_recent(self, content_type, since):
        raise RuntimeError("database is gone")


async def seed_morning(store):
    weather = make_item("Sunny, high of 58", ContentType.WEATHER_DAILY, source="nws")
    news = make_item("City Council passes new bike lane plan", ContentType.LOCAL_NEWS)
    for item in (weather, news):
        await store.upsert_by_external_id(item)
    return weather, news


def build(db, channel, llm=None, store=None, **config):
    config.setdefault("MAX_CONCURRENCY", 2)
    return DigestOrchestrator(
        store=store or SqliteContentStore(db),
        history=SendHistory(db),
        users=UserStore(db),
        lock=JobLock(db),
        channel=channel,
        config=AppConfig(**config),
        llm=llm,
    )


class TestDigestJob:
    """Test the slot digest job end to end against a temporary database"""

    @pytest.mark.asyncio
    async def test_standard_digest_is_sent_once(self, db):
        await seed_morning(SqliteContentStore(db))
        await UserStore(db).add_user("u1", "u1@example.com")
        channel = RecordingChannel()
        orchestrator = build(db, channel)

        first = await orchestrator.run(Slot.MORNING, DigestJobOptions(skip_enhanced=True), now=NOW)
        second = await orchestrator.run(Slot.MORNING, DigestJobOptions(skip_enhanced=True), now=NOW)

        assert (first.sent, first.skipped, first.failed, first.mode) == (1, 0, 0, DigestMode.STANDARD)
        assert (second.sent, second.skipped) == (0, 1)
        assert len(channel.sent) == 1
        assert "Sunny, high of 58" in channel.sent[0]["text"]

        state = await SendHistory(db).load_state("u1", DAY, NOW)
        assert state.slots_sent == frozenset({"morning"})
        assert len(state.delivered) == 2

    @pytest.mark.asyncio
    async def test_held_lock_is_a_no_op(self, db):
        await seed_morning(SqliteContentStore(db))
        await UserStore(db).add_user("u1", "u1@example.com")
        await JobLock(db).acquire("digest-morning")
        channel = RecordingChannel()

        result = await build(db, channel).run(Slot.MORNING, now=NOW)

        assert result.mode is DigestMode.LOCKED
        assert (result.sent, result.skipped, result.failed) == (0, 0, 0)
        assert channel.sent == []

    @pytest.mark.asyncio
    async def test_lock_released_when_job_raises(self, db):
        channel = RecordingChannel()
        orchestrator = build(db, channel, store=BrokenStore(db))

        with pytest.raises(RuntimeError):
            await orchestrator.run(Slot.MORNING, now=NOW)

        assert await JobLock(db).acquire("digest-morning") is not None

    @pytest.mark.asyncio
    async def test_llm_failure_falls_back(self, db):
        await seed_morning(SqliteContentStore(db))
        await UserStore(db).add_user("u1", "u1@example.com")
        llm = FakeLLM(error=ConnectionError("ollama down"))
        channel = RecordingChannel()

        result = await build(db, channel, llm=llm).run(Slot.MORNING, now=NOW)

        assert result.mode is DigestMode.FALLBACK
        assert result.sent == 1
        assert llm.calls == 1

    @pytest.mark.asyncio
    async def test_llm_timeout_falls_back(self, db):
        await seed_morning(SqliteContentStore(db))
        await UserStore(db).add_user("u1", "u1@example.com")
        llm = FakeLLM(content="{}", delay=1.0)

        result = await build(db, RecordingChannel(), llm=llm, ENHANCED_TIMEOUT_SECONDS=0.01).run(
            Slot.MORNING, now=NOW
        )

        assert result.mode is DigestMode.FALLBACK
        assert result.sent == 1

    @pytest.mark.asyncio
    async def test_unviable_enhanced_content_falls_back(self, db):
        await seed_morning(SqliteContentStore(db))
        await UserStore(db).add_user("u1", "u1@example.com")
        llm = FakeLLM(content=json.dumps({"briefing": "", "clusters": [], "horizon": []}))

        result = await build(db, RecordingChannel(), llm=llm).run(Slot.MORNING, now=NOW)
        assert result.mode is DigestMode.FALLBACK

    @pytest.mark.asyncio
    async def test_enhanced_digest(self, db):
        weather, news = await seed_morning(SqliteContentStore(db))
        await UserStore(db).add_user("u1", "u1@example.com")
        llm = FakeLLM(content=json.dumps({
            "briefing": "A mild morning and a win for cyclists.",
            "clusters": [{"title": "Getting around", "summary": "New lanes.", "item_ids": [news.id, "bogus:1"]}],
            "horizon": ["Bike lane construction starts in April"],
        }))
        channel = RecordingChannel()

        result = await build(db, channel, llm=llm).run(Slot.MORNING, now=NOW)

        assert result.mode is DigestMode.ENHANCED
        assert "A mild morning and a win for cyclists." in channel.sent[0]["html"]
        assert "Bike lane construction starts in April" in channel.sent[0]["text"]

    @pytest.mark.asyncio
    async def test_skip_enhanced_never_calls_llm(self, db):
        await seed_morning(SqliteContentStore(db))
        await UserStore(db).add_user("u1", "u1@example.com")
        llm = FakeLLM(content="{}")

        result = await build(db, RecordingChannel(), llm=llm).run(
            Slot.MORNING, DigestJobOptions(skip_enhanced=True), now=NOW
        )

        assert result.mode is DigestMode.STANDARD
        assert llm.calls == 0

    @pytest.mark.asyncio
    async def test_one_user_failure_does_not_stop_others(self, db):
        await seed_morning(SqliteContentStore(db))
        users = UserStore(db)
        for name in ("ok", "rejected", "broken"):
            await users.add_user(name, f"{name}@example.com")
        channel = RecordingChannel(reject={"rejected@example.com"}, explode={"broken@example.com"})

        result = await build(db, channel).run(Slot.MORNING, DigestJobOptions(skip_enhanced=True), now=NOW)

        assert (result.sent, result.failed) == (1, 2)
        assert [m["to"] for m in channel.sent] == ["ok@example.com"]
        history = SendHistory(db)
        assert (await history.load_state("rejected", DAY, NOW)).delivered == {}
        assert (await history.load_state("broken", DAY, NOW)).delivered == {}

    @pytest.mark.asyncio
    async def test_status_change_cleared_after_delivery(self, db):
        store = SqliteContentStore(db)
        weather, news = await seed_morning(store)
        await store.upsert_by_external_id(
            make_item("City Council passes revised bike lane plan", external_id=news.external_id)
        )
        await UserStore(db).add_user("u1", "u1@example.com")

        await build(db, RecordingChannel()).run(Slot.MORNING, DigestJobOptions(skip_enhanced=True), now=NOW)

        assert (await store.get(news.id)).status_changed is False

    @pytest.mark.asyncio
    async def test_status_change_kept_when_a_delivery_failed(self, db):
        store = SqliteContentStore(db)
        weather, news = await seed_morning(store)
        await store.upsert_by_external_id(
            make_item("City Council passes revised bike lane plan", external_id=news.external_id)
        )
        users = UserStore(db)
        await users.add_user("ok", "ok@example.com")
        await users.add_user("rejected", "rejected@example.com")
        channel = RecordingChannel(reject={"rejected@example.com"})

        await build(db, channel).run(Slot.MORNING, DigestJobOptions(skip_enhanced=True), now=NOW)

        assert (await store.get(news.id)).status_changed is True

    @pytest.mark.asyncio
    async def test_failed_delivery_can_be_retried(self, db):
        await seed_morning(SqliteContentStore(db))
        await UserStore(db).add_user("u1", "u1@example.com")
        options = DigestJobOptions(skip_enhanced=True)

        failed = await build(db, RecordingChannel(reject={"u1@example.com"})).run(Slot.MORNING, options, now=NOW)
        channel = RecordingChannel()
        retried = await build(db, channel).run(Slot.MORNING, options, now=NOW)

        assert (failed.failed, retried.sent) == (1, 1)
        assert [m["to"] for m in channel.sent] == ["u1@example.com"]

    @pytest.mark.asyncio
    async def test_overlapping_runs_send_once(self, db):
        await seed_morning(SqliteContentStore(db))
        await UserStore(db).add_user("u1", "u1@example.com")
        channel = SlowChannel(delay=0.3)
        options = DigestJobOptions(skip_enhanced=True)
        # A zero TTL lets the second run take the lock over mid-send.
        first = build(db, channel, LOCK_TTL_SECONDS=0)
        second = build(db, channel, LOCK_TTL_SECONDS=0)

        async def late_start():
            await asyncio.sleep(0.1)
            return await second.run(Slot.MORNING, options, now=NOW)

        results = await asyncio.gather(first.run(Slot.MORNING, options, now=NOW), late_start())

        assert [r.mode for r in results] == [DigestMode.STANDARD, DigestMode.STANDARD]
        assert sum(r.sent for r in results) == 1
        assert [m["to"] for m in channel.sent] == ["u1@example.com"]

    @pytest.mark.asyncio
    async def test_concurrent_claims_leave_one_sender(self, db):
        await seed_morning(SqliteContentStore(db))
        await UserStore(db).add_user("u1", "u1@example.com")
        channel = SlowChannel(delay=0.2)
        options = DigestJobOptions(skip_enhanced=True)

        results = await asyncio.gather(
            build(db, channel, LOCK_TTL_SECONDS=0)._run_slot(Slot.MORNING, options, NOW),
            build(db, channel, LOCK_TTL_SECONDS=0)._run_slot(Slot.MORNING, options, NOW),
        )

        assert sorted((r.sent, r.skipped) for r in results) == [(0, 1), (1, 0)]
        assert len(channel.sent) == 1


class TestStatusChangeAcrossSlots:
    """Test an upstream reversal reaching a user who already has the first version"""

    @pytest.mark.asyncio
    async def test_revoked_asp_suspension_reappears_at_midday(self, db):
        store = SqliteContentStore(db)
        weather = make_item("Sunny, high of 58", ContentType.WEATHER_DAILY, source="nws")
        asp = make_item("Alternate side parking suspended today", ContentType.ASP_STATUS,
                        source="nyc_dot", external_id="asp-2026-03-10")
        for item in (weather, asp):
            await store.upsert_by_external_id(item)
        await UserStore(db).add_user("u1", "u1@example.com", tier=Tier.PREMIUM)
        channel = RecordingChannel()
        orchestrator = build(db, channel)
        options = DigestJobOptions(skip_enhanced=True)

        morning = await orchestrator.run(Slot.MORNING, options, now=NOW)
        await store.upsert_by_external_id(make_item(
            "Alternate side parking suspension revoked, rules in effect", ContentType.ASP_STATUS,
            source="nyc_dot", external_id="asp-2026-03-10",
        ))
        midday = await orchestrator.run(Slot.MIDDAY, options, now=NOW + timedelta(hours=3))

        assert (morning.sent, midday.sent) == (1, 1)
        assert "Alternate side parking suspended today" in channel.sent[0]["text"]
        assert "suspension revoked" in channel.sent[1]["text"]
        assert "Sunny, high of 58" not in channel.sent[1]["text"]

        state = await SendHistory(db).load_state("u1", DAY, NOW + timedelta(hours=3))
        assert state.delivered[asp.id].version == 2
        assert state.slots_sent == frozenset({"morning", "midday"})
        assert (await store.get(asp.id)).status_changed is False


class TestUrgentSweep:
    """Test out-of-schedule urgent delivery"""

    @pytest.mark.asyncio
    async def test_urgent_sweep_ignores_quiet_hours_but_not_repeats(self, db):
        await SqliteContentStore(db).upsert_by_external_id(make_item(
            "[A][C][E] No service between 59 St and 125 St",
            ContentType.TRANSIT_OUTAGE,
            source="mta",
            trust_tier=1,
            urgency=UrgencyClass.URGENT,
            severity=TransitSeverity.OUTAGE,
            created_at=NIGHT - timedelta(minutes=10),
        ))
        await UserStore(db).add_user("u1", "u1@example.com")
        channel = RecordingChannel()
        orchestrator = build(db, channel)

        first = await orchestrator.run_urgent_sweep(now=NIGHT)
        second = await orchestrator.run_urgent_sweep(now=NIGHT + timedelta(minutes=5))

        assert first.sent == 1
        assert second.sent == 0
        assert second.skipped == 1
        assert channel.sent[0]["subject"].startswith("🚨")

        # urgent sends leave the daily cap untouched
        state = await SendHistory(db).load_state("u1", date(2026, 3, 9), NIGHT)
        assert state.sends_today == 0

    @pytest.mark.asyncio
    async def test_nothing_urgent(self, db):
        await seed_morning(SqliteContentStore(db))
        await UserStore(db).add_user("u1", "u1@example.com")
        channel = RecordingChannel()

        result = await build(db, channel).run_urgent_sweep(now=NOW)

        assert result.sent == 0
        assert channel.sent == []
