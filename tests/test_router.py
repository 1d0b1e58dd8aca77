"""Freshness filter and slot routing tests"""

from datetime import timedelta

from conftest import NOW, make_item
from nycping.core.entities import ContentType, Slot, TransitSeverity, UrgencyClass
from nycping.processing.freshness import is_expired, is_fresh, partition_fresh
from nycping.processing.router import SlotRouter, select_immediate


class TestFreshness:
    """Test urgency-based freshness windows"""

    def test_age_equal_to_window_is_fresh(self, config):
        item = make_item(urgency=UrgencyClass.URGENT, created_at=NOW - timedelta(hours=1))
        assert is_fresh(item, NOW, config.freshness_hours)

    def test_one_millisecond_past_window_is_stale(self, config):
        item = make_item(urgency=UrgencyClass.URGENT, created_at=NOW - timedelta(hours=1, milliseconds=1))
        assert not is_fresh(item, NOW, config.freshness_hours)

    def test_batchable_lasts_three_days(self, config):
        item = make_item(urgency=UrgencyClass.BATCHABLE, created_at=NOW - timedelta(hours=71))
        assert is_fresh(item, NOW, config.freshness_hours)

    def test_expiry_overrides_urgency(self, config):
        item = make_item(
            "Flash flood warning",
            ContentType.WEATHER_SEVERE,
            urgency=UrgencyClass.URGENT,
            ends_at=NOW - timedelta(seconds=1),
        )
        assert is_expired(item, NOW)
        usable, skipped = partition_fresh([item], NOW, config.freshness_hours)
        assert usable == []
        assert skipped == [(item, "expired")]


class TestSlotRouter:
    """Test eligibility matrix and capacity routing"""

    def test_required_weather_with_tip(self, config):
        weather = make_item("Sunny, high of 58", ContentType.WEATHER_DAILY, source="nws")
        tip = make_item("How to dispute a parking ticket", ContentType.TIPS)
        plan = SlotRouter(config).route([weather, tip], Slot.MORNING, NOW)

        assert {i.id for i in plan.included} == {weather.id, tip.id}
        assert plan.required_ids == frozenset({weather.id})
        assert plan.counted_items == [weather]
        assert plan.has_required

    def test_overflow_is_deferred_to_next_slot(self, config):
        items = [make_item(f"Neighborhood story {n}", priority_score=50 + n) for n in range(10)]
        plan = SlotRouter(config).route(items, Slot.MORNING, NOW)

        assert len(plan.included) == 8
        assert len(plan.deferred) == 2
        assert all(d.to_slot is Slot.MIDDAY for d in plan.deferred)
        # lowest scores roll over
        assert {d.item.priority_score for d in plan.deferred} == {50, 51}

    def test_fallback_only_fills_to_minimum(self, config):
        advisory = make_item("Heat advisory this afternoon", ContentType.WEATHER_ADVISORY, source="nws")
        lotteries = [make_item(f"Housing lottery {n}", ContentType.HOUSING) for n in range(3)]
        plan = SlotRouter(config).route([advisory, *lotteries], Slot.MORNING, NOW)

        assert len(plan.included) == 2
        assert len(plan.deferred) == 2

    def test_excluded_stale_and_non_actionable_are_skipped(self, config):
        excluded = make_item("ASP in effect tomorrow", ContentType.ASP_TOMORROW)
        stale = make_item("Old story", created_at=NOW - timedelta(hours=25))
        minor = make_item(
            "[7] Minor delays", ContentType.TRANSIT_ALERT, source="mta", severity=TransitSeverity.MINOR
        )
        plan = SlotRouter(config).route([excluded, stale, minor], Slot.MORNING, NOW)

        reasons = {s.item.id: s.reason for s in plan.skipped}
        assert reasons == {
            excluded.id: "excluded_for_slot",
            stale.id: "stale",
            minor.id: "non_actionable",
        }
        assert plan.included == []
        assert plan.deferred == []

    def test_evening_wraps_to_morning(self, config):
        items = [make_item(f"Evening story {n}") for n in range(12)]
        plan = SlotRouter(config).route(items, Slot.EVENING, NOW)
        assert {d.to_slot for d in plan.deferred} == {Slot.MORNING}

    def test_immediate_items(self, config):
        outage = make_item(
            "[A] No service", ContentType.TRANSIT_OUTAGE, source="mta",
            severity=TransitSeverity.OUTAGE, priority_score=100,
        )
        news = make_item("Council hearing today", priority_score=90)
        plan = SlotRouter(config).route([outage, news], Slot.MORNING, NOW)

        assert plan.immediate == [outage]
        assert select_immediate([outage, news], NOW, config) == [outage]
