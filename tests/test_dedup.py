"""Dedup key, ingestion, cross-source and cross-type deduplication tests"""

from datetime import timedelta

from conftest import NOW, make_item
from nycping.core.entities import ContentType
from nycping.processing.dedup_key import (
    canonical_url,
    content_fingerprint,
    generate_dedup_key,
    normalize_title,
    title_similarity,
)
from nycping.processing.deduplicator import (
    CrossSourceDeduplicator,
    IngestionDeduplicator,
    cross_type_dedup,
    preferred,
)


def fixed_similarity(value):
    return lambda a, b: value


class TestDedupKey:
    """Test key generation and title normalization"""

    def test_key_is_prefixed_with_content_type(self):
        assert generate_dedup_key(ContentType.LOCAL_NEWS, "Café Opens — in SoHo!") == "local_news:cafe opens in soho"

    def test_same_title_different_type_never_collides(self):
        title = "Water main break on 5th Ave"
        assert generate_dedup_key(ContentType.LOCAL_NEWS, title) != generate_dedup_key(
            ContentType.STREET_CLOSURE, title
        )

    def test_normalization_ignores_case_and_punctuation(self):
        assert normalize_title("  G Train: SUSPENDED!! ") == normalize_title("g train suspended")

    def test_identical_titles_are_fully_similar(self):
        assert title_similarity("G train suspended", "g train, suspended") == 1.0

    def test_empty_title_is_not_similar(self):
        assert title_similarity("", "anything") == 0.0

    def test_canonical_url_drops_tracking(self):
        assert canonical_url("https://www.Gothamist.com/news/x/?utm_source=tw&id=3") == canonical_url(
            "https://gothamist.com/news/x?id=3"
        )

    def test_rephrased_transit_headlines_share_fingerprint(self):
        assert content_fingerprint("G train delays — signal problem") == "g train|train"
        assert content_fingerprint("G Train Service Disrupted by Signal Issue") == "g train|train"

    def test_title_without_entities_has_no_fingerprint(self):
        assert content_fingerprint("City Council passes new bike lane plan") == ""
        assert content_fingerprint("Bus") == ""


class TestIngestionDeduplicator:
    """Test same-source deduplication"""

    def test_exact_duplicate_in_batch_is_rejected(self):
        a = make_item("L train delays at Bedford", priority_score=60)
        b = make_item("L train delays at Bedford", priority_score=40)
        outcome = IngestionDeduplicator().filter([a, b], [], NOW)

        assert outcome.accepted_ids == [a.id]
        assert outcome.rejected[0].item is b
        assert outcome.rejected[0].reason == "exact_key_match"

    def test_duplicate_of_stored_item_is_rejected(self):
        stored = make_item("L train delays at Bedford", created_at=NOW - timedelta(hours=3))
        candidate = make_item("L train delays at Bedford")
        outcome = IngestionDeduplicator().filter([candidate], [stored], NOW)

        assert outcome.accepted == []

    def test_stored_item_outside_window_is_ignored(self):
        stored = make_item("L train delays at Bedford", created_at=NOW - timedelta(hours=25))
        candidate = make_item("L train delays at Bedford")
        outcome = IngestionDeduplicator().filter([candidate], [stored], NOW)

        assert outcome.accepted_ids == [candidate.id]

    def test_different_tags_are_not_duplicates(self):
        g = make_item("Delays on the line", content_type=ContentType.TRANSIT_DELAY, source="mta", tags=frozenset({"G"}))
        f = make_item("Delays on the line", content_type=ContentType.TRANSIT_DELAY, source="mta", tags=frozenset({"F"}))
        outcome = IngestionDeduplicator().filter([g, f], [], NOW)

        assert len(outcome.accepted) == 2

    def test_same_upstream_record_is_an_update_not_a_duplicate(self):
        stored = make_item("ASP suspended today", external_id="asp-1")
        update = make_item("ASP suspended today", external_id="asp-1")
        outcome = IngestionDeduplicator().filter([update], [stored], NOW)

        assert outcome.accepted_ids == [update.id]

    def test_filter_is_idempotent(self):
        batch = [
            make_item("Fire on Atlantic Ave", priority_score=70),
            make_item("Fire on Atlantic Ave", priority_score=30),
            make_item("New ferry route to Astoria"),
        ]
        dedup = IngestionDeduplicator()
        first = dedup.filter(batch, [], NOW)
        second = dedup.filter(batch, first.accepted, NOW)

        assert sorted(first.accepted_ids) == sorted(second.accepted_ids)

    def test_similarity_threshold_is_inclusive(self):
        a = make_item("Water main break floods street")
        b = make_item("Water main break floods streets")

        at_threshold = IngestionDeduplicator(similarity=fixed_similarity(0.80)).filter([a, b], [], NOW)
        below = IngestionDeduplicator(similarity=fixed_similarity(0.79)).filter([a, b], [], NOW)

        assert len(at_threshold.accepted) == 1
        assert len(below.accepted) == 2


class TestCrossSourceDeduplicator:
    """Test cross-outlet deduplication and tie-breaks"""

    def test_higher_trust_existing_item_wins(self):
        mta = make_item("G train suspended between Court Sq and Hoyt", source="mta", trust_tier=1,
                        created_at=NOW - timedelta(hours=1))
        amny = make_item("G trains suspended between Court Sq & Hoyt-Schermerhorn", source="amny", trust_tier=2)
        outcome = CrossSourceDeduplicator(similarity=fixed_similarity(0.86)).filter([amny], [mta], NOW)

        assert outcome.accepted == []
        assert outcome.rejected[0].duplicate_of is mta

    def test_higher_trust_candidate_supersedes_existing(self):
        amny = make_item("G trains suspended", source="amny", trust_tier=2, created_at=NOW - timedelta(hours=1))
        mta = make_item("G train suspended", source="mta", trust_tier=1)
        outcome = CrossSourceDeduplicator(similarity=fixed_similarity(0.86)).filter([mta], [amny], NOW)

        assert outcome.accepted_ids == [mta.id]
        assert outcome.superseded == [amny]

    def test_same_source_is_never_a_cross_source_match(self):
        a = make_item("Same story", source="gothamist")
        b = make_item("Same story", source="gothamist")
        assert CrossSourceDeduplicator().match_reason(a, b) is None

    def test_same_canonical_url_matches(self):
        a = make_item("Headline one", source="gothamist", url="https://example.com/story?utm_source=x")
        b = make_item("Completely different words", source="amny", url="https://example.com/story")
        assert CrossSourceDeduplicator(similarity=fixed_similarity(0.0)).match_reason(a, b) == "same_url"

    def test_tie_break_on_score(self):
        low = make_item("Story", source="a", trust_tier=1, priority_score=40)
        high = make_item("Story", source="b", trust_tier=1, priority_score=60)
        assert preferred(low, high) is high

    def test_tie_break_on_created_at(self):
        early = make_item("Story", source="a", trust_tier=1, created_at=NOW - timedelta(hours=2))
        late = make_item("Story", source="b", trust_tier=1, created_at=NOW - timedelta(hours=1))
        assert preferred(late, early) is early

    def test_tie_break_on_id(self):
        a = make_item("Story", source="a", external_id="1")
        b = make_item("Story", source="b", external_id="1")
        assert preferred(b, a) is a


class TestCrossTypeDedup:
    """Test the digest-assembly dedup across content types"""

    def test_higher_score_representative_survives(self):
        news = make_item("Water main break floods Midtown", ContentType.LOCAL_NEWS, priority_score=50)
        closure = make_item("Water main break floods Midtown", ContentType.STREET_CLOSURE,
                            source="nyc_dot", priority_score=60)
        outcome = cross_type_dedup([news, closure], fuzzy=False)

        assert outcome.accepted_ids == [closure.id]

    def test_equal_score_keeps_earlier_family(self):
        news = make_item("Water main break floods Midtown", ContentType.LOCAL_NEWS)
        closure = make_item("Water main break floods Midtown", ContentType.STREET_CLOSURE, source="nyc_dot")
        outcome = cross_type_dedup([closure, news], fuzzy=False)

        assert outcome.accepted_ids == [news.id]
        assert outcome.rejected[0].item is closure

    def test_distinct_stories_all_survive(self):
        items = [
            make_item("Water main break floods Midtown"),
            make_item("Sample sale at Chelsea Market", ContentType.SAMPLE_SALE),
        ]
        outcome = cross_type_dedup(items, fuzzy=False)
        assert len(outcome.accepted) == 2

    def test_rephrased_story_collapses_across_sources(self):
        gothamist = make_item("G train delays — signal problem", source="gothamist", priority_score=70)
        amny = make_item("G Train Service Disrupted by Signal Issue", ContentType.TRANSIT_DELAY,
                         source="amny", priority_score=60)
        outcome = cross_type_dedup([amny, gothamist])

        assert outcome.accepted_ids == [gothamist.id]
        assert outcome.rejected[0].reason == "same_fingerprint"

    def test_same_source_fingerprint_is_not_a_collision(self):
        delays = make_item("G train delays", ContentType.TRANSIT_DELAY, source="mta")
        reroute = make_item("G train reroute this weekend", ContentType.TRANSIT_ALERT, source="mta")
        assert len(cross_type_dedup([delays, reroute], fuzzy=False).accepted) == 2


class TestGTrainScenario:
    """Test the rephrased G train story with the default similarity"""

    def test_lower_scored_outlet_is_dropped(self):
        gothamist = make_item("G train delays — signal problem", source="gothamist",
                              priority_score=70, created_at=NOW - timedelta(minutes=30))
        amny = make_item("G Train Service Disrupted by Signal Issue", source="amny", priority_score=60)
        outcome = CrossSourceDeduplicator().filter([amny], [gothamist], NOW)

        assert outcome.accepted == []
        assert outcome.rejected[0].duplicate_of is gothamist
        assert outcome.rejected[0].reason == "same_fingerprint"

    def test_either_arrival_order_keeps_gothamist(self):
        gothamist = make_item("G train delays — signal problem", source="gothamist", priority_score=70)
        amny = make_item("G Train Service Disrupted by Signal Issue", source="amny",
                         priority_score=60, created_at=NOW - timedelta(minutes=30))
        outcome = CrossSourceDeduplicator().filter([gothamist], [amny], NOW)

        assert outcome.accepted_ids == [gothamist.id]
        assert outcome.superseded == [amny]
