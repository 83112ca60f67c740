"""Tests for the aggregation engine and the cached read views"""

import json
import os
import sys
from datetime import date, timedelta
from unittest.mock import MagicMock, patch

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from trend_archive.aggregation import (AggregationEngine, allocate_percentages,
                                       walk_streak)
from trend_archive.archive import TrendingArchive
from trend_archive.config import AggregationConfig, CacheConfig, Config
from trend_archive.kv_store import MemoryKeyValueStore
from trend_archive.models import ParsedRecord, StarPoint
from trend_archive.views import TrendingViews


def d(day: int, month: int = 2) -> date:
    return date(2026, month, day)


def record(owner="facebook", name="react", stars_today=100, **overrides):
    return ParsedRecord(owner=owner, name=name, stars_today=stars_today, **overrides)


@pytest.fixture
def archive(tmp_path):
    return TrendingArchive(database_url=f"sqlite:///{tmp_path / 'archive.db'}")


@pytest.fixture
def engine(archive):
    return AggregationEngine(archive)


def seed(archive, day, *records):
    archive.persist(list(records), day)


class TestAllocatePercentages:
    def test_equal_thirds(self):
        assert allocate_percentages([1, 1, 1]) == [33.4, 33.3, 33.3]

    def test_sums_to_exactly_one_hundred(self):
        for counts in ([1, 1, 1], [2, 3, 7], [5, 5, 5, 5, 5, 5, 1], [1, 2, 3, 4, 5, 6], [997, 2, 1]):
            shares = allocate_percentages(counts)
            assert sum(round(s * 10) for s in shares) == 1000

    def test_exact_split(self):
        assert allocate_percentages([1, 3]) == [25.0, 75.0]

    def test_single_and_empty(self):
        assert allocate_percentages([7]) == [100.0]
        assert allocate_percentages([]) == []


class TestWalkStreak:
    def test_consecutive_run(self):
        assert walk_streak(d(15), [d(15), d(14), d(13)]) == 3

    def test_gap_stops_the_walk(self):
        assert walk_streak(d(15), [d(15), d(14), d(12)]) == 2

    def test_minimum_is_one(self):
        assert walk_streak(d(15), []) == 1
        assert walk_streak(d(15), [d(13)]) == 1


class TestStreaks:
    def test_three_day_streak(self, archive, engine):
        for day in (13, 14, 15):
            seed(archive, d(day), record())

        assert engine.calculate_streaks(d(15), [("facebook", "react")]) == {("facebook", "react"): 3}

    def test_first_appearance(self, archive, engine):
        seed(archive, d(15), record())
        assert engine.calculate_streaks(d(15), [("facebook", "react")]) == {("facebook", "react"): 1}

    def test_gap_in_history(self, archive, engine):
        for day in (12, 14, 15):
            seed(archive, d(day), record())
        assert engine.calculate_streaks(d(15), [("facebook", "react")])[("facebook", "react")] == 2

    def test_later_rows_are_ignored(self, archive, engine):
        for day in (14, 15, 16):
            seed(archive, d(day), record())
        assert engine.calculate_streaks(d(15), [("facebook", "react")])[("facebook", "react")] == 2

    def test_lookback_window_caps_streak(self, archive):
        engine = AggregationEngine(archive, AggregationConfig(streak_lookback_days=2))
        for day in (10, 11, 12, 13, 14, 15):
            seed(archive, d(day), record())
        assert engine.calculate_streaks(d(15), [("facebook", "react")])[("facebook", "react")] == 3

    def test_empty_input(self, engine):
        assert engine.calculate_streaks(d(15), []) == {}


class TestNewEntries:
    def test_detects_first_appearances(self, archive, engine):
        seed(archive, d(14), record("old", "timer"))
        seed(archive, d(15), record("old", "timer"), record("fresh", "face"))

        new = engine.detect_new_entries(d(15), [("old", "timer"), ("fresh", "face")])

        assert new == {("fresh", "face")}

    def test_appearance_long_ago_is_not_new(self, archive, engine):
        seed(archive, d(1, 1), record("old", "timer"))
        seed(archive, d(15), record("old", "timer"))
        assert engine.detect_new_entries(d(15), [("old", "timer")]) == set()

    def test_only_requested_repos(self, archive, engine):
        seed(archive, d(15), record("a", "one"), record("b", "two"))
        assert engine.detect_new_entries(d(15), [("a", "one")]) == {("a", "one")}


class TestStarHistory:
    def test_chronological_points(self, archive, engine):
        seed(archive, d(13), record(stars_today=300))
        seed(archive, d(15), record(stars_today=500))
        seed(archive, d(14), record(stars_today=400))

        history = engine.fetch_star_history(d(15), [("facebook", "react")])

        assert history[("facebook", "react")] == [
            StarPoint(date=d(13), stars_today=300),
            StarPoint(date=d(14), stars_today=400),
            StarPoint(date=d(15), stars_today=500),
        ]

    def test_single_point_is_omitted(self, archive, engine):
        seed(archive, d(15), record())
        assert engine.fetch_star_history(d(15), [("facebook", "react")]) == {}


class TestWeeklyRollup:
    def test_aggregates_appearances_and_stars(self, archive, engine):
        for offset, stars in enumerate([100, 200, 150, 300, 250]):
            seed(archive, d(9) + timedelta(days=offset),
                 record(stars_today=stars, total_stars=1000 + offset, description=f"v{offset}"))

        result = engine.get_weekly_trending_repos(d(9), d(15))

        assert result.days_with_data == 5
        assert len(result.repos) == 1
        repo = result.repos[0]
        assert repo.appearances == 5
        assert repo.total_stars_gained == 1000
        assert repo.max_stars_today == 300
        assert repo.description == "v4"
        assert repo.total_stars == 1004

    def test_ranking(self, archive, engine):
        seed(archive, d(9), record("a", "often", 10), record("b", "bright", 900))
        seed(archive, d(10), record("a", "often", 10), record("c", "tied", 500), record("B", "alpha", 500))

        repos = engine.get_weekly_trending_repos(d(9), d(15)).repos

        assert [r.name for r in repos] == ["often", "bright", "alpha", "tied"]

    def test_rows_outside_range_are_ignored(self, archive, engine):
        seed(archive, d(8), record())
        seed(archive, d(16), record())

        result = engine.get_weekly_trending_repos(d(9), d(15))

        assert result.repos == []
        assert result.days_with_data == 0


class TestLanguageDistribution:
    def test_daily_shares(self, archive, engine):
        seed(archive, d(15),
             record("a", "1", language="Python", language_color="#3572A5"),
             record("a", "2", language="Python", language_color="#3572A5"),
             record("a", "3", language="Rust", language_color="#dea584"),
             record("a", "4"))

        shares = engine.get_language_distribution(d(15))

        assert [(s.language, s.count, s.percentage) for s in shares] == [
            ("Python", 2, 50.0), ("Rust", 1, 25.0), ("Unknown", 1, 25.0)
        ]
        assert shares[0].color == "#3572A5"
        assert shares[2].color == "#8b949e"

    def test_percentages_sum_to_one_hundred(self, archive, engine):
        seed(archive, d(15),
             record("a", "1", language="Go"),
             record("a", "2", language="C"),
             record("a", "3", language="Zig"))

        shares = engine.get_language_distribution(d(15))

        assert [s.percentage for s in shares] == [33.4, 33.3, 33.3]
        assert [s.language for s in shares] == ["C", "Go", "Zig"]

    def test_weekly_counts_distinct_repos(self, archive, engine):
        for day in (9, 10, 11):
            seed(archive, d(day), record("a", "snake", language="Python"))
        seed(archive, d(11), record("b", "crab", language="Rust"))

        shares = engine.get_weekly_language_distribution(d(9), d(15))

        assert [(s.language, s.count, s.percentage) for s in shares] == [
            ("Python", 1, 50.0), ("Rust", 1, 50.0)
        ]

    def test_empty_day(self, engine):
        assert engine.get_language_distribution(d(15)) == []


class TestSearch:
    def test_relevance_tiers(self, archive, engine):
        seed(archive, d(15),
             record("z", "ui", 900, description="Components built for React apps"),
             record("y", "preact", 800),
             record("x", "react-native", 700),
             record("facebook", "react", 10))

        results = engine.search_repos("react")

        assert [r.name for r in results] == ["react", "react-native", "preact", "ui"]

    def test_exact_full_name_ranks_first(self, archive, engine):
        seed(archive, d(15),
             record("someone", "facebook-react-clone", 900, description="mirror of facebook/react"),
             record("facebook", "react", 10, description="See facebook/react on GitHub"))

        results = engine.search_repos("facebook/react")

        assert [r.key for r in results] == [
            ("facebook", "react"), ("someone", "facebook-react-clone")
        ]

    def test_newer_and_bigger_rows_first_within_tier(self, archive, engine):
        seed(archive, d(14), record("a", "tool-old", 999, description="handy tool"))
        seed(archive, d(15),
             record("b", "tool-small", 5, description="handy tool"),
             record("c", "tool-big", 50, description="handy tool"))

        results = engine.search_repos("tool")

        assert [r.name for r in results] == ["tool-big", "tool-small", "tool-old"]

    def test_groups_dates_with_latest_metadata(self, archive, engine):
        seed(archive, d(13), record(description="old words", total_stars=100))
        seed(archive, d(15), record(description="new words", total_stars=300))

        results = engine.search_repos("react")

        assert len(results) == 1
        assert results[0].description == "new words"
        assert results[0].total_stars == 300
        assert results[0].dates == [d(15), d(13)]

    def test_wildcards_match_literally(self, archive, engine):
        seed(archive, d(15),
             record("a", "snake_case", description="reach 50% coverage"),
             record("b", "snakexcase", description="reach 500 coverage"))

        assert [r.name for r in engine.search_repos("snake_case")] == ["snake_case"]
        assert [r.name for r in engine.search_repos("50%")] == ["snake_case"]

    def test_case_insensitive_match(self, archive, engine):
        seed(archive, d(15), record("torvalds", "linux"))
        assert [r.name for r in engine.search_repos("LINUX")] == ["linux"]

    def test_short_query_returns_nothing(self, archive, engine):
        seed(archive, d(15), record("a", "x"))
        assert engine.search_repos(" x ") == []
        assert engine.search_repos("") == []

    def test_long_query_rejected(self, engine):
        with pytest.raises(ValueError, match="Query too long"):
            engine.search_repos("a" * 101)

    def test_result_cap(self, archive):
        engine = AggregationEngine(archive, AggregationConfig(search_max_results=2))
        seed(archive, d(15), record("a", "lib1", 30), record("a", "lib2", 20), record("a", "lib3", 10))
        seed(archive, d(14), record("a", "lib1", 5))

        results = engine.search_repos("lib")

        assert [r.name for r in results] == ["lib1", "lib2"]
        assert results[0].dates == [d(15), d(14)]


class TestDateQueries:
    def test_available_dates_and_counts(self, archive, engine):
        seed(archive, d(15), record("a", "1"), record("a", "2"))
        seed(archive, d(13), record("a", "1"))

        assert engine.get_available_dates() == [d(13), d(15)]
        assert [(c.date, c.count) for c in engine.get_date_repo_counts()] == [(d(13), 1), (d(15), 2)]


class TestTrendingViews:
    def make_views(self, engine, cache=None, today=d(15), **config):
        return TrendingViews(engine, cache=cache, config=Config(**config), today=lambda: today)

    def test_daily_includes_enrichments(self, archive, engine):
        seed(archive, d(14), record("old", "timer", 50))
        seed(archive, d(15), record("old", "timer", 80), record("fresh", "face", 300))

        repos = self.make_views(engine).daily(d(15))

        assert [r.full_name for r in repos] == ["fresh/face", "old/timer"]
        fresh, old = repos
        assert fresh.is_new_entry is True
        assert fresh.streak == 1
        assert fresh.star_history is None
        assert old.is_new_entry is False
        assert old.streak == 2
        assert [p.stars_today for p in old.star_history] == [50, 80]

    def test_failed_enrichment_falls_back(self, archive, engine):
        seed(archive, d(14), record())
        seed(archive, d(15), record())

        with patch.object(engine, "calculate_streaks", side_effect=RuntimeError("db hiccup")):
            repos = self.make_views(engine).daily(d(15))

        assert repos[0].streak == 1
        assert len(repos[0].star_history) == 2

    def test_daily_is_cached_with_ttl_for_today(self, archive, engine):
        seed(archive, d(15), record())
        cache = MagicMock()
        cache.get.return_value = None

        self.make_views(engine, cache=cache).daily(d(15))

        key, payload = cache.put.call_args[0]
        assert key == "trending:2026-02-15"
        assert json.loads(payload)[0]["owner"] == "facebook"
        assert cache.put.call_args[1]["ttl_seconds"] == 3600

    def test_historical_entries_have_no_ttl(self, archive, engine):
        seed(archive, d(10), record())
        cache = MagicMock()
        cache.get.return_value = None

        self.make_views(engine, cache=cache).languages(d(10))

        assert cache.put.call_args[0][0] == "languages:2026-02-10"
        assert cache.put.call_args[1]["ttl_seconds"] is None

    def test_cache_hit_skips_engine(self, archive, engine):
        seed(archive, d(15), record())
        cache = MemoryKeyValueStore()
        views = self.make_views(engine, cache=cache)
        first = views.daily(d(15))

        with patch.object(engine, "get_trending_repos", side_effect=AssertionError("not cached")):
            second = views.daily(d(15))

        assert first == second

    def test_empty_results_are_not_cached(self, engine):
        cache = MagicMock()
        cache.get.return_value = None

        assert self.make_views(engine, cache=cache).daily(d(15)) == []
        cache.put.assert_not_called()

    def test_cache_disabled(self, archive, engine):
        seed(archive, d(15), record())
        cache = MagicMock()

        views = TrendingViews(engine, cache=cache, config=Config(cache=CacheConfig(enabled=False)),
                              today=lambda: d(15))
        views.daily(d(15))

        cache.get.assert_not_called()
        cache.put.assert_not_called()

    def test_cache_errors_are_ignored(self, archive, engine):
        seed(archive, d(15), record())
        cache = MagicMock()
        cache.get.side_effect = ConnectionError("kv down")
        cache.put.side_effect = ConnectionError("kv down")

        assert len(self.make_views(engine, cache=cache).daily(d(15))) == 1

    def test_corrupt_cache_entry_is_replaced(self, archive, engine):
        seed(archive, d(10), record())
        cache = MemoryKeyValueStore()
        cache.put("trending:2026-02-10", "{not json")

        repos = self.make_views(engine, cache=cache).daily(d(10))

        assert [r.name for r in repos] == ["react"]
        assert json.loads(cache.get("trending:2026-02-10"))[0]["name"] == "react"

    def test_outdated_cache_entry_is_evicted(self, engine):
        cache = MemoryKeyValueStore()
        cache.put("languages:2026-02-10", '[{"lang": "Python"}]')

        assert self.make_views(engine, cache=cache).languages(d(10)) == []
        assert cache.get("languages:2026-02-10") is None

    def test_search_response(self, archive, engine):
        seed(archive, d(14), record("torvalds", "linux", 40))
        seed(archive, d(15), record("torvalds", "linux", 60))
        cache = MagicMock()
        cache.get.return_value = None

        response = self.make_views(engine, cache=cache).search("  linux ")

        assert response.query == "linux"
        assert response.total == 1
        assert response.results[0].dates == [d(15), d(14)]
        assert cache.put.call_args[0][0] == "search:linux"
        assert cache.put.call_args[1]["ttl_seconds"] == 60

    def test_short_search_skips_cache(self, engine):
        cache = MagicMock()

        response = self.make_views(engine, cache=cache).search("a")

        assert response.total == 0
        assert response.results == []
        cache.get.assert_not_called()

    def test_long_search_rejected(self, engine):
        with pytest.raises(ValueError):
            self.make_views(engine).search("x" * 150)

    def test_weekly_partial_for_current_week(self, archive, engine):
        seed(archive, d(9), record())
        cache = MagicMock()
        cache.get.return_value = None

        report = self.make_views(engine, cache=cache, today=d(12)).weekly(d(11))

        assert report.week_start == d(9)
        assert report.week_end == d(15)
        assert report.partial is True
        assert cache.put.call_args[0][0] == "trending:week:2026-02-09"
        assert cache.put.call_args[1]["ttl_seconds"] == 3600

    def test_weekly_complete_when_every_day_present(self, archive, engine):
        for day in range(9, 16):
            seed(archive, d(day), record())

        report = self.make_views(engine, today=d(20)).weekly(d(15))

        assert report.partial is False
        assert report.repos[0].appearances == 7

    def test_past_week_with_missing_day_is_partial(self, archive, engine):
        for day in range(9, 15):
            seed(archive, d(day), record())

        assert self.make_views(engine, today=d(20)).weekly(d(9)).partial is True

    def test_weekly_languages_key(self, archive, engine):
        seed(archive, d(10), record(language="Python"))
        cache = MagicMock()
        cache.get.return_value = None

        shares = self.make_views(engine, cache=cache, today=d(20)).weekly_languages(d(12))

        assert shares[0].language == "Python"
        assert cache.put.call_args[0][0] == "languages:week:2026-02-09"
        assert cache.put.call_args[1]["ttl_seconds"] is None

    def test_compare(self, archive, engine):
        seed(archive, d(14), record("a", "stays", 10), record("b", "leaves", 20))
        seed(archive, d(15), record("a", "stays", 30), record("c", "arrives", 40))

        result = self.make_views(engine).compare(d(14), d(15))

        assert [r.name for r in result.common] == ["stays"]
        assert [r.name for r in result.only_date1] == ["leaves"]
        assert [r.name for r in result.only_date2] == ["arrives"]
        assert len(result.date1_repos) == 2
        assert len(result.date2_repos) == 2

    def test_compare_same_date_rejected(self, engine):
        with pytest.raises(ValueError):
            self.make_views(engine).compare(d(15), d(15))

    def test_available_dates(self, archive, engine):
        views = self.make_views(engine)
        empty = views.available_dates()
        assert empty.earliest is None and empty.latest is None and empty.dates == []

        seed(archive, d(15), record())
        seed(archive, d(12), record())

        dates = views.available_dates()
        assert dates.earliest == d(12)
        assert dates.latest == d(15)
        assert dates.dates == [d(12), d(15)]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
