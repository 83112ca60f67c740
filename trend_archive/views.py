"""
Read-side views composed from the aggregation engine.

Derived views are recomputed from the archive on demand and optionally cached
in the key-value store. Entries covering today (or the current week) expire
after ``cache.current_ttl_seconds``; historical entries never change and are
cached without a TTL. Empty results are never cached so a late scrape can
still fill them in.
"""

import logging
from datetime import date
from typing import Callable, List, Optional, TypeVar

from pydantic import TypeAdapter, ValidationError

from trend_archive.aggregation import AggregationEngine
from trend_archive.config import Config
from trend_archive.dates import today_utc, week_bounds
from trend_archive.errors import Err, attempt, unwrap_or
from trend_archive.kv_store import KeyValueStore
from trend_archive.models import (AvailableDates, CompareResult, LanguageShare,
                                  SearchResponse, TrendingRepo,
                                  WeeklyTrendingReport)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRENDING_LIST = TypeAdapter(List[TrendingRepo])
_LANGUAGE_LIST = TypeAdapter(List[LanguageShare])
_WEEKLY_REPORT = TypeAdapter(WeeklyTrendingReport)
_SEARCH_RESPONSE = TypeAdapter(SearchResponse)


class TrendingViews:
    def __init__(
        self,
        engine: AggregationEngine,
        cache: Optional[KeyValueStore] = None,
        config: Optional[Config] = None,
        today: Callable[[], date] = today_utc,
    ):
        self.engine = engine
        self.cache = cache
        self.config = config or Config()
        self._today = today

    def _cached(
        self,
        key: str,
        adapter: TypeAdapter,
        is_current: bool,
        compute: Callable[[], T],
        is_empty: Callable[[T], bool],
        current_ttl: Optional[int] = None,
    ) -> T:
        use_cache = self.cache is not None and self.config.cache.enabled

        if use_cache:
            try:
                cached = self.cache.get(key)
            except Exception as e:
                logger.error(f"cache_get_error key={key}: {e}")
                cached = None
            if cached is not None:
                try:
                    value = adapter.validate_json(cached)
                except ValidationError as e:
                    logger.error(f"cache_decode_error key={key}: {e}")
                    self._evict(key)
                else:
                    logger.info(f"cache_hit key={key}")
                    return value
            logger.info(f"cache_miss key={key}")

        value = compute()

        if use_cache and not is_empty(value):
            if current_ttl is None:
                current_ttl = self.config.cache.current_ttl_seconds
            ttl = current_ttl if is_current else None
            try:
                self.cache.put(key, adapter.dump_json(value).decode("utf-8"), ttl_seconds=ttl)
            except Exception as e:
                logger.error(f"cache_put_error key={key}: {e}")

        return value

    def _evict(self, key: str) -> None:
        try:
            self.cache.delete(key)
        except Exception as e:
            logger.error(f"cache_delete_error key={key}: {e}")

    def daily(self, target: date) -> List[TrendingRepo]:
        return self._cached(
            f"trending:{target.isoformat()}",
            _TRENDING_LIST,
            target == self._today(),
            lambda: self.enrich_daily(target, self.engine.get_trending_repos(target)),
            lambda repos: not repos,
        )

    def enrich_daily(self, target: date, repos: List[TrendingRepo]) -> List[TrendingRepo]:
        """
        Attach streak, new-entry flag and star history to each repo.

        Each enrichment is independent; a failing one falls back to its
        default (streak 1, not new, no history) without affecting the others.
        """
        if not repos:
            return []

        streaks = attempt(self.engine.calculate_streaks, target, repos)
        new_entries = attempt(self.engine.detect_new_entries, target, repos)
        history = attempt(self.engine.fetch_star_history, target, repos)

        for name, result in (("streak", streaks), ("new_entry", new_entries), ("star_history", history)):
            if isinstance(result, Err):
                logger.error(f"{name}_enrichment_error date={target.isoformat()}: {result.error}")

        streak_by_key = unwrap_or(streaks, {})
        new_keys = unwrap_or(new_entries, set())
        history_by_key = unwrap_or(history, {})

        return [
            repo.model_copy(update={
                "streak": streak_by_key.get(repo.key, 1),
                "is_new_entry": repo.key in new_keys,
                "star_history": history_by_key.get(repo.key),
            })
            for repo in repos
        ]

    def weekly(self, target: date) -> WeeklyTrendingReport:
        week_start, week_end = week_bounds(target)
        today = self._today()

        def compute() -> WeeklyTrendingReport:
            result = self.engine.get_weekly_trending_repos(week_start, week_end)
            partial = week_end > today or result.days_with_data < 7
            return WeeklyTrendingReport(
                week_start=week_start,
                week_end=week_end,
                partial=partial,
                repos=result.repos,
            )

        return self._cached(
            f"trending:week:{week_start.isoformat()}",
            _WEEKLY_REPORT,
            week_start <= today <= week_end,
            compute,
            lambda report: not report.repos,
        )

    def languages(self, target: date) -> List[LanguageShare]:
        return self._cached(
            f"languages:{target.isoformat()}",
            _LANGUAGE_LIST,
            target == self._today(),
            lambda: self.engine.get_language_distribution(target),
            lambda shares: not shares,
        )

    def weekly_languages(self, target: date) -> List[LanguageShare]:
        week_start, week_end = week_bounds(target)
        today = self._today()
        return self._cached(
            f"languages:week:{week_start.isoformat()}",
            _LANGUAGE_LIST,
            week_start <= today <= week_end,
            lambda: self.engine.get_weekly_language_distribution(week_start, week_end),
            lambda shares: not shares,
        )

    def compare(self, date1: date, date2: date) -> CompareResult:
        if date1 == date2:
            raise ValueError("date1 and date2 must be different dates")

        date1_repos = self.engine.get_trending_repos(date1)
        date2_repos = self.engine.get_trending_repos(date2)
        date1_keys = {r.key for r in date1_repos}
        date2_keys = {r.key for r in date2_repos}

        logger.info(
            f"compare_query date1={date1.isoformat()} date2={date2.isoformat()} "
            f"date1_count={len(date1_repos)} date2_count={len(date2_repos)}"
        )

        return CompareResult(
            date1_repos=date1_repos,
            date2_repos=date2_repos,
            common=[r for r in date1_repos if r.key in date2_keys],
            only_date1=[r for r in date1_repos if r.key not in date2_keys],
            only_date2=[r for r in date2_repos if r.key not in date1_keys],
        )

    def available_dates(self) -> AvailableDates:
        dates = self.engine.get_available_dates()
        return AvailableDates(
            earliest=dates[0] if dates else None,
            latest=dates[-1] if dates else None,
            dates=dates,
        )

    def search(self, query: str) -> SearchResponse:
        """
        Search archived repos by owner, name or description.

        Queries shorter than the minimum length give an empty response; an
        overlong query raises ``ValueError``. Results are cached briefly since
        new scrapes can change them.
        """
        query = (query or "").strip()

        def compute() -> SearchResponse:
            results = self.engine.search_repos(query)
            return SearchResponse(query=query, results=results, total=len(results))

        if len(query) < self.engine.config.search_min_query_length:
            return compute()

        return self._cached(
            f"search:{query}",
            _SEARCH_RESPONSE,
            True,
            compute,
            lambda response: not response.results,
            current_ttl=self.config.cache.search_ttl_seconds,
        )
