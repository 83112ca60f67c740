"""Read-only analytics over the trending archive."""

import json
import logging
from collections import OrderedDict
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Set, Union

from sqlalchemy import and_, case, distinct, func, or_
from sqlalchemy.orm import aliased

from trend_archive.archive import TrendingArchive, TrendingRepoRecord
from trend_archive.config import AggregationConfig
from trend_archive.dates import days_before
from trend_archive.models import (DateCount, LanguageShare, RepoKey, SearchResult,
                                  StarPoint, TrendingRepo, WeeklyTrendingRepo,
                                  WeeklyTrendingResult)

logger = logging.getLogger(__name__)

# Percentages are allocated in integer tenths; 1000 tenths == 100.0%
PERCENT_TENTHS = 1000

RepoRef = Union[RepoKey, TrendingRepo]


def _repo_keys(repos: Iterable[RepoRef]) -> Set[RepoKey]:
    return {r if isinstance(r, tuple) else r.key for r in repos}


def allocate_percentages(counts: Sequence[int]) -> List[float]:
    """
    Convert counts into one-decimal percentages that sum to exactly 100.0.

    Uses the largest-remainder method on integer tenths: every share is floored,
    then the leftover tenths go one at a time to the largest remainders, with
    ties resolved by position.
    """
    total = sum(counts)
    if total <= 0:
        return [0.0 for _ in counts]

    floors = [count * PERCENT_TENTHS // total for count in counts]
    remainders = [count * PERCENT_TENTHS % total for count in counts]
    shortfall = PERCENT_TENTHS - sum(floors)

    by_remainder = sorted(range(len(counts)), key=lambda i: -remainders[i])
    for index in by_remainder[:shortfall]:
        floors[index] += 1

    return [tenths / 10 for tenths in floors]


def walk_streak(target: date, dates_desc: Sequence[date]) -> int:
    """Count consecutive days ending at ``target``; never less than 1."""
    expected = target
    streak = 0
    for day in dates_desc:
        if day != expected:
            break
        streak += 1
        expected -= timedelta(days=1)
    return max(streak, 1)


def _to_trending_repo(record: TrendingRepoRecord) -> TrendingRepo:
    return TrendingRepo(
        owner=record.repo_owner,
        name=record.repo_name,
        description=record.description,
        language=record.language,
        language_color=record.language_color,
        total_stars=record.total_stars,
        forks=record.forks,
        stars_today=record.stars_today,
        topics=tuple(json.loads(record.topics_json or "[]")),
    )


class AggregationEngine:
    """
    Streaks, new entries, star history, weekly rollups, language shares and search.

    Every query opens its own session so the operations stay independent.
    """

    def __init__(self, archive: TrendingArchive, config: Optional[AggregationConfig] = None):
        self.archive = archive
        self.config = config or AggregationConfig()

    def get_trending_repos(self, target: date) -> List[TrendingRepo]:
        """Repos for a date, ordered by stars gained that day."""
        T = TrendingRepoRecord
        with self.archive.get_session() as session:
            records = session.query(T).filter(
                T.trending_date == target
            ).order_by(T.stars_today.desc(), T.repo_owner, T.repo_name).all()
            return [_to_trending_repo(r) for r in records]

    def calculate_streaks(self, target: date, repos: Iterable[RepoRef]) -> Dict[RepoKey, int]:
        wanted = _repo_keys(repos)
        if not wanted:
            return {}

        T = TrendingRepoRecord
        on_day = aliased(TrendingRepoRecord)
        lookback = days_before(target, self.config.streak_lookback_days)

        with self.archive.get_session() as session:
            rows = session.query(T.repo_owner, T.repo_name, T.trending_date).join(
                on_day,
                and_(
                    on_day.repo_owner == T.repo_owner,
                    on_day.repo_name == T.repo_name,
                    on_day.trending_date == target,
                ),
            ).filter(
                T.trending_date <= target,
                T.trending_date >= lookback,
            ).order_by(T.repo_owner, T.repo_name, T.trending_date.desc()).all()

        dates_by_repo: Dict[RepoKey, List[date]] = {}
        for owner, name, day in rows:
            dates_by_repo.setdefault((owner, name), []).append(day)

        return {key: walk_streak(target, dates_by_repo.get(key, [])) for key in wanted}

    def detect_new_entries(self, target: date, repos: Iterable[RepoRef]) -> Set[RepoKey]:
        """Repos on ``target`` with no archive row on any earlier date."""
        wanted = _repo_keys(repos)
        if not wanted:
            return set()

        T = TrendingRepoRecord
        prior = aliased(TrendingRepoRecord)

        with self.archive.get_session() as session:
            seen_before = session.query(prior.id).filter(
                prior.repo_owner == T.repo_owner,
                prior.repo_name == T.repo_name,
                prior.trending_date < target,
            ).correlate(T).exists()
            rows = session.query(T.repo_owner, T.repo_name).filter(
                T.trending_date == target,
                ~seen_before,
            ).all()

        return {(owner, name) for owner, name in rows if (owner, name) in wanted}

    def fetch_star_history(self, target: date, repos: Iterable[RepoRef]) -> Dict[RepoKey, List[StarPoint]]:
        """Chronological stars_today points; repos with fewer than two points are omitted."""
        wanted = _repo_keys(repos)
        if not wanted:
            return {}

        T = TrendingRepoRecord
        on_day = aliased(TrendingRepoRecord)
        lookback = days_before(target, self.config.star_history_lookback_days)

        with self.archive.get_session() as session:
            rows = session.query(T.repo_owner, T.repo_name, T.trending_date, T.stars_today).join(
                on_day,
                and_(
                    on_day.repo_owner == T.repo_owner,
                    on_day.repo_name == T.repo_name,
                    on_day.trending_date == target,
                ),
            ).filter(
                T.trending_date <= target,
                T.trending_date >= lookback,
            ).order_by(T.repo_owner, T.repo_name, T.trending_date).all()

        history: Dict[RepoKey, List[StarPoint]] = {}
        for owner, name, day, stars_today in rows:
            history.setdefault((owner, name), []).append(StarPoint(date=day, stars_today=stars_today))

        return {key: points for key, points in history.items() if key in wanted and len(points) >= 2}

    def get_weekly_trending_repos(self, start: date, end: date) -> WeeklyTrendingResult:
        """Per-repo rollup over [start, end], ranked by appearances then stars gained."""
        T = TrendingRepoRecord
        with self.archive.get_session() as session:
            records = session.query(T).filter(
                T.trending_date >= start,
                T.trending_date <= end,
            ).order_by(T.trending_date, T.id).all()

            days_with_data = session.query(func.count(distinct(T.trending_date))).filter(
                T.trending_date >= start,
                T.trending_date <= end,
            ).scalar() or 0

            groups: "OrderedDict[RepoKey, dict]" = OrderedDict()
            for record in records:
                key = (record.repo_owner, record.repo_name)
                group = groups.setdefault(key, {
                    "appearances": 0,
                    "total_stars_gained": 0,
                    "max_stars_today": 0,
                })
                group["appearances"] += 1
                group["total_stars_gained"] += record.stars_today
                group["max_stars_today"] = max(group["max_stars_today"], record.stars_today)
                # Rows are ascending by date, so the last one wins
                group.update(
                    description=record.description,
                    language=record.language,
                    language_color=record.language_color,
                    total_stars=record.total_stars,
                    forks=record.forks,
                )

        repos = [
            WeeklyTrendingRepo(owner=owner, name=name, **fields)
            for (owner, name), fields in groups.items()
        ]
        repos.sort(key=lambda r: (
            -r.appearances,
            -r.total_stars_gained,
            r.owner.lower(),
            r.name.lower(),
        ))
        return WeeklyTrendingResult(repos=repos, days_with_data=days_with_data)

    def get_language_distribution(self, target: date) -> List[LanguageShare]:
        return self._language_distribution(target, target, distinct_repos=False)

    def get_weekly_language_distribution(self, start: date, end: date) -> List[LanguageShare]:
        return self._language_distribution(start, end, distinct_repos=True)

    def _language_distribution(self, start: date, end: date, distinct_repos: bool) -> List[LanguageShare]:
        T = TrendingRepoRecord
        if distinct_repos:
            count_expr = func.count(distinct(T.repo_owner + "/" + T.repo_name))
        else:
            count_expr = func.count(T.id)

        with self.archive.get_session() as session:
            rows = session.query(
                T.language,
                func.max(T.language_color),
                count_expr,
            ).filter(
                T.trending_date >= start,
                T.trending_date <= end,
            ).group_by(T.language).all()

        unknown = self.config.unknown_language
        buckets: Dict[str, dict] = {}
        for language, color, count in rows:
            name = language or unknown
            bucket = buckets.setdefault(name, {"color": None, "count": 0})
            bucket["count"] += count
            bucket["color"] = bucket["color"] or color

        ordered = sorted(buckets.items(), key=lambda item: (-item[1]["count"], item[0]))
        percentages = allocate_percentages([bucket["count"] for _, bucket in ordered])

        return [
            LanguageShare(
                language=name,
                color=bucket["color"] or self.config.unknown_language_color,
                count=bucket["count"],
                percentage=percentage,
            )
            for (name, bucket), percentage in zip(ordered, percentages)
        ]

    def search_repos(self, query: str) -> List[SearchResult]:
        """
        Case-insensitive substring search over owner, name and description.

        Matches are ranked by tier (exact owner/name, exact name, name prefix,
        owner or name contains, description only), then newest date and most
        stars. Rows are grouped per repo; the first row seen supplies the
        metadata and later rows only add dates.

        Raises:
            ValueError: if the query is longer than ``search_max_query_length``
        """
        query = (query or "").strip()
        if len(query) < self.config.search_min_query_length:
            return []
        if len(query) > self.config.search_max_query_length:
            raise ValueError(
                f"Query too long. Maximum {self.config.search_max_query_length} characters."
            )

        T = TrendingRepoRecord
        # autoescape makes % and _ in the query match literally
        owner_or_name_match = or_(
            T.repo_owner.icontains(query, autoescape=True),
            T.repo_name.icontains(query, autoescape=True),
        )
        tier = case(
            (T.repo_owner + "/" + T.repo_name == query, 0),
            (T.repo_name == query, 1),
            (T.repo_name.istartswith(query, autoescape=True), 2),
            (owner_or_name_match, 3),
            else_=4,
        )

        with self.archive.get_session() as session:
            records = session.query(T).filter(
                or_(owner_or_name_match, T.description.icontains(query, autoescape=True))
            ).order_by(
                tier, T.trending_date.desc(), T.stars_today.desc()
            ).limit(self.config.search_row_limit).all()

            grouped: "OrderedDict[RepoKey, SearchResult]" = OrderedDict()
            for record in records:
                key = (record.repo_owner, record.repo_name)
                existing = grouped.get(key)
                if existing is not None:
                    existing.dates.append(record.trending_date)
                    continue
                if len(grouped) >= self.config.search_max_results:
                    continue
                grouped[key] = SearchResult(
                    owner=record.repo_owner,
                    name=record.repo_name,
                    description=record.description,
                    language=record.language,
                    language_color=record.language_color,
                    total_stars=record.total_stars,
                    forks=record.forks,
                    stars_today=record.stars_today,
                    dates=[record.trending_date],
                )

        logger.info(f"search_query query={query!r} rows={len(records)} results={len(grouped)}")
        return list(grouped.values())

    def get_date_repo_counts(self) -> List[DateCount]:
        T = TrendingRepoRecord
        with self.archive.get_session() as session:
            rows = session.query(T.trending_date, func.count(T.id)).group_by(
                T.trending_date
            ).order_by(T.trending_date).all()
        return [DateCount(date=day, count=count) for day, count in rows]

    def get_available_dates(self) -> List[date]:
        T = TrendingRepoRecord
        with self.archive.get_session() as session:
            rows = session.query(T.trending_date).distinct().order_by(T.trending_date).all()
        return [row[0] for row in rows]
