import re
from datetime import date, datetime
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from trend_archive.errors import ErrorKind

HEX_COLOR_RE = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")

RepoKey = Tuple[str, str]


def sanitize_hex_color(color: Optional[str]) -> Optional[str]:
    """Return the color if it is #RGB or #RRGGBB, otherwise None."""
    if not color:
        return None
    color = color.strip()
    return color if HEX_COLOR_RE.match(color) else None


def normalize_topics(raw) -> Tuple[str, ...]:
    if raw is None:
        return ()
    seen = []
    for entry in raw:
        if not isinstance(entry, str):
            continue
        topic = entry.strip().lower()
        if topic and topic not in seen:
            seen.append(topic)
    return tuple(seen)


class ParsedRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    owner: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: Optional[str] = None
    language: Optional[str] = None
    language_color: Optional[str] = None
    total_stars: int = Field(default=0, ge=0)
    forks: int = Field(default=0, ge=0)
    stars_today: int = Field(default=0, ge=0)
    topics: Tuple[str, ...] = ()

    @field_validator('language_color', mode='before')
    @classmethod
    def validate_color(cls, value):
        return sanitize_hex_color(value)

    @field_validator('topics', mode='before')
    @classmethod
    def validate_topics(cls, value):
        return normalize_topics(value)

    @property
    def key(self) -> RepoKey:
        return (self.owner, self.name)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


class ArchiveRow(ParsedRecord):
    trending_date: date
    scraped_at: datetime


class StarPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: date
    stars_today: int


class TrendingRepo(BaseModel):
    """One repo on a given day, with optional derived enrichments."""

    model_config = ConfigDict(frozen=True)

    owner: str
    name: str
    description: Optional[str] = None
    language: Optional[str] = None
    language_color: Optional[str] = None
    total_stars: int = 0
    forks: int = 0
    stars_today: int = 0
    topics: Tuple[str, ...] = ()
    streak: int = Field(default=1, ge=1)
    is_new_entry: bool = False
    star_history: Optional[List[StarPoint]] = None

    @property
    def key(self) -> RepoKey:
        return (self.owner, self.name)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


class WeeklyTrendingRepo(BaseModel):
    model_config = ConfigDict(frozen=True)

    owner: str
    name: str
    description: Optional[str] = None
    language: Optional[str] = None
    language_color: Optional[str] = None
    total_stars: int = 0
    forks: int = 0
    appearances: int
    total_stars_gained: int
    max_stars_today: int

    @property
    def key(self) -> RepoKey:
        return (self.owner, self.name)


class WeeklyTrendingResult(BaseModel):
    repos: List[WeeklyTrendingRepo]
    days_with_data: int


class WeeklyTrendingReport(BaseModel):
    week_start: date
    week_end: date
    partial: bool
    repos: List[WeeklyTrendingRepo]


class LanguageShare(BaseModel):
    language: str
    color: str
    count: int
    percentage: float


class DateCount(BaseModel):
    date: date
    count: int


class AvailableDates(BaseModel):
    earliest: Optional[date] = None
    latest: Optional[date] = None
    dates: List[date] = []


class CompareResult(BaseModel):
    date1_repos: List[TrendingRepo]
    date2_repos: List[TrendingRepo]
    common: List[TrendingRepo]
    only_date1: List[TrendingRepo]
    only_date2: List[TrendingRepo]


class SearchResult(BaseModel):
    """One matching repo with its most recent metadata and every date it trended."""

    owner: str
    name: str
    description: Optional[str] = None
    language: Optional[str] = None
    language_color: Optional[str] = None
    total_stars: int = 0
    forks: int = 0
    stars_today: int = 0
    dates: List[date]

    @property
    def key(self) -> RepoKey:
        return (self.owner, self.name)


class SearchResponse(BaseModel):
    query: str
    results: List[SearchResult]
    total: int


class ScrapeResult(BaseModel):
    success: bool
    record_count: int = 0
    rows_written: int = 0
    duration_ms: int = 0
    date: date
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class RetryAwareScrapeResult(ScrapeResult):
    skipped: bool = False
    skip_reason: Optional[str] = None
    attempt: Optional[int] = None
    recovered: bool = False
