import logging
import time
from datetime import date
from enum import Enum
from typing import Callable, List, Optional

from trend_archive.archive import TrendingArchive
from trend_archive.config import Config
from trend_archive.dates import today_utc
from trend_archive.errors import (Err, ErrorKind, FetchError, Ok, ParseError,
                                  PersistError, Result, ScrapeError)
from trend_archive.fetcher import TrendingFetcher, jitter_delay
from trend_archive.models import ParsedRecord, ScrapeResult
from trend_archive.topics import TopicEnricher
from trend_archive.trending_parser import TrendingPageParser

logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    PARSING = "parsing"
    ENRICHING = "enriching"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


def _as_stage_error(error: Exception, error_cls) -> ScrapeError:
    if isinstance(error, error_cls):
        return error
    return error_cls(str(error) or error.__class__.__name__)


class ScrapePipeline:
    """Fetch -> parse -> enrich -> persist, one stage at a time."""

    def __init__(
        self,
        archive: TrendingArchive,
        config: Optional[Config] = None,
        fetcher: Optional[TrendingFetcher] = None,
        parser: Optional[TrendingPageParser] = None,
        enricher: Optional[TopicEnricher] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or Config()
        self.archive = archive
        self.fetcher = fetcher or TrendingFetcher(self.config.scraper)
        self.parser = parser or TrendingPageParser()
        if enricher is None and self.config.topics.enabled:
            enricher = TopicEnricher(self.config.topics)
        self.enricher = enricher
        self._sleep = sleep
        self.stage = PipelineStage.IDLE

    def _enter(self, stage: PipelineStage) -> None:
        logger.debug(f"pipeline_stage {self.stage.value} -> {stage.value}")
        self.stage = stage

    def _fetch(self) -> Result:
        self._enter(PipelineStage.FETCHING)
        try:
            return Ok(self.fetcher.fetch())
        except Exception as e:
            return Err(_as_stage_error(e, FetchError))

    def _parse(self, markup: str) -> Result:
        self._enter(PipelineStage.PARSING)
        try:
            return Ok(self.parser.parse(markup))
        except Exception as e:
            return Err(_as_stage_error(e, ParseError))

    def _enrich(self, records: List[ParsedRecord]) -> Result:
        self._enter(PipelineStage.ENRICHING)
        if self.enricher is None:
            return Ok(records)
        try:
            return Ok(self.enricher.enrich(records))
        except Exception as e:
            return Err(e)

    def _persist(self, records: List[ParsedRecord], target: date) -> Result:
        self._enter(PipelineStage.PERSISTING)
        try:
            return Ok(self.archive.persist(records, target))
        except Exception as e:
            return Err(_as_stage_error(e, PersistError))

    def run(self, target_date: Optional[date] = None) -> ScrapeResult:
        """
        Run the full pipeline for ``target_date`` (default: today in UTC).

        Never raises: every failure is returned as a tagged ScrapeResult.
        """
        start = time.monotonic()
        self.stage = PipelineStage.IDLE
        target = target_date or today_utc()

        logger.info(f"scrape_start date={target.isoformat()}")

        try:
            result = self._run_stages(target)
        except Exception as e:
            result = Err(e)

        duration_ms = int((time.monotonic() - start) * 1000)

        if isinstance(result, Err):
            self._enter(PipelineStage.FAILED)
            error = result.error
            kind = error.kind if isinstance(error, ScrapeError) else ErrorKind.UNKNOWN
            message = str(error) or error.__class__.__name__
            logger.error(
                f"scrape_failure date={target.isoformat()} error_kind={kind.value} "
                f"duration_ms={duration_ms}: {message}"
            )
            return ScrapeResult(
                success=False,
                duration_ms=duration_ms,
                date=target,
                error=message,
                error_kind=kind,
            )

        records, rows_written = result.value
        self._enter(PipelineStage.DONE)
        with_topics = sum(1 for r in records if r.topics)
        logger.info(
            f"scrape_success date={target.isoformat()} repo_count={len(records)} "
            f"rows_written={rows_written} repos_with_topics={with_topics} duration_ms={duration_ms}"
        )
        return ScrapeResult(
            success=True,
            record_count=len(records),
            rows_written=rows_written,
            duration_ms=duration_ms,
            date=target,
        )

    def _run_stages(self, target: date) -> Result:
        jitter_delay(
            self.config.scraper.jitter_min_seconds,
            self.config.scraper.jitter_max_seconds,
            sleep=self._sleep,
        )

        fetched = self._fetch()
        if isinstance(fetched, Err):
            return fetched

        parsed = self._parse(fetched.value)
        if isinstance(parsed, Err):
            return parsed
        records = parsed.value

        enriched = self._enrich(records)
        if isinstance(enriched, Err):
            logger.error(f"repo_topics_enrichment_error date={target.isoformat()}: {enriched.error}")
        else:
            records = enriched.value

        persisted = self._persist(records, target)
        if isinstance(persisted, Err):
            return persisted

        return Ok((records, persisted.value))
