"""
Day-scoped retry wrapper around the scrape pipeline.

GitHub's trending page only shows the current day, so a missed day cannot be
recovered later. Retries are only meaningful within the same UTC day: the
scheduler fires several times per day and this controller decides whether a
run is needed. Once ``max_attempts`` failures are recorded the day becomes a
confirmed gap.

The per-date counter lives in a shared KV store and is not protected against
two overlapping invocations; concurrent failures may under-count.
"""

import logging
from datetime import date
from typing import Optional

from trend_archive.archive import TrendingArchive
from trend_archive.config import RetryConfig
from trend_archive.dates import today_utc
from trend_archive.kv_store import KeyValueStore
from trend_archive.models import RetryAwareScrapeResult
from trend_archive.pipeline import ScrapePipeline

logger = logging.getLogger(__name__)

SKIP_ALREADY_HAS_DATA = "already_has_data"
SKIP_MAX_RETRIES_EXCEEDED = "max_retries_exceeded"


class RetryController:
    def __init__(
        self,
        archive: TrendingArchive,
        counter_store: KeyValueStore,
        pipeline: ScrapePipeline,
        config: Optional[RetryConfig] = None,
    ):
        self.archive = archive
        self.counter_store = counter_store
        self.pipeline = pipeline
        self.config = config or RetryConfig()

    def _key(self, target: date) -> str:
        return f"{self.config.key_prefix}{target.isoformat()}"

    def get_retry_count(self, target: date) -> int:
        raw = self.counter_store.get(self._key(target))
        if raw is None:
            return 0
        try:
            count = int(raw)
        except (TypeError, ValueError):
            logger.warning(f"retry_counter_invalid date={target.isoformat()} value={raw!r}")
            return 0
        return max(count, 0)

    def set_retry_count(self, target: date, count: int) -> None:
        self.counter_store.put(self._key(target), str(count), ttl_seconds=self.config.ttl_seconds)

    def clear_retry_count(self, target: date) -> None:
        self.counter_store.delete(self._key(target))

    def run(self, target_date: Optional[date] = None) -> RetryAwareScrapeResult:
        target = target_date or today_utc()
        day = target.isoformat()

        if self.archive.has_data_for_date(target):
            logger.info(f"scrape_skipped date={day} reason={SKIP_ALREADY_HAS_DATA}")
            return RetryAwareScrapeResult(
                success=True,
                skipped=True,
                skip_reason=SKIP_ALREADY_HAS_DATA,
                date=target,
            )

        # Fail open so a counter-store outage does not block scraping
        try:
            retry_count = self.get_retry_count(target)
        except Exception as e:
            logger.error(f"retry_kv_read_error date={day}: {e}")
            retry_count = 0

        max_attempts = self.config.max_attempts
        if retry_count >= max_attempts:
            logger.warning(
                f"scrape_gap_confirmed date={day} attempts={retry_count} "
                f"reason={SKIP_MAX_RETRIES_EXCEEDED}"
            )
            return RetryAwareScrapeResult(
                success=False,
                skipped=True,
                skip_reason=SKIP_MAX_RETRIES_EXCEEDED,
                attempt=retry_count,
                date=target,
                error=f"Max retries ({max_attempts}) exceeded for {day}",
            )

        attempt = retry_count + 1
        result = self.pipeline.run(target)
        recovered = result.success and retry_count > 0

        if result.success:
            if retry_count > 0:
                try:
                    self.clear_retry_count(target)
                except Exception as e:
                    logger.error(f"retry_kv_clear_error date={day}: {e}")
            if recovered:
                logger.info(
                    f"scrape_recovered date={day} attempt={attempt} repo_count={result.record_count}"
                )
        else:
            try:
                self.set_retry_count(target, attempt)
            except Exception as e:
                logger.error(f"retry_kv_write_error date={day} attempt={attempt}: {e}")

            error_kind = result.error_kind.value if result.error_kind else "unknown"
            logger.error(
                f"scrape_retry_failed date={day} attempt={attempt} max_retries={max_attempts} "
                f"error_kind={error_kind}: {result.error or 'unknown'}"
            )

        return RetryAwareScrapeResult(
            **result.model_dump(),
            skipped=False,
            attempt=attempt,
            recovered=recovered,
        )
