import logging
import signal
import sys
import threading
from datetime import date
from typing import Optional

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from trend_archive.aggregation import AggregationEngine
from trend_archive.archive import TrendingArchive
from trend_archive.config import Config
from trend_archive.dates import parse_date
from trend_archive.kv_store import KeyValueStore, SqlKeyValueStore
from trend_archive.logger_config import setup_logging
from trend_archive.models import RetryAwareScrapeResult
from trend_archive.notifier import (TelegramNotifier, format_failure_message,
                                    format_gap_message, format_trending_message)
from trend_archive.pipeline import ScrapePipeline
from trend_archive.retry import SKIP_MAX_RETRIES_EXCEEDED, RetryController

logger = logging.getLogger(__name__)


class Scheduler:
    def __init__(
        self,
        config: Optional[Config] = None,
        archive: Optional[TrendingArchive] = None,
        kv_store: Optional[KeyValueStore] = None,
        controller: Optional[RetryController] = None,
        notifier: Optional[TelegramNotifier] = None,
    ):
        self.config = config or Config()
        self.scheduler_config = self.config.scheduler
        self.archive = archive or TrendingArchive(self.config.database)
        self.kv_store = kv_store or SqlKeyValueStore(engine=self.archive.engine)
        self.controller = controller or RetryController(
            self.archive,
            self.kv_store,
            ScrapePipeline(self.archive, self.config),
            self.config.retry,
        )
        self.notifier = notifier or TelegramNotifier(self.config.telegram)
        self.aggregation = AggregationEngine(self.archive, self.config.aggregation)
        self._scheduler = None
        self._lock = threading.Lock()

    def start(self, run_immediately: bool = False) -> None:
        if not self.scheduler_config.enabled:
            logger.info("Scheduler is disabled")
            return

        self._scheduler = BlockingScheduler(
            timezone=self.scheduler_config.timezone
        )

        # Several runs per UTC day give the retry controller its same-day retries
        for run_time in self.scheduler_config.times:
            hour, minute = run_time.split(":")
            self._scheduler.add_job(
                self.run_scrape,
                trigger=CronTrigger(hour=hour, minute=minute, timezone=self.scheduler_config.timezone),
                id=f"trending_scrape_{hour}{minute}",
                name=f"Trending scrape at {run_time}",
                replace_existing=True
            )

        for job in self._scheduler.get_jobs():
            logger.info(f"Scheduler job registered: {job}")

        if run_immediately:
            logger.info("Running scrape immediately...")
            self.run_scrape()

        try:
            self._scheduler.start()
        except (KeyboardInterrupt, SystemExit):
            logger.info("Scheduler stopped by user")
            self.stop()

    def stop(self) -> None:
        if self._scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    def run_scrape(self, target_date: Optional[date] = None) -> Optional[RetryAwareScrapeResult]:
        if not self._lock.acquire(blocking=False):
            logger.warning("Scrape already running, skipping...")
            return None

        try:
            result = self.controller.run(target_date)
            logger.info(
                f"cron_handler_done date={result.date.isoformat()} success={result.success} "
                f"skipped={result.skipped} skip_reason={result.skip_reason}"
            )
        except Exception as e:
            logger.error(f"scrape_unhandled_error: {e}", exc_info=True)
            return None
        finally:
            self._lock.release()

        try:
            self._notify(result)
        except Exception as e:
            logger.error(f"notification_error date={result.date.isoformat()}: {e}", exc_info=True)
        return result

    def _notify(self, result: RetryAwareScrapeResult) -> None:
        if result.skipped and result.skip_reason == SKIP_MAX_RETRIES_EXCEEDED:
            message = format_gap_message(result.date, result.attempt or 0)
        elif result.skipped:
            return
        elif result.success:
            repos = self.aggregation.get_trending_repos(result.date)
            message = format_trending_message(repos, result.date)
        else:
            kind = result.error_kind.value if result.error_kind else "unknown_error"
            message = format_failure_message(result.date, kind, result.error or "unknown", result.attempt)

        self.notifier.send(message)


class App:
    def __init__(self):
        self.config = None
        self.scheduler = None

    def load_config(self, config_path: str = "config.yaml") -> Config:
        from trend_archive.config import get_config
        self.config = get_config(config_path)
        return self.config

    def run(
        self,
        run_once: bool = False,
        config_path: str = "config.yaml",
        target_date: Optional[date] = None
    ) -> bool:
        self.load_config(config_path)
        setup_logging(self.config.logging)

        logger.info("Trending archive starting...")

        self.scheduler = Scheduler(self.config)

        def signal_handler(signum, frame):
            logger.info("Received shutdown signal")
            self.scheduler.stop()
            sys.exit(0)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        if run_once:
            result = self.scheduler.run_scrape(target_date)
            if result is None:
                return False
            logger.info(f"Scrape result: {result.model_dump_json()}")
            # Only a failed run or a confirmed gap is an operational failure
            return result.success or (result.skipped and result.skip_reason != SKIP_MAX_RETRIES_EXCEEDED)

        self.scheduler.start(run_immediately=True)
        return True


def main():
    import argparse

    setup_logging()

    parser = argparse.ArgumentParser(description="GitHub trending archive")
    parser.add_argument(
        "--scheduler",
        action="store_true",
        help="Run in scheduler mode (continuous execution with APScheduler)"
    )
    parser.add_argument(
        "--date",
        type=parse_date,
        help="Target UTC date (YYYY-MM-DD) for a one-off run; defaults to today"
    )
    parser.add_argument(
        "--config",
        type=str,
        default="config.yaml",
        help="Path to configuration file"
    )

    args = parser.parse_args()

    try:
        app = App()
        ok = app.run(run_once=not args.scheduler, config_path=args.config, target_date=args.date)
        sys.exit(0 if ok else 1)
    except KeyboardInterrupt:
        logger.info("Application interrupted by user")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Application error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
