import logging
import random
import time
from typing import Callable, Optional

import requests

from trend_archive.config import ScraperConfig
from trend_archive.errors import FetchError

logger = logging.getLogger(__name__)


def jitter_delay(
    min_seconds: float = 1.0,
    max_seconds: float = 3.0,
    sleep: Callable[[float], None] = time.sleep
) -> float:
    """Sleep for a random duration in [min_seconds, max_seconds] and return it."""
    delay = random.uniform(min_seconds, max_seconds)
    if delay > 0:
        sleep(delay)
    return delay


class TrendingFetcher:
    """Downloads the raw GitHub trending page"""

    def __init__(self, config: Optional[ScraperConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or ScraperConfig()
        self.session = session or requests.Session()
        self.session.headers.update({
            "User-Agent": self.config.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        })

    def fetch(self) -> str:
        """
        Fetch the trending page HTML.

        Returns:
            Raw page markup

        Raises:
            FetchError: on non-success status, timeout, or transport failure
        """
        url = self.config.trending_url
        timeout = self.config.timeout
        logger.info(f"Fetching trending page: {url}")

        try:
            response = self.session.get(url, timeout=timeout)
        except requests.exceptions.Timeout as e:
            raise FetchError(f"GitHub trending fetch timed out after {timeout} seconds") from e
        except requests.exceptions.RequestException as e:
            raise FetchError(f"GitHub trending fetch failed: {e}") from e

        if not response.ok:
            raise FetchError(
                f"GitHub trending fetch failed: HTTP {response.status_code} {response.reason}"
            )

        logger.debug(f"Fetched {len(response.text)} characters from {url}")
        return response.text
