import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional
from urllib.parse import quote

import requests

from trend_archive.config import TopicsConfig
from trend_archive.models import ParsedRecord, normalize_topics

logger = logging.getLogger(__name__)


class TopicEnricher:
    """Best-effort enrichment of parsed records with GitHub repository topics"""

    def __init__(self, config: Optional[TopicsConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or TopicsConfig()
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": self.config.user_agent,
        })
        if self.config.token:
            self.session.headers["Authorization"] = f"Bearer {self.config.token}"

    def fetch_topics(self, owner: str, name: str) -> List[str]:
        """
        Fetch topics for one repository.

        A 404 yields an empty list; any other non-success status raises.
        """
        url = f"{self.config.api_base_url}/{quote(owner, safe='')}/{quote(name, safe='')}"
        response = self.session.get(url, timeout=self.config.timeout)

        if response.status_code == 404:
            return []

        if not response.ok:
            raise requests.HTTPError(
                f"GitHub repo API failed with HTTP {response.status_code} {response.reason}",
                response=response,
            )

        return list(normalize_topics(_topics_field(response.json())))

    def enrich(self, records: List[ParsedRecord]) -> List[ParsedRecord]:
        """
        Return new records with topics attached.

        Records are processed in batches of ``concurrency``; each batch finishes
        before the next starts. A failed lookup leaves that record with no topics.
        """
        if not records:
            return []

        batch_size = max(1, self.config.concurrency)
        enriched: List[ParsedRecord] = []
        failed_count = 0

        with ThreadPoolExecutor(max_workers=batch_size) as executor:
            for start in range(0, len(records), batch_size):
                batch = records[start:start + batch_size]
                futures = [executor.submit(self.fetch_topics, r.owner, r.name) for r in batch]

                for record, future in zip(batch, futures):
                    try:
                        topics = future.result()
                    except Exception as e:
                        failed_count += 1
                        topics = []
                        logger.error(f"repo_topics_fetch_error repo={record.full_name}: {e}")
                    enriched.append(record.model_copy(update={"topics": tuple(topics)}))

        if failed_count:
            logger.warning(
                f"repo_topics_fetch_partial repo_count={len(records)} failed_count={failed_count}"
            )

        return enriched


def _topics_field(payload) -> list:
    if isinstance(payload, dict):
        topics = payload.get("topics")
        if isinstance(topics, list):
            return topics
    return []
