import html
import logging
from datetime import date, datetime, timezone
from typing import List, Optional

import httpx

from trend_archive.config import TelegramConfig
from trend_archive.models import TrendingRepo

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Sink for pre-formatted HTML messages; delivery failures are logged, never raised."""

    def __init__(self, config: Optional[TelegramConfig] = None, client: Optional[httpx.Client] = None):
        self.config = config or TelegramConfig()
        self._client = client

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=httpx.Timeout(self.config.timeout, connect=5.0))
        return self._client

    def send(self, text: str) -> bool:
        if not self.config.is_configured:
            logger.info("Telegram notifications are disabled or not configured")
            return False

        url = f"{self.config.api_base_url}/bot{self.config.bot_token}/sendMessage"
        body = {
            "chat_id": self.config.chat_id,
            "text": text,
            "parse_mode": "HTML",
            "link_preview_options": {"is_disabled": True},
        }
        if self.config.thread_id is not None:
            body["message_thread_id"] = self.config.thread_id

        try:
            response = self.client.post(url, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"telegram_send_error status={e.response.status_code}: {e.response.text}")
            return False
        except httpx.HTTPError as e:
            logger.error(f"telegram_send_error: {e}")
            return False

        logger.info("telegram_sent")
        return True


def format_trending_message(repos: List[TrendingRepo], day: date, now: Optional[datetime] = None) -> str:
    """Rank, owner/name link, language, stars today and description for each repo."""
    now = now or datetime.now(timezone.utc)
    header = (
        f"📈 <b>GitHub Trending — {html.escape(day.isoformat())}</b>\n"
        f"{len(repos)} repos · {now.strftime('%H:%M')} UTC"
    )
    if not repos:
        return header

    lines = []
    for i, repo in enumerate(repos, start=1):
        link = f"https://github.com/{repo.owner}/{repo.name}"
        name_html = (
            f'<a href="{html.escape(link)}">{html.escape(repo.owner)}/{html.escape(repo.name)}</a>'
        )
        meta = []
        if repo.language:
            meta.append(html.escape(repo.language))
        meta.append(f"⭐ {repo.stars_today:,} today")
        desc_html = f"\n   {html.escape(repo.description)}" if repo.description else ""
        lines.append(f"{i}. {name_html} · {' · '.join(meta)}{desc_html}")

    return header + "\n\n" + "\n\n".join(lines)


def format_failure_message(day: date, error_kind: str, message: str, attempt: Optional[int] = None) -> str:
    attempt_info = f" · attempt {attempt}" if attempt is not None else ""
    return (
        f"❌ <b>Scrape Failed — {html.escape(day.isoformat())}</b>\n"
        f"Type: <code>{html.escape(error_kind)}</code>{attempt_info}\n"
        f"Error: {html.escape(message)}"
    )


def format_gap_message(day: date, attempts: int) -> str:
    return (
        f"🕳 <b>Confirmed Gap — {html.escape(day.isoformat())}</b>\n"
        f"Retries exhausted after {attempts} failed attempts; this day will stay empty."
    )
