"""Parse the GitHub Trending page into structured records"""

import logging
import math
import re
from typing import List, Optional, Tuple

from bs4 import BeautifulSoup
from bs4.element import Tag

from trend_archive.errors import ParseError
from trend_archive.models import ParsedRecord, sanitize_hex_color

logger = logging.getLogger(__name__)

_K_SUFFIX_RE = re.compile(r"^([\d.]+)[kK]$")
_NON_NUMERIC_RE = re.compile(r"[^0-9.]")
_LEADING_INT_RE = re.compile(r"^\d+")
_STARS_TODAY_RE = re.compile(r"([\d,.\w]+)\s+stars?\s+today", re.IGNORECASE)
_BACKGROUND_COLOR_RE = re.compile(r"background-color:\s*(#[0-9a-fA-F]{3,6})")


def parse_formatted_number(raw: Optional[str]) -> int:
    """
    Parse formatted numbers

    Supported formats:
    - "1,234" -> 1234
    - "1.2k" -> 1200
    - "10K" -> 10000
    - "" / "abc" / None -> 0
    """
    if raw is None:
        return 0

    text = raw.strip()

    k_match = _K_SUFFIX_RE.match(text)
    if k_match:
        try:
            return int(math.floor(float(k_match.group(1)) * 1000 + 0.5))
        except ValueError:
            return 0

    cleaned = _NON_NUMERIC_RE.sub("", text)
    int_match = _LEADING_INT_RE.match(cleaned)
    return int(int_match.group()) if int_match else 0


class TrendingPageParser:
    """
    Extract repository rows from https://github.com/trending

    Page structure:
    - article.Box-row
      - h2 > a[href="/owner/name"] (identity)
      - p.col-9 (description)
      - span.repo-language-color (inline background-color)
      - span[itemprop="programmingLanguage"] (language)
      - a[href$="/stargazers"] (total stars)
      - a[href$="/forks"] (forks)
      - span.float-sm-right ("N stars today")
    """

    def parse(self, markup: str) -> List[ParsedRecord]:
        """
        Parse the page markup

        Raises:
            ParseError: when no rows exist or a row has no derivable identity
        """
        soup = BeautifulSoup(markup or "", 'html.parser')
        articles = soup.select('article.Box-row')

        if not articles:
            raise ParseError(
                "Failed to parse trending page: no repository rows found. "
                "The page structure may have changed."
            )

        logger.info(f"Found {len(articles)} repositories on trending page")
        return [self._parse_article(article) for article in articles]

    def _parse_article(self, article: Tag) -> ParsedRecord:
        owner, name = self._parse_identity(article)
        return ParsedRecord(
            owner=owner,
            name=name,
            description=self._parse_description(article),
            language=self._parse_language(article),
            language_color=self._parse_language_color(article),
            total_stars=self._parse_link_number(article, 'a[href$="/stargazers"]'),
            forks=self._parse_link_number(article, 'a[href$="/forks"]'),
            stars_today=self._parse_stars_today(article),
        )

    def _parse_identity(self, article: Tag) -> Tuple[str, str]:
        link = article.select_one('h2 a')
        if link is None:
            raise ParseError("Failed to parse repo: missing heading link")

        href = link.get('href')
        if not href:
            raise ParseError("Failed to parse repo: heading link has no href")

        # href is like "/PowerShell/PowerShell"
        parts = [part for part in href.strip().strip('/').split('/') if part]
        if len(parts) < 2:
            raise ParseError(f"Failed to parse repo name from href: {href}")

        return parts[0], parts[1]

    def _parse_description(self, article: Tag) -> Optional[str]:
        desc = article.select_one('p.col-9')
        if desc is None:
            return None
        text = desc.get_text().strip()
        return text or None

    def _parse_language(self, article: Tag) -> Optional[str]:
        lang = article.select_one('[itemprop="programmingLanguage"]')
        if lang is None:
            return None
        text = lang.get_text().strip()
        return text or None

    def _parse_language_color(self, article: Tag) -> Optional[str]:
        dot = article.select_one('span.repo-language-color')
        if dot is None:
            return None
        match = _BACKGROUND_COLOR_RE.search(dot.get('style') or "")
        return sanitize_hex_color(match.group(1)) if match else None

    def _parse_link_number(self, article: Tag, selector: str) -> int:
        link = article.select_one(selector)
        if link is None:
            return 0
        return parse_formatted_number(link.get_text())

    def _parse_stars_today(self, article: Tag) -> int:
        span = article.select_one('span.float-sm-right')
        if span is None:
            return 0
        # Text is like "13 stars today" or "1,234 stars today"
        match = _STARS_TODAY_RE.search(span.get_text().strip())
        if not match:
            return 0
        return parse_formatted_number(match.group(1))
