"""Tests for the trending page fetcher and parser"""

import os
import sys
from unittest.mock import MagicMock, patch

import pytest
import requests

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from trend_archive.config import ScraperConfig
from trend_archive.errors import ErrorKind, FetchError, ParseError
from trend_archive.fetcher import TrendingFetcher, jitter_delay
from trend_archive.trending_parser import TrendingPageParser, parse_formatted_number


def article(
    href="/facebook/react",
    description="The library for web and native user interfaces.",
    language="JavaScript",
    color_style="background-color: #f1e05a",
    stars="234,567",
    forks="48,123",
    stars_today="1,234 stars today",
):
    desc_html = f'<p class="col-9 color-fg-muted my-1 pr-4">{description}</p>' if description is not None else ""
    lang_html = ""
    if language is not None:
        lang_html = (
            f'<span class="repo-language-color" style="{color_style}"></span>'
            f'<span itemprop="programmingLanguage">{language}</span>'
        )
    heading = f'<h2 class="h3 lh-condensed"><a href="{href}">x / y</a></h2>' if href is not None else "<h2>no link</h2>"
    return f"""
    <article class="Box-row">
        {heading}
        {desc_html}
        <div class="f6 color-fg-muted mt-2">
            <span class="d-inline-block ml-0 mr-3">{lang_html}</span>
            <a class="Link--muted" href="{href}/stargazers">{stars}</a>
            <a class="Link--muted" href="{href}/forks">{forks}</a>
            <span class="d-inline-block float-sm-right">{stars_today}</span>
        </div>
    </article>
    """


def page(*articles):
    return f"<html><body><div class='Box'>{''.join(articles)}</div></body></html>"


class TestParseFormattedNumber:
    def test_comma_separated(self):
        assert parse_formatted_number("1,234") == 1234
        assert parse_formatted_number("51,595") == 51595

    def test_k_suffix(self):
        assert parse_formatted_number("1.2k") == 1200
        assert parse_formatted_number("10k") == 10000
        assert parse_formatted_number("3.5K") == 3500

    def test_k_suffix_fraction_below_one(self):
        assert parse_formatted_number("0.5k") == 500

    def test_surrounding_whitespace(self):
        assert parse_formatted_number("\n   12,345  \n") == 12345

    def test_plain_number(self):
        assert parse_formatted_number("123") == 123

    def test_decimal_without_suffix_truncates(self):
        assert parse_formatted_number("1.9") == 1

    def test_empty_and_invalid(self):
        assert parse_formatted_number("") == 0
        assert parse_formatted_number("abc") == 0
        assert parse_formatted_number(None) == 0
        assert parse_formatted_number("1.2.3k") == 0


class TestTrendingPageParser:
    def setup_method(self):
        self.parser = TrendingPageParser()

    def test_complete_record(self):
        records = self.parser.parse(page(article()))

        assert len(records) == 1
        record = records[0]
        assert record.owner == "facebook"
        assert record.name == "react"
        assert record.description == "The library for web and native user interfaces."
        assert record.language == "JavaScript"
        assert record.language_color == "#f1e05a"
        assert record.total_stars == 234567
        assert record.forks == 48123
        assert record.stars_today == 1234
        assert record.topics == ()

    def test_one_record_per_row_in_order(self):
        records = self.parser.parse(page(
            article(href="/facebook/react"),
            article(href="/microsoft/typescript", language="TypeScript",
                    color_style="background-color: #3178c6"),
            article(href="/torvalds/linux", language="C", color_style="background-color:#555"),
        ))

        assert [r.full_name for r in records] == [
            "facebook/react", "microsoft/typescript", "torvalds/linux"
        ]
        assert records[2].language_color == "#555"

    def test_empty_markup_raises(self):
        with pytest.raises(ParseError, match="no repository rows found"):
            self.parser.parse("")

    def test_page_without_rows_raises(self):
        with pytest.raises(ParseError) as exc_info:
            self.parser.parse("<html><body><p>Something else</p></body></html>")
        assert exc_info.value.kind == ErrorKind.PARSE

    def test_missing_anchor_aborts_parse(self):
        with pytest.raises(ParseError, match="missing heading link"):
            self.parser.parse(page(article(), article(href=None)))

    def test_single_segment_href_aborts_parse(self):
        with pytest.raises(ParseError, match="repo name"):
            self.parser.parse(page(article(href="/lonely")))

    def test_empty_href_aborts_parse(self):
        html = '<article class="Box-row"><h2><a href="">nothing</a></h2></article>'
        with pytest.raises(ParseError, match="no href"):
            self.parser.parse(html)

    def test_missing_description(self):
        records = self.parser.parse(page(article(description=None)))
        assert records[0].description is None

    def test_blank_description_is_absent(self):
        records = self.parser.parse(page(article(description="   \n  ")))
        assert records[0].description is None

    def test_missing_language(self):
        records = self.parser.parse(page(article(language=None)))
        assert records[0].language is None
        assert records[0].language_color is None
        assert records[0].total_stars == 234567

    def test_invalid_color_is_absent(self):
        records = self.parser.parse(page(article(color_style="background-color: #12345")))
        assert records[0].language == "JavaScript"
        assert records[0].language_color is None

    def test_color_without_hex_is_absent(self):
        records = self.parser.parse(page(article(color_style="background-color: red")))
        assert records[0].language_color is None

    def test_unparsable_numbers_default_to_zero(self):
        records = self.parser.parse(page(article(stars="n/a", forks="", stars_today="popular")))
        assert records[0].total_stars == 0
        assert records[0].forks == 0
        assert records[0].stars_today == 0

    def test_k_formatted_stars_today(self):
        records = self.parser.parse(page(article(stars="5.2k", stars_today="1.2k stars today")))
        assert records[0].total_stars == 5200
        assert records[0].stars_today == 1200

    def test_singular_star_today(self):
        records = self.parser.parse(page(article(stars_today="1 star today")))
        assert records[0].stars_today == 1


class TestTrendingFetcher:
    def setup_method(self):
        self.fetcher = TrendingFetcher(ScraperConfig())

    def test_sets_browser_headers(self):
        assert "Mozilla" in self.fetcher.session.headers["User-Agent"]
        assert self.fetcher.session.headers["Accept-Language"].startswith("en-US")

    @patch('requests.Session.get')
    def test_successful_fetch(self, mock_get):
        mock_response = MagicMock()
        mock_response.ok = True
        mock_response.text = "<html>trending</html>"
        mock_get.return_value = mock_response

        assert self.fetcher.fetch() == "<html>trending</html>"
        _, kwargs = mock_get.call_args
        assert kwargs["timeout"] == 30

    @patch('requests.Session.get')
    def test_non_success_status(self, mock_get):
        mock_response = MagicMock()
        mock_response.ok = False
        mock_response.status_code = 503
        mock_response.reason = "Service Unavailable"
        mock_get.return_value = mock_response

        with pytest.raises(FetchError, match="HTTP 503 Service Unavailable"):
            self.fetcher.fetch()

    @patch('requests.Session.get')
    def test_timeout(self, mock_get):
        mock_get.side_effect = requests.exceptions.Timeout("read timed out")

        with pytest.raises(FetchError, match="timed out after 30 seconds") as exc_info:
            self.fetcher.fetch()
        assert exc_info.value.kind == ErrorKind.FETCH

    @patch('requests.Session.get')
    def test_transport_error(self, mock_get):
        mock_get.side_effect = requests.exceptions.ConnectionError("connection refused")

        with pytest.raises(FetchError, match="connection refused"):
            self.fetcher.fetch()


class TestJitterDelay:
    def test_sleeps_within_range(self):
        sleep = MagicMock()
        delay = jitter_delay(1.0, 3.0, sleep=sleep)

        assert 1.0 <= delay <= 3.0
        sleep.assert_called_once_with(delay)

    def test_zero_range_does_not_sleep(self):
        sleep = MagicMock()
        assert jitter_delay(0, 0, sleep=sleep) == 0
        sleep.assert_not_called()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
