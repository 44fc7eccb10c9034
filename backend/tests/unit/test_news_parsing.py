"""Unit tests for feed parsing, the feed registry and the relevance filter."""

from datetime import datetime
from pathlib import Path

import pytest

from votesync.ingestion import (
    NEWS_FEEDS,
    clean_html,
    get_feeds,
    is_politically_relevant,
    parse_feed,
)
from votesync.ingestion.news import parse_cursor
from votesync.sync import ItemError

FIXTURES_DIR = Path(__file__).parent.parent / "fixtures"


@pytest.fixture
def feed_content() -> bytes:
    return (FIXTURES_DIR / "politica_feed.xml").read_bytes()


class TestCleanHtml:
    def test_strips_tags(self):
        assert clean_html("<p>La candidata de <b>Fuerza Popular</b></p>") == "La candidata de Fuerza Popular"

    def test_collapses_whitespace(self):
        assert clean_html("uno\n\n   dos\tTres") == "uno dos Tres"

    def test_empty(self):
        assert clean_html("") == ""


class TestParseFeed:
    """Tests for RSS parsing with feedparser."""

    def test_parses_items(self, feed_content):
        items = parse_feed("rpp", feed_content)

        assert len(items) == 3
        first = items[0]
        assert first.feed_id == "rpp"
        assert first.title == "Keiko Fujimori presenta propuesta para el Senado"
        assert first.link == "https://noticias.example.pe/politica/keiko-fujimori-propuesta"
        assert "Fuerza Popular" in clean_html(first.content)
        assert first.published_at == datetime(2026, 3, 3, 14, 30, 0)

    def test_not_a_feed_raises(self):
        with pytest.raises(ItemError):
            parse_feed("rpp", b"Service temporarily unavailable")


class TestParseCursor:
    def test_naive(self):
        assert parse_cursor("2026-03-02T00:00:00") == datetime(2026, 3, 2)

    def test_aware_is_converted_to_utc(self):
        assert parse_cursor("2026-03-02T00:00:00-05:00") == datetime(2026, 3, 2, 5, 0)

    def test_empty(self):
        assert parse_cursor(None) is None
        assert parse_cursor("") is None


class TestPoliticalRelevance:
    """Tests for the keyword relevance filter."""

    def test_election_terms(self):
        assert is_politically_relevant("Elecciones 2026: lo que debes saber")

    def test_accent_insensitive(self):
        assert is_politically_relevant("ELECCION en marcha")
        assert is_politically_relevant("Nueva campana del JNE")

    def test_content_counts(self):
        assert is_politically_relevant("Entrevista", "El congresista respondió preguntas")

    def test_unrelated(self):
        assert not is_politically_relevant("Receta de ceviche con limón", "Un clásico de la cocina peruana.")


class TestFeedRegistry:
    def test_ordered_by_priority(self):
        feeds = get_feeds()
        priorities = [f.priority for f in feeds]
        assert priorities == sorted(priorities, reverse=True)
        assert len(feeds) == len(NEWS_FEEDS)

    def test_filter_by_ids(self):
        feeds = get_feeds(ids=["rpp", "andina"])
        assert {f.id for f in feeds} == {"rpp", "andina"}

    def test_filter_by_priority(self):
        assert all(f.priority >= 9 for f in get_feeds(min_priority=9))

    def test_backup_urls_follow_primary(self):
        andina = get_feeds(ids=["andina"])[0]
        assert andina.urls[0] == andina.url
        assert len(andina.urls) == 2
