"""Payload shapes consumed by the ingestion pipeline.

Candidate records come from bulk lists (JSON or CSV), news items from
RSS feeds. Both expose a natural key used for idempotent commits.
"""

import re
import unicodedata
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class Cargo(str, Enum):
    """Electoral role a candidate runs for."""

    PRESIDENTE = "presidente"
    VICEPRESIDENTE = "vicepresidente"
    SENADOR = "senador"
    DIPUTADO = "diputado"
    PARLAMENTO_ANDINO = "parlamento_andino"

    @property
    def requires_district(self) -> bool:
        """Senators and deputies are elected per district."""
        return self in (Cargo.SENADOR, Cargo.DIPUTADO)


CARGO_VALUES = tuple(c.value for c in Cargo)


def fold_text(value: str) -> str:
    """Lowercase, strip accents and collapse whitespace."""
    value = unicodedata.normalize("NFD", value.lower())
    value = "".join(ch for ch in value if unicodedata.category(ch) != "Mn")
    return re.sub(r"\s+", " ", value).strip()


def slugify(value: str) -> str:
    """Create a URL-friendly slug."""
    value = re.sub(r"[^a-z0-9\s-]", "", fold_text(value))
    return re.sub(r"-+", "-", re.sub(r"\s+", "-", value.strip())).strip("-")


class CandidateRecord(BaseModel):
    """A candidate as listed by an upstream bulk source.

    ``cargo`` stays a plain string so that unknown roles reach the
    validator and are reported instead of failing at parse time.
    """

    full_name: str
    cargo: str
    party_name: str = ""
    party_abbreviation: str | None = None
    district_name: str | None = None
    list_position: int | None = None
    dni: str | None = None
    jne_id: str | None = None
    photo_url: str | None = None
    djhv_url: str | None = None
    birth_date: str | None = None

    @property
    def normalized_name(self) -> str:
        return fold_text(self.full_name)

    @property
    def natural_key(self) -> tuple[str, str]:
        """Normalized full name + role."""
        return (self.normalized_name, self.cargo)

    @property
    def slug(self) -> str:
        return f"{slugify(self.full_name)}-{slugify(self.cargo)}"

    def fingerprint_payload(self) -> dict[str, Any]:
        """Upstream fields that matter for change detection."""
        return self.model_dump(exclude_none=True)


class FeedItem(BaseModel):
    """A raw entry parsed from an RSS/Atom feed."""

    feed_id: str
    title: str = ""
    link: str = ""
    content: str = ""
    published_at: datetime | None = None
    author: str | None = None


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"
    MIXED = "mixed"


class NewsItem(BaseModel):
    """A normalized news item; ``url`` is its natural key."""

    title: str
    url: str
    excerpt: str = ""
    source: str
    published_at: datetime | None = None
    author: str | None = None

    @property
    def natural_key(self) -> str:
        return self.url


class NewsMatch(BaseModel):
    """A candidate or party mentioned by a news item."""

    candidate_id: UUID | None = None
    candidate_name: str | None = None
    party_id: UUID | None = None
    party_name: str | None = None
    sentiment: Sentiment = Sentiment.NEUTRAL
    keywords: list[str] = Field(default_factory=list)
    relevance_score: float = 0.5
