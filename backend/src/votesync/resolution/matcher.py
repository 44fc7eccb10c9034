"""Matching of news items to the candidates and parties they mention.

Candidates are matched on their full name or on any two adjacent name
tokens (e.g. "keiko fujimori" inside "keiko sofia fujimori higuchi").
Parties are only considered when no candidate matched. Sentiment is a
keyword tally over title and excerpt.
"""

from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import select

from ..db import Database
from ..logging import get_context_logger
from ..models import NewsItem, NewsMatch, Sentiment
from ..schema import candidates, parties
from .resolver import normalize_name

logger = get_context_logger(__name__)

NEGATIVE_KEYWORDS = [
    "corrupción",
    "corrupto",
    "denunciado",
    "detenido",
    "arrestado",
    "investigado",
    "acusado",
    "sentenciado",
    "condena",
    "fraude",
    "lavado",
    "soborno",
    "cohecho",
    "peculado",
    "colusión",
    "escándalo",
    "irregularidades",
    "malversación",
    "nepotismo",
    "tráfico de influencias",
    "plagio",
    "falsificación",
    "mentira",
    "falso",
    "incumplimiento",
    "abandono",
    "inasistencia",
    "fuga",
    "renuncia",
    "expulsado",
]

POSITIVE_KEYWORDS = [
    "propuesta",
    "plan",
    "proyecto",
    "iniciativa",
    "logro",
    "aprobación",
    "consenso",
    "acuerdo",
    "avance",
    "mejora",
    "apoyo",
    "respaldo",
    "reconocimiento",
    "premio",
    "distinción",
    "elogio",
    "transparencia",
    "honestidad",
    "integridad",
    "experiencia",
    "trayectoria",
    "liderazgo",
]

# Adjacent-token pairs shorter than this are too ambiguous to count
MIN_NAME_PAIR_LENGTH = 7

MAX_MATCHES = 3


class CandidateRef(BaseModel):
    id: UUID
    full_name: str
    party_id: UUID | None = None
    party_name: str | None = None


class PartyRef(BaseModel):
    id: UUID
    name: str
    short_name: str | None = None


def _find_tokens(haystack: str, needle: str) -> int:
    """Position of ``needle`` in ``haystack`` as whole tokens, or -1.

    Both sides are normalized, so tokens are separated by single spaces
    and "rp" does not match inside "interpelacion".
    """
    if not needle:
        return -1
    return f" {haystack} ".find(f" {needle} ")


def contains_name(text: str, name: str) -> bool:
    """Check whether ``text`` mentions ``name``.

    Matches the full normalized name, or any two adjacent name tokens
    whose combined form is at least seven characters long. Matches are
    on whole tokens only.
    """
    haystack = normalize_name(text)
    needle = normalize_name(name)
    if _find_tokens(haystack, needle) >= 0:
        return True

    parts = needle.split(" ")
    for first, second in zip(parts, parts[1:]):
        combo = f"{first} {second}"
        if len(combo) >= MIN_NAME_PAIR_LENGTH and _find_tokens(haystack, combo) >= 0:
            return True
    return False


def analyze_sentiment(text: str) -> tuple[Sentiment, list[str]]:
    """Classify text by negative/positive keyword counts.

    Returns:
        Tuple of (sentiment, keywords found)
    """
    haystack = normalize_name(text)
    found: list[str] = []
    negative = 0
    positive = 0

    for keyword in NEGATIVE_KEYWORDS:
        if normalize_name(keyword) in haystack:
            negative += 1
            found.append(keyword)
    for keyword in POSITIVE_KEYWORDS:
        if normalize_name(keyword) in haystack:
            positive += 1
            found.append(keyword)

    if negative and positive:
        return Sentiment.MIXED, found
    if negative > positive:
        return Sentiment.NEGATIVE, found
    if positive > negative:
        return Sentiment.POSITIVE, found
    return Sentiment.NEUTRAL, found


def calculate_relevance(item: NewsItem, name: str) -> float:
    """Score how central ``name`` is to the item (0.5 to 1.0)."""
    needle = normalize_name(name)
    title = normalize_name(item.title)
    excerpt = normalize_name(item.excerpt or "")

    score = 0.5
    position = _find_tokens(title, needle)
    if position >= 0:
        score += 0.3
        if position < 30:
            score += 0.1
    if _find_tokens(excerpt, needle) >= 0:
        score += 0.1
    return min(round(score, 4), 1.0)


def match_news(
    item: NewsItem,
    candidate_refs: list[CandidateRef],
    party_refs: list[PartyRef],
    limit: int = MAX_MATCHES,
) -> list[NewsMatch]:
    """Match one news item against explicit candidate and party lists.

    Returns:
        Up to ``limit`` matches, most relevant first
    """
    full_text = f"{item.title} {item.excerpt or ''}"
    sentiment, keywords = analyze_sentiment(full_text)
    matches: list[NewsMatch] = []

    for candidate in candidate_refs:
        if contains_name(full_text, candidate.full_name):
            matches.append(
                NewsMatch(
                    candidate_id=candidate.id,
                    candidate_name=candidate.full_name,
                    party_id=candidate.party_id,
                    party_name=candidate.party_name,
                    sentiment=sentiment,
                    keywords=keywords,
                    relevance_score=calculate_relevance(item, candidate.full_name),
                )
            )

    if not matches:
        for party in party_refs:
            if contains_name(full_text, party.name) or (
                party.short_name and contains_name(full_text, party.short_name)
            ):
                matches.append(
                    NewsMatch(
                        party_id=party.id,
                        party_name=party.name,
                        sentiment=sentiment,
                        keywords=keywords,
                        relevance_score=calculate_relevance(item, party.short_name or party.name),
                    )
                )

    matches.sort(
        key=lambda m: (-m.relevance_score, m.candidate_name or m.party_name or "", str(m.candidate_id or m.party_id))
    )
    return matches[:limit]


class NewsMatcher:
    """Matches news items against the candidates and parties in the store.

    The directory is loaded once and reused until ``refresh()``.
    """

    def __init__(self, db: Database):
        self.db = db
        self._candidates: list[CandidateRef] | None = None
        self._parties: list[PartyRef] = []

    async def refresh(self) -> None:
        async with self.db.session() as session:
            candidate_rows = (
                await session.execute(
                    select(
                        candidates.c.id,
                        candidates.c.full_name,
                        candidates.c.party_id,
                        parties.c.name.label("party_name"),
                    )
                    .select_from(candidates.outerjoin(parties, candidates.c.party_id == parties.c.id))
                    .where(candidates.c.is_active.is_(True))
                    .order_by(candidates.c.full_name, candidates.c.id)
                )
            ).fetchall()
            party_rows = (
                await session.execute(
                    select(parties.c.id, parties.c.name, parties.c.short_name).order_by(parties.c.name)
                )
            ).fetchall()

        self._candidates = [
            CandidateRef(id=r.id, full_name=r.full_name, party_id=r.party_id, party_name=r.party_name)
            for r in candidate_rows
        ]
        self._parties = [PartyRef(id=r.id, name=r.name, short_name=r.short_name) for r in party_rows]
        logger.info(
            f"Loaded {len(self._candidates)} candidates and {len(self._parties)} parties for news matching"
        )

    async def match(self, item: NewsItem) -> list[NewsMatch]:
        if self._candidates is None:
            await self.refresh()
        return match_news(item, self._candidates or [], self._parties)
