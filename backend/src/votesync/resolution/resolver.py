"""Entity resolution for parties, districts and candidates.

Upstream sources spell names loosely ("FUERZA POPULAR", "Fuerza Popular ",
"FP"). Resolution maps such a name to a canonical internal id:

1. Normalize the input and every candidate name/alias (accent folding,
   lowercase, punctuation and whitespace collapsed).
2. Exact match against a primary name or alias -> ``exact``.
3. Containment in either direction -> ``fuzzy``.
4. Otherwise -> ``none``.

Ties are broken by (shortest matched name, lexical order, id) so that the
same input always resolves to the same entity against an unchanged
directory. Fuzzy matches whose similarity falls below the review
threshold are flagged for manual review.
"""

import re
from enum import Enum
from typing import Iterable
from uuid import UUID

from pydantic import BaseModel, Field
from rapidfuzz import fuzz
from sqlalchemy import select

from ..config import get_settings
from ..db import Database
from ..logging import get_context_logger, log_resolution_event
from ..models import fold_text
from ..schema import candidates, districts, parties

logger = get_context_logger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


class EntityKind(str, Enum):
    """Kinds of entity the resolver knows about."""

    PARTY = "party"
    DISTRICT = "district"
    CANDIDATE = "candidate"


class MatchKind(str, Enum):
    EXACT = "exact"
    FUZZY = "fuzzy"
    NONE = "none"


class NameCandidate(BaseModel):
    """One canonical entity with the names it may be referred to by."""

    id: UUID
    name: str
    aliases: list[str] = Field(default_factory=list)

    def keys(self) -> list[str]:
        """Distinct normalized names, primary name first."""
        seen: list[str] = []
        for value in [self.name, *self.aliases]:
            key = normalize_name(value or "")
            if key and key not in seen:
                seen.append(key)
        return seen


class ResolvedEntityRef(BaseModel):
    """Outcome of resolving one raw name."""

    kind: EntityKind
    raw_name: str
    entity_id: UUID | None = None
    matched_name: str | None = None
    match_kind: MatchKind = MatchKind.NONE
    similarity: float = 0.0
    needs_review: bool = False

    @property
    def resolved(self) -> bool:
        return self.entity_id is not None


def normalize_name(value: str) -> str:
    """Fold accents and case, replace punctuation with spaces, trim."""
    value = _NON_ALNUM.sub(" ", fold_text(value))
    return _WHITESPACE.sub(" ", value).strip()


def _tie_break(entry: tuple[str, NameCandidate]) -> tuple[int, str, str]:
    key, candidate = entry
    return (len(key), key, str(candidate.id))


def resolve_name(
    raw_name: str,
    directory: Iterable[NameCandidate],
    min_fuzzy_length: int = 3,
) -> tuple[NameCandidate | None, MatchKind, str | None]:
    """Resolve a raw name against an explicit candidate list.

    Pure function: the result depends only on the arguments, never on
    the iteration order of ``directory``.

    Args:
        raw_name: Name as it appeared upstream
        directory: Canonical entities to match against
        min_fuzzy_length: Shortest needle (or candidate key) allowed to
            take part in a containment match

    Returns:
        Tuple of (matched candidate or None, match kind, matched key)
    """
    needle = normalize_name(raw_name or "")
    if not needle:
        return None, MatchKind.NONE, None

    keyed = [(key, candidate) for candidate in directory for key in candidate.keys()]

    exact = [entry for entry in keyed if entry[0] == needle]
    if exact:
        key, candidate = min(exact, key=_tie_break)
        return candidate, MatchKind.EXACT, key

    if len(needle) < min_fuzzy_length:
        return None, MatchKind.NONE, None

    contained = [
        (key, candidate)
        for key, candidate in keyed
        if len(key) >= min_fuzzy_length and (needle in key or key in needle)
    ]
    if contained:
        key, candidate = min(contained, key=_tie_break)
        return candidate, MatchKind.FUZZY, key

    return None, MatchKind.NONE, None


def name_similarity(left: str, right: str) -> float:
    """Similarity of two names in [0, 1] after normalization."""
    return fuzz.ratio(normalize_name(left), normalize_name(right)) / 100.0


class EntityResolver:
    """Resolves upstream names to canonical ids.

    Directories are loaded from the store on first use and cached for the
    lifetime of the resolver; call ``refresh()`` after the underlying
    tables change. Results are memoized per (kind, normalized name).
    """

    def __init__(
        self,
        db: Database | None = None,
        directories: dict[EntityKind, list[NameCandidate]] | None = None,
        min_fuzzy_length: int | None = None,
        review_threshold: float | None = None,
    ):
        settings = get_settings()
        self.db = db
        self.min_fuzzy_length = (
            min_fuzzy_length if min_fuzzy_length is not None else settings.resolver_min_fuzzy_length
        )
        self.review_threshold = (
            review_threshold if review_threshold is not None else settings.resolver_review_threshold
        )
        self._directories: dict[EntityKind, list[NameCandidate]] | None = None
        self._cache: dict[tuple[EntityKind, str], ResolvedEntityRef] = {}
        if directories is not None:
            self._set_directories(directories)

    def _set_directories(self, directories: dict[EntityKind, list[NameCandidate]]) -> None:
        self._directories = {
            kind: sorted(directories.get(kind, []), key=lambda c: str(c.id))
            for kind in EntityKind
        }
        self._cache.clear()

    @property
    def is_loaded(self) -> bool:
        return self._directories is not None

    async def load(self) -> None:
        """Load directories from the store if not already loaded."""
        if self._directories is None:
            await self.refresh()

    async def refresh(self) -> None:
        """Reload all directories from the store and drop memoized results."""
        if self.db is None:
            raise RuntimeError("EntityResolver has no store to load directories from")

        async with self.db.session() as session:
            party_rows = (
                await session.execute(select(parties.c.id, parties.c.name, parties.c.short_name, parties.c.slug))
            ).fetchall()
            district_rows = (
                await session.execute(select(districts.c.id, districts.c.name, districts.c.slug))
            ).fetchall()
            candidate_rows = (
                await session.execute(
                    select(candidates.c.id, candidates.c.full_name).where(candidates.c.is_active.is_(True))
                )
            ).fetchall()

        self._set_directories({
            EntityKind.PARTY: [
                NameCandidate(
                    id=r.id,
                    name=r.name,
                    aliases=[a for a in (r.short_name, r.slug) if a],
                )
                for r in party_rows
            ],
            EntityKind.DISTRICT: [
                NameCandidate(id=r.id, name=r.name, aliases=[r.slug]) for r in district_rows
            ],
            EntityKind.CANDIDATE: [
                NameCandidate(id=r.id, name=r.full_name) for r in candidate_rows
            ],
        })
        logger.info(
            f"Loaded resolver directories: {len(party_rows)} parties, "
            f"{len(district_rows)} districts, {len(candidate_rows)} candidates"
        )

    def directory(self, kind: EntityKind) -> list[NameCandidate]:
        """Canonical entities of one kind, ordered by id."""
        if self._directories is None:
            raise RuntimeError("Resolver directories not loaded; call load() first")
        return self._directories[kind]

    def resolve_loaded(self, kind: EntityKind | str, raw_name: str) -> ResolvedEntityRef:
        """Resolve against the already-loaded directories."""
        kind = EntityKind(kind)
        cache_key = (kind, normalize_name(raw_name or ""))
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached.model_copy(update={"raw_name": raw_name})

        candidate, match_kind, key = resolve_name(
            raw_name, self.directory(kind), self.min_fuzzy_length
        )

        if candidate is None:
            ref = ResolvedEntityRef(kind=kind, raw_name=raw_name)
        else:
            similarity = 1.0 if match_kind == MatchKind.EXACT else name_similarity(raw_name, key)
            ref = ResolvedEntityRef(
                kind=kind,
                raw_name=raw_name,
                entity_id=candidate.id,
                matched_name=candidate.name,
                match_kind=match_kind,
                similarity=similarity,
                needs_review=match_kind == MatchKind.FUZZY and similarity < self.review_threshold,
            )

        log_resolution_event(
            kind.value,
            raw_name,
            str(ref.entity_id) if ref.entity_id else None,
            ref.match_kind.value,
            ref.similarity,
        )
        self._cache[cache_key] = ref
        return ref

    async def resolve(self, kind: EntityKind | str, raw_name: str) -> ResolvedEntityRef:
        """Resolve a raw name to a canonical entity.

        Args:
            kind: Entity kind to resolve
            raw_name: Name as it appeared upstream

        Returns:
            ResolvedEntityRef (``entity_id`` is None for ``none`` matches)
        """
        await self.load()
        return self.resolve_loaded(kind, raw_name)
