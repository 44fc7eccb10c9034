"""Unit tests for entity resolution against in-memory directories."""

import random
from uuid import UUID

import pytest

from votesync.resolution import (
    EntityKind,
    EntityResolver,
    MatchKind,
    NameCandidate,
    name_similarity,
    normalize_name,
    resolve_name,
)

FP = UUID("00000000-0000-0000-0000-000000000001")
PM = UUID("00000000-0000-0000-0000-000000000002")
RP = UUID("00000000-0000-0000-0000-000000000003")
LIMA = UUID("00000000-0000-0000-0000-000000000010")
LIMA_PROV = UUID("00000000-0000-0000-0000-000000000011")

PARTY_DIRECTORY = [
    NameCandidate(id=FP, name="Fuerza Popular", aliases=["FP", "fuerza-popular"]),
    NameCandidate(id=PM, name="Partido Morado", aliases=["PM", "partido-morado"]),
    NameCandidate(id=RP, name="Renovación Popular", aliases=["RP", "renovacion-popular"]),
]

DISTRICT_DIRECTORY = [
    NameCandidate(id=LIMA, name="Lima", aliases=["lima"]),
    NameCandidate(id=LIMA_PROV, name="Lima Provincias", aliases=["lima-provincias"]),
]


@pytest.fixture
def resolver() -> EntityResolver:
    return EntityResolver(
        directories={
            EntityKind.PARTY: PARTY_DIRECTORY,
            EntityKind.DISTRICT: DISTRICT_DIRECTORY,
        },
        min_fuzzy_length=3,
        review_threshold=0.85,
    )


class TestNormalizeName:
    """Tests for name normalization."""

    def test_folds_case_and_accents(self):
        assert normalize_name("RENOVACIÓN  Popular") == "renovacion popular"

    def test_punctuation_becomes_space(self):
        assert normalize_name("fuerza-popular") == "fuerza popular"
        assert normalize_name("  Perú, Libre. ") == "peru libre"

    def test_empty(self):
        assert normalize_name("") == ""
        assert normalize_name(" -- ") == ""


class TestResolveName:
    """Tests for the pure resolution function."""

    def test_exact_match_is_case_insensitive(self):
        for raw in ("FUERZA POPULAR", "fuerza popular", "  Fuerza   Popular "):
            candidate, kind, _ = resolve_name(raw, PARTY_DIRECTORY)
            assert candidate.id == FP
            assert kind == MatchKind.EXACT

    def test_exact_match_ignores_accents(self):
        candidate, kind, _ = resolve_name("Renovacion Popular", PARTY_DIRECTORY)
        assert candidate.id == RP
        assert kind == MatchKind.EXACT

    def test_alias_matches_exactly(self):
        candidate, kind, key = resolve_name("FP", PARTY_DIRECTORY)
        assert candidate.id == FP
        assert kind == MatchKind.EXACT
        assert key == "fp"

    def test_containment_is_fuzzy(self):
        candidate, kind, key = resolve_name("Partido Fuerza Popular", PARTY_DIRECTORY)
        assert candidate.id == FP
        assert kind == MatchKind.FUZZY
        assert key == "fuerza popular"

    def test_no_match(self):
        candidate, kind, key = resolve_name("Acción Popular Democrática", PARTY_DIRECTORY)
        assert candidate is None
        assert kind == MatchKind.NONE
        assert key is None

    def test_short_needle_never_fuzzy(self):
        candidate, kind, _ = resolve_name("Fu", PARTY_DIRECTORY)
        assert candidate is None
        assert kind == MatchKind.NONE

    def test_tie_break_prefers_shortest_name(self):
        # "popular" is contained in two party names
        candidate, kind, key = resolve_name("Popular", PARTY_DIRECTORY)
        assert candidate.id == FP
        assert kind == MatchKind.FUZZY
        assert key == "fuerza popular"

    def test_result_independent_of_directory_order(self):
        shuffled = list(PARTY_DIRECTORY)
        results = set()
        for seed in range(10):
            random.Random(seed).shuffle(shuffled)
            candidate, kind, key = resolve_name("Popular", shuffled)
            results.add((candidate.id, kind, key))
        assert len(results) == 1

    def test_exact_wins_over_containment(self):
        candidate, kind, _ = resolve_name("Lima", DISTRICT_DIRECTORY)
        assert candidate.id == LIMA
        assert kind == MatchKind.EXACT

    def test_empty_name(self):
        assert resolve_name("", PARTY_DIRECTORY) == (None, MatchKind.NONE, None)


class TestNameSimilarity:
    def test_identical_after_normalization(self):
        assert name_similarity("Fuerza Popular", "FUERZA-POPULAR") == 1.0

    def test_partial(self):
        assert 0.0 < name_similarity("Partido Fuerza Popular", "Fuerza Popular") < 1.0


class TestEntityResolver:
    """Tests for the caching resolver."""

    def test_exact_is_not_flagged(self, resolver):
        ref = resolver.resolve_loaded(EntityKind.PARTY, "fuerza popular")
        assert ref.resolved
        assert ref.entity_id == FP
        assert ref.matched_name == "Fuerza Popular"
        assert ref.similarity == 1.0
        assert not ref.needs_review

    def test_low_similarity_fuzzy_needs_review(self, resolver):
        ref = resolver.resolve_loaded(EntityKind.PARTY, "Partido Fuerza Popular")
        assert ref.entity_id == FP
        assert ref.match_kind == MatchKind.FUZZY
        assert ref.similarity < 0.85
        assert ref.needs_review

    def test_close_fuzzy_does_not_need_review(self, resolver):
        ref = resolver.resolve_loaded(EntityKind.PARTY, "Fuerza Populars")
        assert ref.match_kind == MatchKind.FUZZY
        assert ref.similarity >= 0.85
        assert not ref.needs_review

    def test_unresolved(self, resolver):
        ref = resolver.resolve_loaded(EntityKind.PARTY, "Perú Libre")
        assert not ref.resolved
        assert ref.match_kind == MatchKind.NONE

    def test_kinds_are_separate(self, resolver):
        assert not resolver.resolve_loaded(EntityKind.DISTRICT, "Fuerza Popular").resolved
        assert resolver.resolve_loaded("district", "LIMA").entity_id == LIMA

    def test_memoized_result_keeps_raw_name(self, resolver):
        first = resolver.resolve_loaded(EntityKind.PARTY, "FUERZA POPULAR")
        second = resolver.resolve_loaded(EntityKind.PARTY, "fuerza popular")
        assert first.entity_id == second.entity_id
        assert second.raw_name == "fuerza popular"

    def test_unloaded_directory_raises(self):
        with pytest.raises(RuntimeError):
            EntityResolver().directory(EntityKind.PARTY)

    @pytest.mark.asyncio
    async def test_resolve_uses_preloaded_directories(self, resolver):
        ref = await resolver.resolve(EntityKind.PARTY, "RP")
        assert ref.entity_id == RP
