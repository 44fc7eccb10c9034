"""Entity resolution: canonical ids for loosely spelled upstream names."""

from .matcher import (
    CandidateRef,
    NewsMatcher,
    PartyRef,
    analyze_sentiment,
    calculate_relevance,
    contains_name,
    match_news,
)
from .resolver import (
    EntityKind,
    EntityResolver,
    MatchKind,
    NameCandidate,
    ResolvedEntityRef,
    name_similarity,
    normalize_name,
    resolve_name,
)

__all__ = [
    "CandidateRef",
    "EntityKind",
    "EntityResolver",
    "MatchKind",
    "NameCandidate",
    "NewsMatcher",
    "PartyRef",
    "ResolvedEntityRef",
    "analyze_sentiment",
    "calculate_relevance",
    "contains_name",
    "match_news",
    "name_similarity",
    "normalize_name",
    "resolve_name",
]
