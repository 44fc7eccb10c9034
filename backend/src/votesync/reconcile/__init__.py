"""Bulk validation and idempotent commits of reconciled records."""

from .committer import (
    BASELINE_SCORES,
    CandidateCommitter,
    CommitError,
    CommitResult,
    ImportStatus,
    NewsCommitter,
    candidate_entity_id,
)
from .validator import InvalidRecord, ResolvedCandidate, ValidationReport, check_structure, validate

__all__ = [
    "BASELINE_SCORES",
    "CandidateCommitter",
    "CommitError",
    "CommitResult",
    "ImportStatus",
    "InvalidRecord",
    "NewsCommitter",
    "ResolvedCandidate",
    "ValidationReport",
    "candidate_entity_id",
    "check_structure",
    "validate",
]
