"""Validation of candidate batches before any write.

Checks required fields, the cargo enum, and that the party (and, where
the cargo requires one, the district) resolves to a canonical entity.
Validation only reads the resolver directories; it never writes.
"""

from typing import Iterable
from uuid import UUID

from pydantic import BaseModel, Field

from ..logging import get_context_logger
from ..models import CARGO_VALUES, CandidateRecord, Cargo
from ..resolution import EntityKind, EntityResolver

logger = get_context_logger(__name__)

MIN_NAME_LENGTH = 3


class ResolvedCandidate(BaseModel):
    """A valid record with its foreign references resolved."""

    record: CandidateRecord
    cargo: Cargo
    party_id: UUID
    district_id: UUID | None = None
    needs_review: bool = False
    review_notes: list[str] = Field(default_factory=list)


class InvalidRecord(BaseModel):
    record: CandidateRecord
    errors: list[str]


class ValidationReport(BaseModel):
    valid: list[ResolvedCandidate] = Field(default_factory=list)
    invalid: list[InvalidRecord] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.valid) + len(self.invalid)


def check_structure(record: CandidateRecord) -> list[str]:
    """Structural checks that need no lookups."""
    errors = []
    if not record.full_name or len(record.full_name.strip()) < MIN_NAME_LENGTH:
        errors.append(f"Full name required (at least {MIN_NAME_LENGTH} characters)")
    if not record.party_name or not record.party_name.strip():
        errors.append("Political party required")
    if record.cargo not in CARGO_VALUES:
        errors.append(f"Invalid cargo '{record.cargo}' (must be one of: {', '.join(CARGO_VALUES)})")
    elif Cargo(record.cargo).requires_district and not (record.district_name or "").strip():
        errors.append("District required for senador and diputado")
    return errors


async def validate(
    records: Iterable[CandidateRecord],
    resolver: EntityResolver,
) -> ValidationReport:
    """Split a batch into valid (resolved) and invalid records.

    An unresolvable party rejects the record. An unresolvable district
    rejects the record when the cargo requires one; otherwise the
    district is left null and the record flagged for review.
    """
    await resolver.load()
    report = ValidationReport()

    for record in records:
        errors = check_structure(record)
        notes: list[str] = []
        party_id = None
        district_id = None

        if record.party_name and record.party_name.strip():
            party = resolver.resolve_loaded(EntityKind.PARTY, record.party_name)
            if not party.resolved and record.party_abbreviation:
                party = resolver.resolve_loaded(EntityKind.PARTY, record.party_abbreviation)
            if not party.resolved:
                errors.append(f"Unknown party '{record.party_name}'")
            else:
                party_id = party.entity_id
                if party.needs_review:
                    notes.append(
                        f"Party '{record.party_name}' fuzzily matched '{party.matched_name}' "
                        f"(similarity {party.similarity:.2f})"
                    )

        if record.district_name and record.district_name.strip() and record.cargo in CARGO_VALUES:
            district = resolver.resolve_loaded(EntityKind.DISTRICT, record.district_name)
            if district.resolved:
                district_id = district.entity_id
                if district.needs_review:
                    notes.append(
                        f"District '{record.district_name}' fuzzily matched '{district.matched_name}' "
                        f"(similarity {district.similarity:.2f})"
                    )
            elif Cargo(record.cargo).requires_district:
                errors.append(f"Unknown district '{record.district_name}'")
            else:
                notes.append(f"District '{record.district_name}' not found")

        if errors:
            report.invalid.append(InvalidRecord(record=record, errors=errors))
            continue

        report.valid.append(
            ResolvedCandidate(
                record=record,
                cargo=Cargo(record.cargo),
                party_id=party_id,
                district_id=district_id,
                needs_review=bool(notes),
                review_notes=notes,
            )
        )

    if report.invalid:
        logger.warning(
            f"Validation rejected {len(report.invalid)} of {report.total} records",
            extra={"invalid": len(report.invalid), "total": report.total},
        )
    return report
