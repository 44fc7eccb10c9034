"""Candidate bulk-import worker.

Imports congressional candidate lists supplied as JSON rows or CSV text,
with Spanish or English column names. Every row is validated (required
fields, cargo, party and district resolution) before it is committed;
invalid rows are reported in the run metadata and never written.
"""

import csv
import io
import json
from pathlib import Path
from typing import Any, Mapping

from sqlalchemy.exc import SQLAlchemyError

from ..db import Database
from ..models import CandidateRecord
from ..reconcile import CandidateCommitter, candidate_entity_id, validate
from ..resolution import EntityResolver
from ..sync.changes import ChangeDetector
from ..sync.errors import FetchError, ItemError
from ..sync.ledger import SyncRunLedger
from ..sync.queue import RetryQueue
from .base import BaseSyncWorker, ItemOutcome, TriggerRequest

CANDIDATE_SOURCE = "candidates"
CANDIDATE_ENTITY = "candidate"

# Invalid rows kept in run metadata
MAX_REPORTED_INVALID = 50

# Column aliases, first present wins
NAME_KEYS = ("nombre", "full_name", "name", "fullname")
PARTY_KEYS = ("partido", "party", "partyname", "party_name")
DISTRICT_KEYS = ("distrito", "region", "district", "district_name")


def _first(row: Mapping[str, Any], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = row.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def _int_or_none(value: Any) -> int | None:
    if value is None or str(value).strip() == "":
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        raise ItemError(f"Invalid list position: {value!r}")


def parse_candidate_row(row: Mapping[str, Any], cargo: str) -> CandidateRecord:
    """Map one upstream row to a CandidateRecord.

    Raises:
        ItemError: The row is not a mapping or has unparseable fields
    """
    if not isinstance(row, Mapping):
        raise ItemError(f"Expected an object per candidate, got {type(row).__name__}")

    row = {str(k).strip().lower(): v for k, v in row.items()}
    return CandidateRecord(
        full_name=_first(row, NAME_KEYS) or "",
        cargo=str(row.get("cargo") or cargo).strip().lower(),
        party_name=_first(row, PARTY_KEYS) or "",
        party_abbreviation=_first(row, ("partido_sigla", "sigla", "party_abbreviation")),
        district_name=_first(row, DISTRICT_KEYS),
        list_position=_int_or_none(row.get("posicion") or row.get("list_position")),
        dni=_first(row, ("dni",)),
        jne_id=_first(row, ("jne_id",)),
        photo_url=_first(row, ("foto", "photo_url")),
        djhv_url=_first(row, ("hoja_vida", "djhv_url")),
        birth_date=_first(row, ("fecha_nacimiento", "birth_date")),
    )


def parse_csv(text: str) -> list[dict[str, str]]:
    """Parse CSV text with a header row into dicts with lowercased keys."""
    reader = csv.DictReader(io.StringIO(text.strip()))
    if reader.fieldnames is None:
        return []
    return [
        {(k or "").strip().lower(): (v or "").strip() for k, v in row.items()}
        for row in reader
    ]


def load_rows(path: Path) -> list[dict[str, Any]]:
    """Read candidate rows from a ``.json`` or ``.csv`` file."""
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".csv":
        return parse_csv(text)
    data = json.loads(text)
    if isinstance(data, dict):
        data = data.get("candidates") or data.get("data") or []
    if not isinstance(data, list):
        raise ValueError("JSON document must be a list of candidates")
    return data


class CandidateImportWorker(BaseSyncWorker[dict[str, Any], CandidateRecord]):
    """Bulk import of candidates for one cargo.

    Rows come from ``rows``, ``csv_text`` or ``path`` (in that order).
    """

    source_name = CANDIDATE_SOURCE

    def __init__(
        self,
        db: Database,
        cargo: str,
        rows: list[dict[str, Any]] | None = None,
        csv_text: str | None = None,
        path: Path | str | None = None,
        update_existing: bool = False,
        ledger: SyncRunLedger | None = None,
        resolver: EntityResolver | None = None,
        committer: CandidateCommitter | None = None,
        queue: RetryQueue | None = None,
    ):
        super().__init__(db, ledger)
        self.cargo = cargo.strip().lower()
        self.rows = rows
        self.csv_text = csv_text
        self.path = Path(path) if path else None
        self.update_existing = update_existing
        self.resolver = resolver or EntityResolver(db)
        self.committer = committer or CandidateCommitter(
            db, detector=ChangeDetector(db), source=CANDIDATE_SOURCE
        )
        self.queue = queue or RetryQueue(db)
        self.scores_seeded = 0
        self.invalid: list[dict[str, Any]] = []

    async def fetch(self, request: TriggerRequest) -> list[dict[str, Any]]:
        if self.rows is not None:
            return list(self.rows)
        if self.csv_text is not None:
            return parse_csv(self.csv_text)
        if self.path is not None:
            try:
                return load_rows(self.path)
            except (OSError, ValueError) as e:
                raise FetchError(self.source_name, f"Cannot read {self.path}: {e}") from e
        raise FetchError(self.source_name, "No candidate rows supplied")

    async def prepare(self, request: TriggerRequest) -> None:
        self.scores_seeded = 0
        self.invalid = []
        self.metadata["cargo"] = self.cargo
        await self.resolver.refresh()

    def is_relevant(self, item: dict[str, Any]) -> bool:
        if not isinstance(item, Mapping):
            return True
        # Blank spreadsheet lines
        return any(v is not None and str(v).strip() for v in item.values())

    def normalize(self, item: dict[str, Any]) -> CandidateRecord:
        return parse_candidate_row(item, self.cargo)

    def describe(self, item: dict[str, Any]) -> str:
        if isinstance(item, Mapping):
            lowered = {str(k).lower(): v for k, v in item.items()}
            return (_first(lowered, NAME_KEYS) or "unnamed")[:80]
        return repr(item)[:80]

    async def process(self, record: CandidateRecord) -> ItemOutcome:
        report = await validate([record], self.resolver)
        if report.invalid:
            if len(self.invalid) < MAX_REPORTED_INVALID:
                self.invalid.append({"name": record.full_name, "errors": report.invalid[0].errors})
            self.metadata["invalid"] = self.metadata.get("invalid", 0) + 1
            self.logger.info(f"Invalid: {record.full_name}: {'; '.join(report.invalid[0].errors)}")
            return ItemOutcome.SKIPPED

        result = await self.committer.commit(report.valid, update_existing=self.update_existing)
        if result.errors:
            rc = report.valid[0]
            await self.queue.enqueue(
                self.source_name,
                CANDIDATE_ENTITY,
                entity_id=candidate_entity_id(rc),
                metadata={
                    "record": record.model_dump(mode="json"),
                    "update_existing": self.update_existing,
                },
            )
            raise ItemError(f"{result.errors[0].error}; queued for retry")

        self.scores_seeded += result.scores_seeded
        if result.inserted_ids:
            return ItemOutcome.CREATED
        if result.updated:
            return ItemOutcome.UPDATED
        return ItemOutcome.SKIPPED

    async def finalize(self) -> None:
        # Candidates of this cargo left without scores by earlier runs
        try:
            self.scores_seeded += await self.committer.seed_baseline_scores(cargo=self.cargo)
        except SQLAlchemyError as e:
            self.logger.warning(f"Seeding baseline scores failed: {e}")
            await self.queue.enqueue(self.source_name, "baseline_scores", priority=3)
        self.metadata["scores_seeded"] = self.scores_seeded
        if self.invalid:
            self.metadata["invalid_records"] = self.invalid
