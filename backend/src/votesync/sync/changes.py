"""Change detection for upstream records.

Stores a fingerprint per (entity_type, entity_id, source) and tells
callers whether an upstream record changed since it was last committed.
Checking never writes; only ``record_processed`` does, and callers invoke
it after their downstream write succeeded.
"""

import hashlib
import json
import re
from datetime import date, datetime
from typing import Any, Callable, Mapping
from uuid import uuid4

from sqlalchemy import case, select

from ..db import Database
from ..logging import get_logger
from ..models import ChangeCheck, EntityHash
from ..schema import entity_hashes

logger = get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")


def canonicalize(value: Any) -> Any:
    """Normalize a payload so cosmetic differences hash the same.

    Strings are trimmed with inner whitespace collapsed, mapping keys are
    sorted by the JSON encoder, and null values are dropped from mappings.
    """
    if isinstance(value, str):
        return _WHITESPACE.sub(" ", value).strip()
    if isinstance(value, Mapping):
        return {
            str(k): canonicalize(v)
            for k, v in value.items()
            if v is not None
        }
    if isinstance(value, (list, tuple)):
        return [canonicalize(v) for v in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def fingerprint(payload: Mapping[str, Any]) -> str:
    """Stable SHA-256 digest of a normalized payload."""
    encoded = json.dumps(
        canonicalize(payload),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


class ChangeDetector:
    """Fingerprint store answering "has this upstream record changed?"."""

    def __init__(self, db: Database, clock: Callable[[], datetime] = datetime.utcnow):
        self.db = db
        self._clock = clock

    async def get(self, entity_type: str, entity_id: str, source: str) -> EntityHash | None:
        """Get the stored fingerprint for an entity, if any."""
        async with self.db.session() as session:
            row = (
                await session.execute(
                    select(entity_hashes)
                    .where(entity_hashes.c.entity_type == entity_type)
                    .where(entity_hashes.c.entity_id == str(entity_id))
                    .where(entity_hashes.c.source == source)
                )
            ).first()
            return self._row_to_hash(row) if row else None

    async def should_process(
        self,
        entity_type: str,
        entity_id: str,
        source: str,
        payload: Mapping[str, Any],
    ) -> ChangeCheck:
        """Decide whether a payload needs a downstream write.

        Args:
            entity_type: Kind of entity (e.g. 'candidate')
            entity_id: Entity identifier or natural key
            source: Source key the payload came from
            payload: Normalized upstream payload

        Returns:
            ChangeCheck with ``process`` False only when the stored
            fingerprint equals the payload's fingerprint
        """
        data_hash = fingerprint(payload)
        existing = await self.get(entity_type, entity_id, source)
        if existing is None:
            return ChangeCheck(process=True, previous_hash=None, data_hash=data_hash)
        return ChangeCheck(
            process=existing.data_hash != data_hash,
            previous_hash=existing.data_hash,
            data_hash=data_hash,
        )

    async def record_processed(
        self,
        entity_type: str,
        entity_id: str,
        source: str,
        data_hash: str,
    ) -> EntityHash:
        """Upsert the fingerprint after a successful downstream commit.

        ``last_checked_at`` always moves to now; ``last_changed_at`` only
        moves when the stored hash differs (or on first sight).
        """
        now = self._clock()
        stmt = self.db.insert(entity_hashes).values(
            id=uuid4(),
            entity_type=entity_type,
            entity_id=str(entity_id),
            source=source,
            data_hash=data_hash,
            last_checked_at=now,
            last_changed_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["entity_type", "entity_id", "source"],
            set_={
                "last_changed_at": case(
                    (entity_hashes.c.data_hash != stmt.excluded.data_hash, stmt.excluded.last_checked_at),
                    else_=entity_hashes.c.last_changed_at,
                ),
                "data_hash": stmt.excluded.data_hash,
                "last_checked_at": stmt.excluded.last_checked_at,
            },
        ).returning(*entity_hashes.c)

        async with self.db.session() as session:
            row = (await session.execute(stmt)).first()

        logger.debug(
            f"Recorded fingerprint for {entity_type} {entity_id} from {source}",
            extra={"entity_type": entity_type, "entity_id": str(entity_id), "source": source},
        )
        return self._row_to_hash(row)

    def _row_to_hash(self, row) -> EntityHash:
        m = row._mapping
        return EntityHash(
            entity_type=m["entity_type"],
            entity_id=m["entity_id"],
            source=m["source"],
            data_hash=m["data_hash"],
            last_checked_at=m["last_checked_at"],
            last_changed_at=m["last_changed_at"],
        )
