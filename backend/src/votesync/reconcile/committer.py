"""Idempotent commits of reconciled records.

Each record is written in its own transaction. Inserts are keyed on the
natural key and use ``ON CONFLICT DO NOTHING``: a record whose key is
already stored is counted as skipped, never overwritten. Any other
database error rolls back that record only and is reported in
``errors``. A new candidate and its baseline scores are inserted
in the same transaction, so a candidate row never exists without scores
unless the caller opts out of seeding.
"""

import hashlib
from datetime import datetime
from typing import Any, Callable
from uuid import UUID, uuid4

from pydantic import BaseModel, Field
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

from ..db import Database
from ..logging import get_context_logger
from ..models import NewsItem, NewsMatch
from ..schema import candidates, districts, news_mentions, parties, scores
from ..sync.changes import ChangeDetector
from .validator import ResolvedCandidate

logger = get_context_logger(__name__)

CANDIDATE_ENTITY = "candidate"

BASELINE_SCORES = {
    "competence": 50.0,
    "integrity": 50.0,
    "transparency": 50.0,
    "confidence": 30.0,
    "score_balanced": 50.0,
    "score_merit": 50.0,
    "score_integrity": 50.0,
}


def candidate_entity_id(rc: ResolvedCandidate) -> str:
    """Change-detector key for a candidate: normalized name and cargo."""
    name, cargo = rc.record.natural_key
    return f"{name}|{cargo}"


class CommitError(BaseModel):
    key: str
    error: str
    error_type: str


class CommitResult(BaseModel):
    """Outcome of committing one batch."""

    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[CommitError] = Field(default_factory=list)
    inserted_ids: list[UUID] = Field(default_factory=list)
    scores_seeded: int = 0
    failed_records: list[ResolvedCandidate] = Field(default_factory=list)


class ImportStatus(BaseModel):
    """Summary of imported candidates."""

    total_candidates: int = 0
    by_cargo: dict[str, int] = Field(default_factory=dict)
    by_party: list[dict[str, Any]] = Field(default_factory=list)
    by_district: list[dict[str, Any]] = Field(default_factory=list)
    without_scores: int = 0
    needs_review: int = 0


class CandidateCommitter:
    """Writes validated candidates and seeds their baseline scores."""

    def __init__(
        self,
        db: Database,
        detector: ChangeDetector | None = None,
        source: str = "candidates",
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.db = db
        self.detector = detector
        self.source = source
        self._clock = clock

    async def commit(
        self,
        records: list[ResolvedCandidate],
        update_existing: bool = False,
        seed_scores: bool = True,
    ) -> CommitResult:
        """Commit a batch of validated candidates.

        Args:
            records: Output of ``validate(...).valid``
            update_existing: Refresh stored rows whose upstream payload
                changed, unless the row was manually verified
            seed_scores: Insert baseline scores for each new candidate in
                the same transaction as the candidate row

        Returns:
            CommitResult with per-outcome counts
        """
        result = CommitResult()

        for rc in records:
            key = candidate_entity_id(rc)
            try:
                outcome = await self._commit_one(rc, update_existing, seed_scores)
            except SQLAlchemyError as e:
                result.errors.append(
                    CommitError(key=key, error=str(e.__cause__ or e), error_type=type(e).__name__)
                )
                result.failed_records.append(rc)
                logger.warning(f"Commit failed for {rc.record.full_name}: {e}", extra={"key": key})
                continue

            if isinstance(outcome, UUID):
                result.inserted += 1
                result.inserted_ids.append(outcome)
                if seed_scores:
                    result.scores_seeded += 1
            elif outcome == "updated":
                result.updated += 1
            else:
                result.skipped += 1

        logger.info(
            f"Committed candidates: {result.inserted} inserted, {result.updated} updated, "
            f"{result.skipped} skipped, {len(result.errors)} errors"
        )
        return result

    async def _slug_for_insert(self, session, rc: ResolvedCandidate) -> str | None:
        """Slug for a new row, or None when the natural key is already stored.

        The slug drops punctuation, so distinct natural keys can share one;
        the later key gets a suffix derived from its normalized name.
        """
        record = rc.record
        stored = (
            await session.execute(
                select(candidates.c.id)
                .where(candidates.c.normalized_name == record.normalized_name)
                .where(candidates.c.cargo == rc.cargo.value)
            )
        ).first()
        if stored is not None:
            return None

        slug = record.slug
        taken = (await session.execute(select(candidates.c.id).where(candidates.c.slug == slug))).first()
        if taken is None:
            return slug
        digest = hashlib.sha1(record.normalized_name.encode("utf-8")).hexdigest()[:8]
        return f"{slug}-{digest}"

    async def _commit_one(
        self, rc: ResolvedCandidate, update_existing: bool, seed_scores: bool
    ) -> UUID | str:
        """Insert, update or skip one record.

        A new candidate and its baseline scores share one transaction.

        Returns:
            New candidate id, or ``"updated"`` / ``"skipped"``
        """
        key = candidate_entity_id(rc)
        check = None
        if self.detector is not None:
            check = await self.detector.should_process(
                CANDIDATE_ENTITY, key, self.source, rc.record.fingerprint_payload()
            )
            if not check.process:
                return "skipped"

        now = self._clock()
        record = rc.record
        fields = {
            "full_name": record.full_name.strip(),
            "party_id": rc.party_id,
            "district_id": rc.district_id,
            "list_position": record.list_position,
            "dni": record.dni,
            "jne_id": record.jne_id,
            "photo_url": record.photo_url,
            "djhv_url": record.djhv_url,
            "birth_date": record.birth_date,
            "needs_review": rc.needs_review,
            "review_notes": "; ".join(rc.review_notes) or None,
            "last_updated": now,
        }

        async with self.db.session() as session:
            new_id = None
            slug = await self._slug_for_insert(session, rc)
            if slug is not None:
                stmt = (
                    self.db.insert(candidates)
                    .values(
                        id=uuid4(),
                        slug=slug,
                        normalized_name=record.normalized_name,
                        cargo=rc.cargo.value,
                        is_active=True,
                        data_source=self.source,
                        data_verified=False,
                        created_at=now,
                        **fields,
                    )
                    .on_conflict_do_nothing(index_elements=["normalized_name", "cargo"])
                    .returning(candidates.c.id)
                )
                new_id = (await session.execute(stmt)).scalar_one_or_none()

            if new_id is not None and seed_scores:
                await session.execute(
                    scores.insert().values(candidate_id=new_id, created_at=now, **BASELINE_SCORES)
                )

            if new_id is None and update_existing:
                updated = await session.execute(
                    update(candidates)
                    .where(candidates.c.normalized_name == record.normalized_name)
                    .where(candidates.c.cargo == rc.cargo.value)
                    .where(candidates.c.data_verified.is_(False))
                    .values(**fields)
                )
                outcome: UUID | str = "updated" if updated.rowcount else "skipped"
            else:
                outcome = new_id if new_id is not None else "skipped"

        if check is not None and outcome != "skipped":
            await self.detector.record_processed(CANDIDATE_ENTITY, key, self.source, check.data_hash)
        return outcome

    async def seed_baseline_scores(
        self, candidate_ids: list[UUID] | None = None, cargo: str | None = None
    ) -> int:
        """Create placeholder score rows for candidates lacking one.

        Restricted to ``candidate_ids`` when given, otherwise every active
        candidate (of ``cargo``, when given). Safe to re-run: candidates
        that already have scores are excluded by the set difference and by
        the conflict clause.

        Returns:
            Number of score rows created
        """
        now = self._clock()
        query = (
            select(candidates.c.id)
            .select_from(candidates.outerjoin(scores, candidates.c.id == scores.c.candidate_id))
            .where(scores.c.candidate_id.is_(None))
        )
        if candidate_ids is not None:
            if not candidate_ids:
                return 0
            query = query.where(candidates.c.id.in_(candidate_ids))
        else:
            query = query.where(candidates.c.is_active.is_(True))
        if cargo is not None:
            query = query.where(candidates.c.cargo == cargo)

        async with self.db.session() as session:
            missing = (await session.execute(query)).scalars().all()
            if not missing:
                return 0
            created = (
                await session.execute(
                    self.db.insert(scores)
                    .values([
                        {"candidate_id": cid, "created_at": now, **BASELINE_SCORES}
                        for cid in missing
                    ])
                    .on_conflict_do_nothing(index_elements=["candidate_id"])
                    .returning(scores.c.candidate_id)
                )
            ).scalars().all()

        logger.info(f"Seeded baseline scores for {len(created)} candidates")
        return len(created)

    async def import_status(self) -> ImportStatus:
        """Counts of active candidates by cargo, party and district."""
        active = candidates.c.is_active.is_(True)
        async with self.db.session() as session:
            total = (
                await session.execute(select(func.count()).select_from(candidates).where(active))
            ).scalar_one()
            by_cargo = (
                await session.execute(
                    select(candidates.c.cargo, func.count().label("count"))
                    .where(active)
                    .group_by(candidates.c.cargo)
                )
            ).fetchall()
            by_party = (
                await session.execute(
                    select(parties.c.name, func.count().label("count"))
                    .select_from(candidates.join(parties, candidates.c.party_id == parties.c.id))
                    .where(active)
                    .group_by(parties.c.name)
                    .order_by(func.count().desc(), parties.c.name)
                    .limit(20)
                )
            ).fetchall()
            by_district = (
                await session.execute(
                    select(districts.c.name, func.count().label("count"))
                    .select_from(candidates.join(districts, candidates.c.district_id == districts.c.id))
                    .where(active)
                    .group_by(districts.c.name)
                    .order_by(func.count().desc(), districts.c.name)
                    .limit(10)
                )
            ).fetchall()
            without_scores = (
                await session.execute(
                    select(func.count())
                    .select_from(candidates.outerjoin(scores, candidates.c.id == scores.c.candidate_id))
                    .where(active)
                    .where(scores.c.candidate_id.is_(None))
                )
            ).scalar_one()
            needs_review = (
                await session.execute(
                    select(func.count())
                    .select_from(candidates)
                    .where(active)
                    .where(candidates.c.needs_review.is_(True))
                )
            ).scalar_one()

        return ImportStatus(
            total_candidates=total,
            by_cargo={r.cargo: r.count for r in by_cargo},
            by_party=[{"party": r.name, "count": r.count} for r in by_party],
            by_district=[{"district": r.name, "count": r.count} for r in by_district],
            without_scores=without_scores,
            needs_review=needs_review,
        )


class NewsCommitter:
    """Stores news mentions, one row per article URL."""

    def __init__(self, db: Database, clock: Callable[[], datetime] = datetime.utcnow):
        self.db = db
        self._clock = clock

    async def exists(self, url: str) -> bool:
        async with self.db.session() as session:
            row = (
                await session.execute(select(news_mentions.c.id).where(news_mentions.c.url == url))
            ).first()
            return row is not None

    async def store(self, item: NewsItem, match: NewsMatch) -> UUID | None:
        """Insert a mention for ``item``.

        Returns:
            The new row id, or None when the URL is already stored
        """
        stmt = (
            self.db.insert(news_mentions)
            .values(
                id=uuid4(),
                candidate_id=match.candidate_id,
                party_id=match.party_id,
                source=item.source,
                title=item.title,
                url=item.url,
                excerpt=item.excerpt or None,
                published_at=item.published_at,
                sentiment=match.sentiment.value,
                relevance_score=match.relevance_score,
                keywords=match.keywords,
                created_at=self._clock(),
            )
            .on_conflict_do_nothing(index_elements=["url"])
            .returning(news_mentions.c.id)
        )
        async with self.db.session() as session:
            return (await session.execute(stmt)).scalar_one_or_none()
