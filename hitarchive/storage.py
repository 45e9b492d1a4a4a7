"""
Record store: the only shared mutable state of a run.

Wraps one SQLAlchemy session over the SQLite database. Batch upserts run in a
single transaction and reconcile each incoming record against the stored row
with ``merge.reconcile``. Eligibility queries are compiled from the condition
tables in ``stages`` so SQL and Python agree on what a stage is.
"""

from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Union

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import SQLAlchemyError

from .database import (
    CHANNEL_MARKERS,
    MUTABLE_FIELDS,
    ORIGIN_FIELDS,
    Record,
    RecordKey,
    get_session,
    init_database,
)
from .logger import get_logger
from .merge import diff_dict, reconcile
from .normalize import parse_timestamp
from .retry import StorageError
from .stages import (
    Condition,
    EligibilityParams,
    RecordStage,
    Step,
    eligibility_for,
    stage_conditions,
)

KEY_FIELDS = ("external_id", "source")
WRITABLE_FIELDS = frozenset(ORIGIN_FIELDS) | frozenset(MUTABLE_FIELDS)

# Steps that run before scoring have no score to order by
_PRE_SCORE_STEPS = {Step.SCORE, Step.CONTENT}


def _column(name: str):
    if name == "description_length":
        return func.length(func.coalesce(Record.description, ""))
    return getattr(Record, name)


def condition_clause(condition: Condition):
    """Compile a stage Condition into a SQLAlchemy clause."""
    column = _column(condition.field)
    if condition.op == "is_null":
        return column.is_(None)
    if condition.op == "not_null":
        return column.isnot(None)
    if condition.op == "eq":
        return column == condition.value
    if condition.op == "ge":
        return column >= condition.value
    if condition.op == "lt":
        return column < condition.value
    raise ValueError(f"Unknown condition op: {condition.op}")


def stage_clause(stage: RecordStage):
    return and_(*[condition_clause(c) for c in stage_conditions(stage)])


def _record_key(key: Union[RecordKey, tuple]) -> RecordKey:
    return key if isinstance(key, RecordKey) else RecordKey(*key)


class RecordStore:
    """
    Persistent, keyed collection of records.

    Usage:
        with RecordStore(Path("data/hitarchive.db")) as store:
            store.upsert_batch(records)
            for record in store.select_eligible(Step.SCORE, limit=100):
                ...
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        try:
            self._engine = init_database(self.db_path)
            self._session = get_session(self._engine)
        except SQLAlchemyError as e:
            raise StorageError(f"Could not open record store {self.db_path}: {e}") from e
        self._logger = get_logger()

    def __enter__(self) -> "RecordStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self._session is None:
            return
        try:
            self._session.close()
        finally:
            self._engine.dispose()
            self._session = None

    def _fail(self, action: str, error: SQLAlchemyError) -> StorageError:
        self._session.rollback()
        self._logger.error(f"Record store {action} failed", error=str(error))
        return StorageError(f"Record store {action} failed: {error}")

    # Writes

    def upsert_batch(self, records: Iterable[Mapping[str, Any]]) -> int:
        """
        Insert or reconcile a batch of records in one transaction.

        Duplicate keys inside the batch collapse to their last occurrence.

        Args:
            records: Mappings with at least ``external_id`` and ``source``

        Returns:
            Number of distinct keys written
        """
        batch: Dict[RecordKey, Mapping[str, Any]] = {}
        for record in records:
            if not record.get("external_id") or not record.get("source"):
                raise ValueError(f"Record is missing its key fields: {dict(record)!r}")
            key = RecordKey(str(record["external_id"]), str(record["source"]))
            incoming = dict(record)
            if isinstance(incoming.get("created_at"), str):
                incoming["created_at"] = parse_timestamp(incoming["created_at"])
            batch[key] = incoming

        if not batch:
            return 0

        try:
            for key, incoming in batch.items():
                row = self._session.get(Record, tuple(key))
                if row is None:
                    base = {
                        "external_id": key.external_id,
                        "source": key.source,
                        "popularity": 0,
                        "description": "",
                        "enrich_attempt_count": 0,
                    }
                    merged = reconcile(base, incoming)
                    self._session.add(Record(**merged))
                else:
                    current = row.to_dict()
                    merged = reconcile(current, incoming)
                    for field, change in diff_dict(current, merged).items():
                        if field in WRITABLE_FIELDS:
                            setattr(row, field, change["new"])
            self._session.commit()
        except SQLAlchemyError as e:
            raise self._fail("upsert", e) from e

        return len(batch)

    def apply_stage_result(self, key: Union[RecordKey, tuple], fields: Mapping[str, Any]) -> bool:
        """
        Write a stage's output fields onto one record.

        Returns False (and logs) when the record no longer exists.
        """
        rejected = [f for f in fields if f in KEY_FIELDS or f not in WRITABLE_FIELDS]
        if rejected:
            raise ValueError(f"Cannot write fields {sorted(rejected)} as a stage result")

        key = _record_key(key)
        try:
            row = self._session.get(Record, tuple(key))
            if row is None:
                self._logger.warning("Stage result for unknown record", key=list(key))
                return False
            for field, value in fields.items():
                setattr(row, field, value)
            self._session.commit()
        except SQLAlchemyError as e:
            raise self._fail("stage result write", e) from e
        return True

    def mark_attempt_failed(self, key: Union[RecordKey, tuple]) -> None:
        """Increment the enrichment attempt counter of one record."""
        key = _record_key(key)
        try:
            self._session.query(Record).filter(
                Record.external_id == key.external_id,
                Record.source == key.source,
            ).update(
                {Record.enrich_attempt_count: func.coalesce(Record.enrich_attempt_count, 0) + 1},
                synchronize_session=False,
            )
            self._session.commit()
            row = self._session.get(Record, tuple(key))
            if row is not None:
                self._session.refresh(row)
        except SQLAlchemyError as e:
            raise self._fail("attempt counter update", e) from e

    # Reads

    def get(self, key: Union[RecordKey, tuple]) -> Optional[Record]:
        try:
            return self._session.get(Record, tuple(_record_key(key)))
        except SQLAlchemyError as e:
            raise self._fail("read", e) from e

    def _eligible_query(self, step: Step, params: Optional[EligibilityParams]):
        step = Step(step)
        eligibility = eligibility_for(step, params)
        query = self._session.query(Record).filter(
            or_(*[stage_clause(stage) for stage in eligibility.stages]),
            *[condition_clause(c) for c in eligibility.conditions],
        )
        if step in _PRE_SCORE_STEPS:
            return query.order_by(Record.popularity.desc(), Record.external_id)
        return query.order_by(*self._priority_order())

    @staticmethod
    def _priority_order():
        return (
            Record.relevance_score.is_(None),
            Record.relevance_score.desc(),
            Record.popularity.desc(),
            Record.external_id,
        )

    def select_eligible(
        self,
        step: Step,
        params: Optional[EligibilityParams] = None,
        limit: Optional[int] = None,
    ) -> List[Record]:
        """
        Records eligible for ``step``, highest priority first.

        Args:
            step: Step whose eligibility predicate applies
            params: Threshold / attempt ceiling / channel settings
            limit: Maximum number of records to return
        """
        try:
            query = self._eligible_query(step, params)
            if limit is not None:
                query = query.limit(limit)
            return query.all()
        except SQLAlchemyError as e:
            raise self._fail("eligibility query", e) from e

    def count_eligible(self, step: Step, params: Optional[EligibilityParams] = None) -> int:
        try:
            return self._eligible_query(step, params).order_by(None).count()
        except SQLAlchemyError as e:
            raise self._fail("eligibility count", e) from e

    def iterate(self, batch_size: int = 500) -> Iterator[Record]:
        """Stream all records in priority order."""
        try:
            query = self._session.query(Record).order_by(*self._priority_order())
            for record in query.yield_per(batch_size):
                yield record
        except SQLAlchemyError as e:
            raise self._fail("iteration", e) from e

    def stats(self) -> Dict[str, Any]:
        """Counts per stage, per source and per notification channel."""
        try:
            session = self._session
            stats: Dict[str, Any] = {
                "total": session.query(func.count()).select_from(Record).scalar() or 0,
                "scored": session.query(func.count()).select_from(Record).filter(Record.relevance_score.isnot(None)).scalar() or 0,
                "enriched": session.query(func.count()).select_from(Record).filter(Record.summary.isnot(None)).scalar() or 0,
                "embedded": session.query(func.count()).select_from(Record).filter(Record.embedded_at.isnot(None)).scalar() or 0,
            }
            stats["stages"] = {
                stage.value: session.query(func.count()).select_from(Record).filter(stage_clause(stage)).scalar() or 0
                for stage in RecordStage
            }
            stats["sources"] = {
                source: count
                for source, count in session.query(Record.source, func.count()).group_by(Record.source)
            }
            stats["sent"] = {
                channel: session.query(func.count()).select_from(Record).filter(getattr(Record, marker).isnot(None)).scalar() or 0
                for channel, marker in CHANNEL_MARKERS.items()
            }
            return stats
        except SQLAlchemyError as e:
            raise self._fail("stats", e) from e
