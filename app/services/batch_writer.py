"""Batched upserts keyed on a natural key."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.services.exceptions import PersistenceError

logger = logging.getLogger(__name__)


def dialect_insert(db: Session, model):
    """Return an INSERT construct that supports ON CONFLICT for the session's dialect.

    Raises:
        PersistenceError: If the database dialect has no ON CONFLICT support.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise PersistenceError(f"Upsert not supported for dialect '{dialect}'")
    return insert(model)


@dataclass
class UpsertResult:
    """Outcome of an upsert across all batches."""

    written: int = 0
    failed: int = 0
    failed_batches: int = 0
    written_keys: List[Tuple[Any, ...]] = field(default_factory=list)


class BatchUpsertWriter:
    """Writes rows in fixed-size batches with last-write-wins upsert.

    Each batch commits on its own. A failing batch is rolled back, logged and
    skipped; the remaining batches are still written.
    """

    def __init__(self, model, conflict_keys: Sequence[str], batch_size: int = None):
        """Initialize writer.

        Args:
            model: SQLAlchemy model to write.
            conflict_keys: Columns of the model's natural-key unique constraint.
            batch_size: Rows per batch (defaults to settings.upsert_batch_size).
        """
        self.model = model
        self.conflict_keys = list(conflict_keys)
        self.batch_size = batch_size or settings.upsert_batch_size

    def _write_batch(self, db: Session, batch: List[Dict[str, Any]]) -> None:
        stmt = dialect_insert(db, self.model).values(batch)
        update_columns = {
            column: stmt.excluded[column]
            for column in batch[0].keys()
            if column not in self.conflict_keys
        }
        stmt = stmt.on_conflict_do_update(index_elements=self.conflict_keys, set_=update_columns)
        db.execute(stmt)
        db.commit()

    def upsert(self, db: Session, rows: List[Dict[str, Any]]) -> UpsertResult:
        """Upsert rows on the natural key.

        Rows must all carry the same columns; every non-key column present is
        replaced on conflict.

        Args:
            db: Database session.
            rows: Column mappings to write.

        Returns:
            UpsertResult with written/failed row counts and the keys written.
        """
        result = UpsertResult()
        if not rows:
            return result

        table = self.model.__tablename__
        batch_count = (len(rows) + self.batch_size - 1) // self.batch_size

        for index, start in enumerate(range(0, len(rows), self.batch_size), start=1):
            batch = rows[start:start + self.batch_size]
            try:
                self._write_batch(db, batch)
            except (SQLAlchemyError, PersistenceError) as e:
                db.rollback()
                logger.error(f"Upsert error on {table} at batch {index}/{batch_count}: {e}")
                result.failed += len(batch)
                result.failed_batches += 1
                continue

            result.written += len(batch)
            result.written_keys.extend(
                tuple(row[key] for key in self.conflict_keys) for row in batch
            )

        logger.info(
            f"Upserted {result.written}/{len(rows)} rows into {table} "
            f"({result.failed_batches} failed batches)"
        )
        return result
