"""Collection stores for the signal and trade ledgers.

Each collection supports whole-collection read and replace, plus a subset
upsert used by the engines so one engine's write never clobbers rows another
engine changed concurrently. Every write path runs inside one transaction.
"""

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Generic, TypeVar

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from autopilot.database.connection import get_session, get_sync_session_factory
from autopilot.database.models import SignalRow, TradeRow
from autopilot.exceptions import LedgerError
from autopilot.ledger.guard import guard_signals
from autopilot.ledger.records import LedgerRecord, Signal, Trade

R = TypeVar("R", bound=LedgerRecord)


class CollectionStore(Generic[R]):
    """Read/write access to one ledger collection."""

    row_class: type = None
    record_class: type = None

    def __init__(self, session_factory: sessionmaker | None = None):
        self._session_factory = session_factory

    def _session(self):
        return get_session(self._session_factory or get_sync_session_factory())

    def _prepare(self, records: list[R]) -> None:
        """Hook run on every record batch before it is persisted."""

    def read_all(self) -> list[R]:
        """Load the whole collection, oldest first."""
        try:
            with self._session() as session:
                rows = session.execute(
                    select(self.row_class).order_by(self.row_class.created_at)
                ).scalars().all()
                return [self.record_class.model_validate(row.payload) for row in rows]
        except SQLAlchemyError as e:
            raise LedgerError(f"Failed to read {self.row_class.__tablename__}: {e}") from e

    def get(self, record_id: str) -> R | None:
        try:
            with self._session() as session:
                row = session.get(self.row_class, record_id)
                return self.record_class.model_validate(row.payload) if row else None
        except SQLAlchemyError as e:
            raise LedgerError(f"Failed to read {record_id}: {e}") from e

    def write_all(self, records: list[R]) -> None:
        """Replace the whole collection atomically."""
        records = list(records)
        self._prepare(records)
        keep = {r.id for r in records}
        try:
            with self._session() as session:
                existing = set(session.execute(select(self.row_class.id)).scalars().all())
                stale = existing - keep
                if stale:
                    session.execute(delete(self.row_class).where(self.row_class.id.in_(stale)))
                for record in records:
                    session.merge(self._to_row(record))
        except SQLAlchemyError as e:
            raise LedgerError(f"Failed to write {self.row_class.__tablename__}: {e}") from e
        logger.debug(f"Wrote {len(records)} records to {self.row_class.__tablename__}")

    def save(self, records: Iterable[R]) -> int:
        """Upsert the given records in one transaction. Returns the count written."""
        records = list(records)
        if not records:
            return 0
        self._prepare(records)
        try:
            with self._session() as session:
                for record in records:
                    session.merge(self._to_row(record))
        except SQLAlchemyError as e:
            raise LedgerError(f"Failed to save {self.row_class.__tablename__}: {e}") from e
        return len(records)

    def _to_row(self, record: R):
        if record.updated_at is None:
            record.updated_at = datetime.now(timezone.utc)
        return self.row_class(
            id=record.id,
            ticker=record.ticker,
            status=record.status.value,
            created_at=record.created_at,
            updated_at=record.updated_at,
            payload=record.model_dump(mode="json"),
        )


class SignalStore(CollectionStore[Signal]):
    """Signals, guarded so no SCORED record persists without a valid score."""

    row_class = SignalRow
    record_class = Signal

    def _prepare(self, records: list[Signal]) -> None:
        guard_signals(records)


class TradeStore(CollectionStore[Trade]):
    """Trades."""

    row_class = TradeRow
    record_class = Trade


class Ledger:
    """Both collections behind one handle."""

    def __init__(self, session_factory: sessionmaker | None = None):
        self.signals = SignalStore(session_factory)
        self.trades = TradeStore(session_factory)
