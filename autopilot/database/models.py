"""SQLAlchemy tables backing the signal and trade collections."""

from sqlalchemy import JSON, Column, DateTime, Index, String
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class LedgerRowMixin:
    """One ledger record per row. The record itself lives in payload."""

    id = Column(String(64), primary_key=True)
    ticker = Column(String(16), nullable=False)
    status = Column(String(20), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
    payload = Column(JSON, nullable=False)

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(id={self.id}, ticker={self.ticker}, status={self.status})>"


class SignalRow(LedgerRowMixin, Base):
    """Scoring candidates."""

    __tablename__ = "signals"

    __table_args__ = (Index("ix_signals_status_created", "status", "created_at"),)


class TradeRow(LedgerRowMixin, Base):
    """Intended and live broker positions."""

    __tablename__ = "trades"

    __table_args__ = (
        Index("ix_trades_status", "status"),
        Index("ix_trades_ticker", "ticker"),
    )
