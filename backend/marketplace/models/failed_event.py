"""FailedEvent model"""
from sqlalchemy import Column, Index, Integer, String, Text, JSON, DateTime, text
from datetime import datetime, timezone
from marketplace.models.base import Base

PENDING_WITH_TRANSACTION = text("status = 'pending' AND external_transaction_id IS NOT NULL")
PENDING_WITHOUT_TRANSACTION = text("status = 'pending' AND external_transaction_id IS NULL AND event_id IS NOT NULL")


class FailedEvent(Base):
    """Recovery log for payment events that could not be materialized"""
    __tablename__ = "failed_events"
    __table_args__ = (
        # At most one pending row per transaction (or per event when there is no transaction)
        Index(
            "uq_failed_events_pending_transaction",
            "external_transaction_id",
            unique=True,
            postgresql_where=PENDING_WITH_TRANSACTION,
            sqlite_where=PENDING_WITH_TRANSACTION,
        ),
        Index(
            "uq_failed_events_pending_event",
            "event_id",
            unique=True,
            postgresql_where=PENDING_WITHOUT_TRANSACTION,
            sqlite_where=PENDING_WITHOUT_TRANSACTION,
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    external_transaction_id = Column(String(255), nullable=True, index=True)
    event_id = Column(String(255), nullable=True, index=True)
    event_type = Column(String(100), nullable=True, index=True)
    error_kind = Column(String(50), nullable=False, index=True)  # missing_metadata, partial_write_failure, ...
    error_message = Column(Text, nullable=False)
    raw_payload = Column(JSON, nullable=True)
    retry_count = Column(Integer, default=0, nullable=False)
    status = Column(String(20), default="pending", nullable=False, index=True)  # pending, resolved
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    last_seen_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
