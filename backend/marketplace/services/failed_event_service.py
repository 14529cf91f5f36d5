"""Failed event recovery log"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace.core.exceptions import FailureRecorderUnavailable
from marketplace.core.metrics import failed_events_counter
from marketplace.models.failed_event import FailedEvent

logger = logging.getLogger(__name__)
payments_logger = logging.getLogger("payments")


def _find_pending(db: Session, external_transaction_id: Optional[str], event_id: Optional[str]) -> Optional[FailedEvent]:
    query = db.query(FailedEvent).filter(FailedEvent.status == "pending")
    if external_transaction_id:
        return query.filter(FailedEvent.external_transaction_id == external_transaction_id).first()
    if event_id:
        return query.filter(FailedEvent.event_id == event_id).first()
    return None


def _upsert_pending(
    db: Session,
    *,
    external_transaction_id: Optional[str],
    event_id: Optional[str],
    event_type: Optional[str],
    error_kind: str,
    error_message: str,
    raw_payload: Any,
) -> FailedEvent:
    now = datetime.now(timezone.utc)
    failed = _find_pending(db, external_transaction_id, event_id)
    if failed is not None:
        failed.retry_count += 1
        failed.error_kind = error_kind
        failed.error_message = error_message
        failed.raw_payload = raw_payload
        failed.last_seen_at = now
    else:
        failed = FailedEvent(
            external_transaction_id=external_transaction_id,
            event_id=event_id,
            event_type=event_type,
            error_kind=error_kind,
            error_message=error_message,
            raw_payload=raw_payload,
            retry_count=0,
            status="pending",
            created_at=now,
            last_seen_at=now,
        )
        db.add(failed)
    db.commit()
    return failed


def record_failed_event(
    session_factory: Callable[[], Session],
    *,
    error_kind: str,
    error_message: str,
    raw_payload: Any,
    external_transaction_id: Optional[str] = None,
    event_id: Optional[str] = None,
    event_type: Optional[str] = None,
) -> FailedEvent:
    """Persist an event that could not be materialized

    Writes through a fresh session from ``session_factory`` so the state of the
    caller's session does not matter. A redelivery of an event that already has
    a pending row bumps its ``retry_count`` instead of adding a row; the partial
    unique indexes on ``failed_events`` decide when two deliveries race.

    Raises:
        FailureRecorderUnavailable: the row could not be written. The full
            event has been logged at CRITICAL before this is raised.
    """
    # The log line is written first so the failure is traceable even if the insert fails
    payments_logger.error(
        f"Payment event failed [{error_kind}] transaction={external_transaction_id} "
        f"event={event_id} type={event_type}: {error_message}"
    )
    failed_events_counter.labels(error_kind=error_kind).inc()

    fields = dict(
        external_transaction_id=external_transaction_id,
        event_id=event_id,
        event_type=event_type,
        error_kind=error_kind,
        error_message=error_message,
        raw_payload=raw_payload,
    )

    db = session_factory()
    try:
        try:
            failed = _upsert_pending(db, **fields)
        except IntegrityError:
            # A concurrent redelivery inserted the pending row after our lookup
            db.rollback()
            logger.info(f"Pending failed event for transaction {external_transaction_id} appeared concurrently, updating it")
            failed = _upsert_pending(db, **fields)
        db.refresh(failed)
        logger.info(f"Recorded failed event {failed.id} (retry_count={failed.retry_count}) for transaction {external_transaction_id}")
        return failed
    except SQLAlchemyError as e:
        db.rollback()
        logger.critical(
            f"Could not persist failed event [{error_kind}] transaction={external_transaction_id} "
            f"event={event_id}: {e}. Payload: {raw_payload!r}",
            exc_info=True
        )
        raise FailureRecorderUnavailable(f"Failed event could not be recorded: {e}") from e
    finally:
        db.close()
