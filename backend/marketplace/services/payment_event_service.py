"""Payment event pipeline: verify, extract, materialize, record failures"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace.core.exceptions import (
    InvalidLifecycleTransition, MissingMetadata, PartialWriteFailure, PipelineError,
)
from marketplace.core.metrics import payment_events_counter
from marketplace.core.otel import get_tracer
from marketplace.schemas.payment_events import (
    PaymentFailedEvent, PaymentSucceededEvent, SessionCompletedEvent, SessionExpiredEvent,
)
from marketplace.services.checkout_metadata import extract_checkout_intent, parse_payment_event
from marketplace.services.failed_event_service import record_failed_event
from marketplace.services.notification_service import dispatch_order_notifications
from marketplace.services.order_lifecycle import handle_payment_failed, handle_session_expired
from marketplace.services.order_service import (
    get_order_by_payment_intent, get_order_by_transaction_id, materialize_order,
)
from marketplace.services.stripe_service import verify_payment_event

logger = logging.getLogger(__name__)
payments_logger = logging.getLogger("payments")

ORDER_WRITE_FAILURE = "order_write_failure"
LIFECYCLE_WRITE_FAILURE = "lifecycle_write_failure"


@dataclass
class ProcessingResult:
    """Outcome of one delivery; every status here is acknowledged with 200"""
    status: str
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    order_id: Optional[int] = None
    external_transaction_id: Optional[str] = None
    detail: Optional[str] = None
    notify: bool = field(default=False, repr=False)

    def to_response(self) -> Dict[str, Any]:
        response: Dict[str, Any] = {"status": self.status}
        if self.order_id is not None:
            response["order_id"] = self.order_id
        if self.detail:
            response["detail"] = self.detail
        return response


class PaymentEventProcessor:
    """Runs a single payment event delivery through the pipeline

    Holds everything the pipeline touches so tests can hand in their own
    session factory and dispatcher.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        webhook_secret: str,
        notification_dispatcher: Callable[[int, Callable[[], Session]], None] = dispatch_order_notifications,
    ):
        self.session_factory = session_factory
        self.webhook_secret = webhook_secret
        self.notification_dispatcher = notification_dispatcher
        self.tracer = get_tracer()

    def process(self, payload: bytes, sig_header: Optional[str]) -> ProcessingResult:
        """Handle one delivery

        Raises:
            SignatureInvalid: the delivery is not authentic; nothing was written.
            FailureRecorderUnavailable: a failure occurred and could not be
                recorded, so the gateway must retry.
        """
        event = verify_payment_event(payload, sig_header, self.webhook_secret)
        event_id = event.get("id")
        stripe_type = event.get("type")

        with self.tracer.start_as_current_span("payment_event.process") as span:
            span.set_attribute("payment_event.id", event_id or "")
            span.set_attribute("payment_event.stripe_type", stripe_type)

            try:
                parsed = parse_payment_event(event)
            except MissingMetadata as e:
                result = self._record_failure(event, e, event_type=stripe_type)
            else:
                if parsed is None:
                    logger.info(f"Ignoring unhandled event type {stripe_type} ({event_id})")
                    result = ProcessingResult(status="ignored", event_id=event_id, event_type=stripe_type)
                elif isinstance(parsed, SessionCompletedEvent):
                    result = self._handle_session_completed(event, parsed)
                elif isinstance(parsed, SessionExpiredEvent):
                    result = self._handle_session_expired(event, parsed)
                elif isinstance(parsed, PaymentFailedEvent):
                    result = self._handle_payment_failed(event, parsed)
                else:
                    result = self._handle_payment_succeeded(parsed)

            span.set_attribute("payment_event.outcome", result.status)
            if result.order_id is not None:
                span.set_attribute("order.id", result.order_id)

        payment_events_counter.labels(event_type=result.event_type or "unknown", outcome=result.status).inc()
        return result

    def dispatch_notifications(self, order_id: int) -> None:
        """Run the seller fan-out for an acknowledged order (background task)"""
        self.notification_dispatcher(order_id, self.session_factory)

    def _record_failure(
        self,
        event: Dict[str, Any],
        error: Exception,
        event_type: Optional[str],
        external_transaction_id: Optional[str] = None,
        error_kind: Optional[str] = None,
    ) -> ProcessingResult:
        kind = error_kind or (error.error_kind if isinstance(error, PipelineError) else "unexpected_error")
        record_failed_event(
            self.session_factory,
            error_kind=kind,
            error_message=str(error),
            raw_payload=event,
            external_transaction_id=external_transaction_id,
            event_id=event.get("id"),
            event_type=event.get("type"),
        )
        return ProcessingResult(
            status="recorded_failure",
            event_id=event.get("id"),
            event_type=event_type,
            external_transaction_id=external_transaction_id,
            detail=kind,
        )

    def _handle_session_completed(self, event: Dict[str, Any], parsed: SessionCompletedEvent) -> ProcessingResult:
        txn_id = parsed.external_transaction_id

        try:
            intent = extract_checkout_intent(parsed)
        except MissingMetadata as e:
            return self._record_failure(event, e, parsed.event_type, txn_id)

        db = self.session_factory()
        try:
            try:
                materialized = materialize_order(intent, db)
            except PartialWriteFailure as e:
                return self._record_failure(event, e, parsed.event_type, txn_id)
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Order write failed for transaction {txn_id}: {e}", exc_info=True)
                return self._record_failure(event, e, parsed.event_type, txn_id, error_kind=ORDER_WRITE_FAILURE)

            order = materialized.order
            if materialized.created:
                payments_logger.info(f"Order {order.id} materialized for transaction {txn_id} (event {parsed.event_id})")
            return ProcessingResult(
                status="materialized" if materialized.created else "duplicate",
                event_id=parsed.event_id,
                event_type=parsed.event_type,
                order_id=order.id,
                external_transaction_id=txn_id,
                notify=order.notified_at is None,
            )
        finally:
            db.close()

    def _handle_session_expired(self, event: Dict[str, Any], parsed: SessionExpiredEvent) -> ProcessingResult:
        txn_id = parsed.external_transaction_id
        db = self.session_factory()
        try:
            order = get_order_by_transaction_id(txn_id, db)
            return self._apply_lifecycle(event, parsed.event_type, parsed.event_id, order, db, handle_session_expired, txn_id)
        finally:
            db.close()

    def _handle_payment_failed(self, event: Dict[str, Any], parsed: PaymentFailedEvent) -> ProcessingResult:
        db = self.session_factory()
        try:
            order = get_order_by_payment_intent(parsed.payment_intent_id, db)
            if order is not None and parsed.failure_message:
                logger.info(f"Payment {parsed.payment_intent_id} failed for order {order.id}: {parsed.failure_message}")
            txn_id = order.external_transaction_id if order is not None else None
            return self._apply_lifecycle(event, parsed.event_type, parsed.event_id, order, db, handle_payment_failed, txn_id)
        finally:
            db.close()

    def _apply_lifecycle(self, event, event_type, event_id, order, db, handler, txn_id) -> ProcessingResult:
        order_id = order.id if order is not None else None
        try:
            outcome = handler(order, db)
        except InvalidLifecycleTransition as e:
            logger.warning(f"{event_type} event {event_id} rejected for order {order_id}: {e}")
            return ProcessingResult(
                status="rejected_transition",
                event_id=event_id,
                event_type=event_type,
                order_id=order_id,
                external_transaction_id=txn_id,
                detail=str(e),
            )
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Lifecycle update failed for order {order_id}: {e}", exc_info=True)
            return self._record_failure(event, e, event_type, txn_id, error_kind=LIFECYCLE_WRITE_FAILURE)

        if order is None:
            logger.info(f"{event_type} event {event_id}: no matching order, nothing to do")
        return ProcessingResult(
            status=outcome,
            event_id=event_id,
            event_type=event_type,
            order_id=order_id,
            external_transaction_id=txn_id,
        )

    def _handle_payment_succeeded(self, parsed: PaymentSucceededEvent) -> ProcessingResult:
        payments_logger.info(
            f"Payment {parsed.payment_intent_id} succeeded (amount {parsed.amount}, event {parsed.event_id})"
        )
        return ProcessingResult(status="informational", event_id=parsed.event_id, event_type=parsed.event_type)
