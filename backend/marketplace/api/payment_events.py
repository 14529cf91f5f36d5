"""Payment event ingestion route"""
import logging
from typing import Callable

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from marketplace.core.config import settings
from marketplace.core.exceptions import FailureRecorderUnavailable, SignatureInvalid
from marketplace.db.session import get_session_factory
from marketplace.services.payment_event_service import PaymentEventProcessor

router = APIRouter(tags=["payment-events"])
logger = logging.getLogger(__name__)


def get_payment_event_processor(
    session_factory: Callable[[], Session] = Depends(get_session_factory)
) -> PaymentEventProcessor:
    return PaymentEventProcessor(session_factory, settings.STRIPE_WEBHOOK_SECRET)


@router.post("/payment-events")
async def receive_payment_event(
    request: Request,
    background_tasks: BackgroundTasks,
    processor: PaymentEventProcessor = Depends(get_payment_event_processor)
):
    """Receive a Stripe event and materialize it

    Note: the body must reach this route as raw bytes; the signature is
    computed over them. Seller notifications are sent after the response.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    try:
        result = await run_in_threadpool(processor.process, payload, sig_header)
    except SignatureInvalid as e:
        raise HTTPException(400, str(e))
    except FailureRecorderUnavailable as e:
        # Not acknowledged, so the gateway redelivers later
        logger.critical(f"Payment event not acknowledged: {e}")
        return JSONResponse(status_code=500, content={"status": "error", "message": "Event could not be recorded"})

    if result.notify and result.order_id is not None:
        background_tasks.add_task(processor.dispatch_notifications, result.order_id)

    return result.to_response()
