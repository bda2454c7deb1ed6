"""
Payment provider callbacks and payment bookkeeping routes.

The provider calls the webhook routes with GET and only looks at the status
code, so they answer in plain text.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse

from agentchat.api.deps import get_payments
from agentchat.api.envelopes import ok
from agentchat.errors import NotFoundError, ValidationError
from agentchat.schemas import PaymentVerifyRequest
from agentchat.services.payment_lifecycle import PaymentLifecycle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.get("/webhook/success", response_class=PlainTextResponse)
async def payment_success_webhook(
    external_id: Optional[str] = Query(None, alias="externalId"),
    status: Optional[str] = Query(None),
    payments: PaymentLifecycle = Depends(get_payments),
):
    logger.info(f"✅ Payment success webhook received: externalId={external_id}, status={status}")
    try:
        await payments.handle_success_webhook(external_id, status)
    except ValidationError:
        return PlainTextResponse("Missing externalId", status_code=400)
    except NotFoundError:
        logger.error(f"Payment not found for externalId: {external_id}")
        return PlainTextResponse("Payment not found", status_code=404)
    except Exception as e:
        logger.error(f"Error processing payment success webhook: {e}", exc_info=True)
        return PlainTextResponse("Internal server error", status_code=500)
    return PlainTextResponse("OK")


@router.get("/webhook/failure", response_class=PlainTextResponse)
async def payment_failure_webhook(
    external_id: Optional[str] = Query(None, alias="externalId"),
    status: Optional[str] = Query(None),
    payments: PaymentLifecycle = Depends(get_payments),
):
    logger.info(f"❌ Payment failure webhook received: externalId={external_id}, status={status}")
    try:
        await payments.handle_failure_webhook(external_id, status)
    except ValidationError:
        return PlainTextResponse("Missing externalId", status_code=400)
    except Exception as e:
        logger.error(f"Error processing payment failure webhook: {e}", exc_info=True)
        return PlainTextResponse("Internal server error", status_code=500)
    return PlainTextResponse("OK")


@router.post("/verify")
async def verify_payment(body: PaymentVerifyRequest, payments: PaymentLifecycle = Depends(get_payments)):
    """Re-check a payment with the provider and sync the stored status."""
    return ok(await payments.verify_payment(body.payment_id))


@router.get("/balance")
async def payment_balance(payments: PaymentLifecycle = Depends(get_payments)):
    return ok(await payments.balance())


@router.get("/user/{user_id}")
async def user_payments(
    user_id: str,
    limit: int = Query(50, ge=1, le=200),
    payments: PaymentLifecycle = Depends(get_payments),
):
    return ok(await payments.user_payments(user_id, limit))
