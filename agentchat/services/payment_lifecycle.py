"""
Payment lifecycle - starting paid-agent payments and applying provider
callbacks to payment records.

Webhook handlers acknowledge every delivery they can match, including
repeats and late deliveries for payments that already moved on, so the
provider never enters a retry loop.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from agentchat.db.models import PaymentRecord, PaymentStatus
from agentchat.errors import (
    InvalidTransitionError, NotFoundError, PaymentGatewayError, ValidationError,
)
from agentchat.services.access_control import AccessController
from agentchat.services.agent_directory import AgentDirectory, AgentPricing, AgentRef
from agentchat.services.payment_gateway import PaymentGatewayClient, format_price, is_valid_currency
from agentchat.services.payment_store import PaymentStore, TransitionResult

logger = logging.getLogger(__name__)


def pricing_payload(agent_id: str, pricing: Optional[AgentPricing]) -> Optional[Dict[str, Any]]:
    if not pricing:
        return None
    amount = float(pricing.price_amount) if pricing.price_amount else 0.0
    return {
        "agentId": agent_id,
        "name": pricing.name,
        "role": pricing.role,
        "amount": amount,
        "currency": pricing.price_currency,
        "formattedPrice": format_price(amount, pricing.price_currency),
    }


def payment_summary(record: PaymentRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "agentId": record.agent_id,
        "agentName": record.agent_name,
        "amount": float(record.amount),
        "currency": record.currency,
        "formattedPrice": format_price(record.amount, record.currency),
        "status": record.status,
        "collectUrl": record.collect_url,
        "paidAt": record.paid_at.isoformat() if record.paid_at else None,
        "createdAt": record.created_at.isoformat() if record.created_at else None,
    }


class PaymentLifecycle:
    def __init__(
        self,
        directory: AgentDirectory,
        store: PaymentStore,
        gateway: PaymentGatewayClient,
        access: AccessController,
    ):
        self.directory = directory
        self.store = store
        self.gateway = gateway
        self.access = access

    async def start_payment(
        self,
        user_id: str,
        ref: AgentRef,
        success_redirect_url: Optional[str] = None,
        failure_redirect_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not user_id or not str(user_id).strip():
            raise ValidationError("userId is required", field="userId")
        self.gateway.ensure_configured()

        agent = await self.directory.resolve(ref)
        if not agent:
            raise NotFoundError("Agent", ref.raw)
        pricing = agent.pricing
        if not pricing or not pricing.is_paid:
            raise ValidationError("This agent is free and does not require payment", field="agentId")
        if not is_valid_currency(pricing.price_currency):
            raise ValidationError("Invalid currency: must be USD, LBP, or AED", field="currency")
        if await self.store.has_successful_payment(user_id, agent.agent_id):
            raise ValidationError("User already has access to this agent", field="userId")

        record = await self.store.create_pending(
            user_id=user_id,
            agent_id=agent.agent_id,
            amount=pricing.price_amount,
            currency=pricing.price_currency,
            agent_name=agent.display_name,
        )

        try:
            result = await self.gateway.create_payment(
                user_id=user_id,
                agent_id=agent.agent_id,
                amount=record.amount,
                currency=record.currency,
                agent_name=agent.display_name,
                payment_record_id=record.id,
                success_redirect_url=success_redirect_url,
                failure_redirect_url=failure_redirect_url,
            )
        except (PaymentGatewayError, ValidationError):
            await self.store.transition(
                record.external_id,
                PaymentStatus.FAILED.value,
                metadata={"failureReason": "gateway_error", "failedAt": datetime.utcnow().isoformat()},
            )
            raise

        collect_url = result.get("collectUrl")
        if collect_url:
            record = await self.store.attach_collect_url(record.id, collect_url) or record

        return {
            "paymentId": record.id,
            "externalId": record.external_id,
            "collectUrl": record.collect_url,
            "amount": float(record.amount),
            "currency": record.currency,
            "formattedPrice": format_price(record.amount, record.currency),
            "agentName": record.agent_name,
        }

    async def payment_status(self, user_id: str, ref: AgentRef) -> Dict[str, Any]:
        if not user_id:
            raise ValidationError("userId is required", field="userId")
        decision = await self.access.check_access(user_id, ref)
        latest = await self.store.latest_for(user_id, decision.agent_key or ref.raw)
        return {
            "hasAccess": decision.allowed,
            "requiresPayment": decision.requires_payment,
            "pricing": pricing_payload(ref.raw, decision.pricing),
            "latestPayment": payment_summary(latest) if latest else None,
        }

    async def handle_success_webhook(
        self, external_id: Optional[str], status: Optional[str] = None
    ) -> Optional[TransitionResult]:
        """Mark a payment successful. Raises NotFoundError for unknown ids."""
        if not external_id:
            raise ValidationError("Missing externalId", field="externalId")

        payment = await self.store.get_by_external_id(external_id)
        if not payment:
            raise NotFoundError("Payment", external_id)

        payer_phone = None
        try:
            status_result = await self.gateway.check_payment_status(external_id, payment.currency)
            payer_phone = status_result.get("payerPhoneNumber")
        except Exception as e:
            logger.warning(f"⚠️ Could not verify payment {external_id} with gateway: {e}")

        try:
            result = await self.store.transition(
                external_id,
                PaymentStatus.SUCCESS.value,
                payer_phone=payer_phone,
                metadata={"webhookReceived": datetime.utcnow().isoformat()},
            )
        except InvalidTransitionError as e:
            logger.warning(f"Ignoring success webhook for payment {external_id}: {e}")
            return None

        if result.applied:
            logger.info(f"✅ Payment {external_id} marked as success")
        else:
            logger.info(f"Payment {external_id} already successful, duplicate webhook ignored")
        return result

    async def handle_failure_webhook(
        self, external_id: Optional[str], status: Optional[str] = None
    ) -> Optional[TransitionResult]:
        if not external_id:
            raise ValidationError("Missing externalId", field="externalId")

        try:
            result = await self.store.transition(
                external_id,
                PaymentStatus.FAILED.value,
                metadata={
                    "webhookReceived": datetime.utcnow().isoformat(),
                    "failureReason": status or "unknown",
                },
            )
        except NotFoundError:
            logger.warning(f"Failure webhook for unknown payment {external_id}")
            return None
        except InvalidTransitionError as e:
            logger.warning(f"Ignoring failure webhook for payment {external_id}: {e}")
            return None

        logger.info(f"❌ Payment {external_id} marked as failed")
        return result

    async def verify_payment(self, payment_id: Any) -> Dict[str, Any]:
        """Re-query the gateway and sync the stored status if it drifted."""
        if not payment_id:
            raise ValidationError("paymentId is required", field="paymentId")

        external_id = str(payment_id)
        payment = await self.store.get_by_external_id(external_id)
        if not payment:
            raise NotFoundError("Payment", external_id)

        status_result = await self.gateway.check_payment_status(external_id, payment.currency)
        collect_status = str(status_result.get("collectStatus") or "").lower()

        if collect_status and collect_status != payment.status:
            if collect_status in {s.value for s in PaymentStatus}:
                try:
                    await self.store.transition(
                        external_id,
                        collect_status,
                        payer_phone=status_result.get("payerPhoneNumber"),
                        metadata={"verifiedAt": datetime.utcnow().isoformat()},
                    )
                except InvalidTransitionError as e:
                    logger.warning(f"Gateway status for payment {external_id} not applied: {e}")
            else:
                logger.warning(f"Unrecognised gateway status '{collect_status}' for payment {external_id}")

        updated = await self.store.get_by_external_id(external_id)
        return {
            "paymentId": payment_id,
            "status": status_result.get("collectStatus"),
            "payerPhone": status_result.get("payerPhoneNumber"),
            "currency": status_result.get("currency"),
            "payment": updated.to_dict() if updated else None,
        }

    async def user_payments(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        records = await self.store.list_for_user(user_id, limit)
        return [payment_summary(r) for r in records]

    async def balance(self) -> Dict[str, Any]:
        return await self.gateway.get_balance()
