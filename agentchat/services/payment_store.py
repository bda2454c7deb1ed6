"""
Payment record persistence and the payment status state machine.

Status writes are compare-and-set on ``version``: the row is read, the
transition is validated, and the UPDATE only lands if nobody else bumped
the version in between. Losers re-read and retry.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update

from agentchat.db.models import PaymentRecord, PaymentStatus
from agentchat.errors import AgentChatError, InvalidTransitionError, NotFoundError

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    PaymentStatus.PENDING.value: {PaymentStatus.SUCCESS.value, PaymentStatus.FAILED.value},
    PaymentStatus.SUCCESS.value: {PaymentStatus.REFUNDED.value},
}

MAX_TRANSITION_ATTEMPTS = 3


@dataclass
class TransitionResult:
    record: PaymentRecord
    previous_status: str
    applied: bool


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


class PaymentStore:
    def __init__(self, session_maker):
        self._session_maker = session_maker

    async def create_pending(
        self,
        user_id: str,
        agent_id: str,
        amount: Decimal,
        currency: str,
        agent_name: Optional[str] = None,
    ) -> PaymentRecord:
        """Insert a pending record. Its external id is its own primary key."""
        async with self._session_maker() as db:
            record = PaymentRecord(
                user_id=user_id,
                agent_id=agent_id,
                agent_name=agent_name,
                amount=amount,
                currency=currency,
                status=PaymentStatus.PENDING.value,
                metadata_json=json.dumps({}),
            )
            db.add(record)
            await db.flush()
            record.external_id = str(record.id)
            await db.commit()
            await db.refresh(record)
            logger.info(f"💳 Payment record {record.id} created ({record.amount} {record.currency})")
            return record

    async def attach_collect_url(self, record_id: int, collect_url: str) -> Optional[PaymentRecord]:
        async with self._session_maker() as db:
            record = await db.get(PaymentRecord, record_id)
            if not record:
                return None
            record.collect_url = collect_url
            record.updated_at = datetime.utcnow()
            await db.commit()
            await db.refresh(record)
            return record

    async def get_by_id(self, record_id: int) -> Optional[PaymentRecord]:
        async with self._session_maker() as db:
            return await db.get(PaymentRecord, record_id)

    async def get_by_external_id(self, external_id: str) -> Optional[PaymentRecord]:
        async with self._session_maker() as db:
            result = await db.execute(
                select(PaymentRecord).where(PaymentRecord.external_id == str(external_id))
            )
            return result.scalar_one_or_none()

    async def has_successful_payment(self, user_id: str, agent_id: str) -> bool:
        async with self._session_maker() as db:
            result = await db.execute(
                select(PaymentRecord.id)
                .where(
                    PaymentRecord.user_id == user_id,
                    PaymentRecord.agent_id == agent_id,
                    PaymentRecord.status == PaymentStatus.SUCCESS.value,
                )
                .limit(1)
            )
            return result.scalar_one_or_none() is not None

    async def latest_for(self, user_id: str, agent_id: str) -> Optional[PaymentRecord]:
        async with self._session_maker() as db:
            result = await db.execute(
                select(PaymentRecord)
                .where(PaymentRecord.user_id == user_id, PaymentRecord.agent_id == agent_id)
                .order_by(PaymentRecord.created_at.desc(), PaymentRecord.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def list_for_user(self, user_id: str, limit: int = 50) -> List[PaymentRecord]:
        async with self._session_maker() as db:
            result = await db.execute(
                select(PaymentRecord)
                .where(PaymentRecord.user_id == user_id)
                .order_by(PaymentRecord.created_at.desc(), PaymentRecord.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def transition(
        self,
        external_id: str,
        target: str,
        payer_phone: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TransitionResult:
        """
        Move a payment to ``target``.

        Same-state requests are no-ops (``applied=False``) so repeated
        webhook deliveries never rewrite ``paid_at``. Transitions outside
        ALLOWED_TRANSITIONS raise InvalidTransitionError.
        """
        external_id = str(external_id)
        for attempt in range(1, MAX_TRANSITION_ATTEMPTS + 1):
            async with self._session_maker() as db:
                result = await db.execute(
                    select(PaymentRecord).where(PaymentRecord.external_id == external_id)
                )
                record = result.scalar_one_or_none()
                if not record:
                    raise NotFoundError("Payment", external_id)

                current = record.status
                if current == target:
                    return TransitionResult(record=record, previous_status=current, applied=False)
                if not can_transition(current, target):
                    raise InvalidTransitionError(current, target)

                now = datetime.utcnow()
                merged = record.metadata_dict
                merged.update(metadata or {})
                values: Dict[str, Any] = {
                    "status": target,
                    "updated_at": now,
                    "version": record.version + 1,
                    "metadata_json": json.dumps(merged, default=str),
                }
                if target == PaymentStatus.SUCCESS.value:
                    values["paid_at"] = now
                    if payer_phone:
                        values["payer_phone"] = payer_phone

                outcome = await db.execute(
                    update(PaymentRecord)
                    .where(PaymentRecord.id == record.id, PaymentRecord.version == record.version)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if outcome.rowcount == 1:
                    await db.commit()
                    await db.refresh(record)
                    logger.info(f"💳 Payment {external_id}: {current} -> {target}")
                    return TransitionResult(record=record, previous_status=current, applied=True)

                await db.rollback()
                logger.warning(
                    f"Payment {external_id} changed concurrently (attempt {attempt}/{MAX_TRANSITION_ATTEMPTS})"
                )

        raise AgentChatError(f"Payment {external_id} could not be updated after {MAX_TRANSITION_ATTEMPTS} attempts")
