"""
Access decisions for paid agents.

Free agents (or agents with no pricing) are always allowed. Paid agents are
allowed once a successful payment exists for the (user, agent) pair. The
agent is resolved first, so a payment made under its integer id also
counts when the agent is addressed by its UUID.

If the pricing or payment lookup itself fails, the decision is
ALLOW_DEGRADED: the user is let through and the outage is logged. This
trades strictness for availability; paid content can be reached during a
database outage.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from agentchat.services.agent_directory import AgentDirectory, AgentPricing, AgentRef
from agentchat.services.payment_store import PaymentStore

logger = logging.getLogger(__name__)


class DecisionKind(str, Enum):
    FREE = "free"
    PAID = "paid"
    DENIED = "denied"
    ALLOW_DEGRADED = "allow_degraded"


@dataclass
class AccessDecision:
    kind: DecisionKind
    pricing: Optional[AgentPricing] = None
    agent_key: Optional[str] = None
    reason: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.kind != DecisionKind.DENIED

    @property
    def requires_payment(self) -> bool:
        return self.kind == DecisionKind.DENIED

    @property
    def degraded(self) -> bool:
        return self.kind == DecisionKind.ALLOW_DEGRADED


class AccessController:
    def __init__(self, directory: AgentDirectory, payments: PaymentStore):
        self.directory = directory
        self.payments = payments

    async def check_access(self, user_id: Optional[str], ref: AgentRef) -> AccessDecision:
        try:
            agent = await self.directory.resolve(ref)
            if not agent:
                return AccessDecision(DecisionKind.FREE, agent_key=ref.raw)
            pricing = agent.pricing
            if not pricing or not pricing.is_paid:
                return AccessDecision(DecisionKind.FREE, pricing=pricing, agent_key=agent.agent_id)

            if user_id and await self.payments.has_successful_payment(user_id, agent.agent_id):
                return AccessDecision(DecisionKind.PAID, pricing=pricing, agent_key=agent.agent_id)

            return AccessDecision(
                DecisionKind.DENIED, pricing=pricing, agent_key=agent.agent_id, reason="payment_required"
            )
        except Exception as e:
            logger.warning(
                f"⚠️ Access check for agent {ref.raw} failed, allowing access: {e}",
                exc_info=True,
            )
            return AccessDecision(DecisionKind.ALLOW_DEGRADED, reason=str(e))
