"""
Agent catalogue and per-agent payment routes.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from agentchat.api.deps import get_container, get_payments
from agentchat.api.envelopes import ok
from agentchat.errors import NotFoundError
from agentchat.schemas import PaymentCreateRequest
from agentchat.services.agent_directory import AgentRef
from agentchat.services.payment_lifecycle import PaymentLifecycle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/agents", tags=["Agents"])


@router.get("")
async def list_agents(request: Request):
    """All active agents, with pricing where set."""
    agents = await get_container(request).directory.list_agents()
    return ok([agent.to_dict() for agent in agents])


@router.get("/{agent_id}")
async def get_agent(agent_id: str, request: Request):
    ref = AgentRef.parse(agent_id)
    agent = await get_container(request).directory.resolve(ref)
    if not agent:
        raise NotFoundError("Agent", agent_id)
    return ok(agent.to_dict())


@router.post("/{agent_id}/payment/create", status_code=201)
async def create_agent_payment(
    agent_id: str,
    body: PaymentCreateRequest,
    payments: PaymentLifecycle = Depends(get_payments),
):
    """
    Start a payment for a paid agent and return the provider's collect URL.

    400 for free agents or users who already paid, 404 for unknown agents,
    502 when the payment provider rejects the request.
    """
    ref = AgentRef.parse(agent_id)
    logger.info(f"💳 Payment requested for agent {agent_id}")
    result = await payments.start_payment(
        body.user_id,
        ref,
        success_redirect_url=body.success_redirect_url,
        failure_redirect_url=body.failure_redirect_url,
    )
    return ok(result, status_code=201)


@router.get("/{agent_id}/payment/status")
async def agent_payment_status(
    agent_id: str,
    user_id: Optional[str] = Query(None, alias="userId"),
    payments: PaymentLifecycle = Depends(get_payments),
):
    ref = AgentRef.parse(agent_id)
    return ok(await payments.payment_status(user_id, ref))
