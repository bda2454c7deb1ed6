"""
Chat routes.

Both chat endpoints check paid-agent access before the orchestrator runs;
a denied check answers 402 with the agent's price and where to pay.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from agentchat.api.deps import get_access, get_container, get_orchestrator
from agentchat.api.envelopes import ok
from agentchat.errors import NotFoundError, ValidationError
from agentchat.logging_setup import bind_user_id
from agentchat.schemas import ChatRequest
from agentchat.services.access_control import AccessController
from agentchat.services.agent_directory import AgentRef
from agentchat.services.chat_orchestrator import ChatOrchestrator
from agentchat.services.payment_gateway import format_price
from agentchat.services.payment_lifecycle import pricing_payload

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Chat"])


def _validate_message(message: Optional[str], max_length: int) -> str:
    if not message or not message.strip():
        raise ValidationError("Message is required and must be a non-empty string", field="message")
    if len(message) > max_length:
        raise ValidationError(f"Message is too long (maximum {max_length} characters)", field="message")
    return message


def _validate_agent_id(agent_id: Optional[str]) -> AgentRef:
    if not agent_id or not agent_id.strip():
        raise ValidationError("agentId is required and must be a non-empty string", field="agentId")
    return AgentRef.parse(agent_id.strip())


async def payment_required_response(
    access: AccessController, user_id: Optional[str], ref: AgentRef, api_prefix: str
) -> Optional[JSONResponse]:
    """402 response when the user has not paid for this agent, else None."""
    decision = await access.check_access(user_id, ref)
    if decision.degraded:
        logger.warning(f"⚠️ Serving agent {ref.raw} without a verified payment check")
    if not decision.requires_payment:
        return None

    pricing = decision.pricing
    price = format_price(pricing.price_amount, pricing.price_currency)
    logger.info(f"💰 Payment required for agent {ref.raw}")
    return JSONResponse(
        status_code=402,
        content={
            "success": False,
            "error": "Payment required",
            "requiresPayment": True,
            "pricing": pricing_payload(ref.raw, pricing),
            "message": f"This agent requires payment of {price} to access. Please complete payment first.",
            "paymentUrl": f"{api_prefix}/agents/{ref.raw}/payment/create",
        },
    )


@router.post("/chat")
async def chat(
    body: ChatRequest,
    request: Request,
    access: AccessController = Depends(get_access),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
):
    bind_user_id(body.user_id)
    settings = get_container(request).settings
    ref = _validate_agent_id(body.agent_id)
    message = _validate_message(body.message, settings.chat_max_message_length)

    denied = await payment_required_response(access, body.user_id, ref, settings.api_prefix)
    if denied:
        return denied

    result = await orchestrator.generate_response(ref, message, body.history_dicts(), body.user_id)
    return JSONResponse(content=result.to_dict())


@router.get("/chat/agent/{agent_id}/info")
async def chat_agent_info(agent_id: str, orchestrator: ChatOrchestrator = Depends(get_orchestrator)):
    info = await orchestrator.get_agent_info(AgentRef.parse(agent_id))
    if not info:
        raise NotFoundError("Agent", agent_id)
    return ok(info)


@router.get("/personalities")
async def list_personalities(request: Request):
    """Legacy personas, still addressable by asid."""
    personalities = await get_container(request).directory.list_personalities()
    return ok([p.to_dict() for p in personalities])


@router.post("/chai/chat")
async def chai_chat(
    body: ChatRequest,
    request: Request,
    access: AccessController = Depends(get_access),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
):
    """
    Chat for clients that keep no history of their own.

    Prior turns come from the stored conversation instead of the request.
    """
    container = get_container(request)
    settings = container.settings
    if not body.user_id or not body.message or not body.agent_id:
        raise ValidationError("userId, message, and agentId are required", field="userId")
    bind_user_id(body.user_id)
    ref = _validate_agent_id(body.agent_id)
    message = _validate_message(body.message, settings.chat_max_message_length)

    denied = await payment_required_response(access, body.user_id, ref, settings.api_prefix)
    if denied:
        return denied

    logger.info(f"💬 Text chat request from user {body.user_id} for agent {ref.raw}")
    agent_key = await container.directory.canonical_key(ref)
    turns = await container.history.latest_turns(body.user_id, agent_key, settings.prompt_history_limit)
    history = [{"role": turn.role, "content": turn.content} for turn in turns]

    result = await orchestrator.generate_response(ref, message, history, body.user_id)
    if not result.success:
        return JSONResponse(status_code=200, content=result.to_dict())

    now = datetime.utcnow()
    return ok({
        "userId": body.user_id,
        "agentId": ref.raw,
        "userMessage": message,
        "response": result.response,
        "conversationId": f"{body.user_id}_{ref.raw}_{int(now.timestamp() * 1000)}",
        "timestamp": now.isoformat() + "Z",
    })
