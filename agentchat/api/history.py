"""Stored chat history for a (user, agent) pair."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from agentchat.api.deps import get_directory, get_history
from agentchat.api.envelopes import ok
from agentchat.errors import ValidationError
from agentchat.services.agent_directory import AgentDirectory, AgentRef
from agentchat.services.chat_history import ChatHistoryStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/history", tags=["History"])


def _require_pair(user_id: Optional[str], agent_id: Optional[str]):
    if not user_id or not agent_id:
        raise ValidationError("Both userId and agentId are required", field="userId" if not user_id else "agentId")


async def _agent_key(directory: AgentDirectory, agent_id: str) -> str:
    return await directory.canonical_key(AgentRef.parse(agent_id))


@router.get("")
async def get_history_page(
    user_id: Optional[str] = Query(None, alias="userId"),
    agent_id: Optional[str] = Query(None, alias="agentId"),
    limit: int = Query(50),
    offset: int = Query(0),
    history: ChatHistoryStore = Depends(get_history),
    directory: AgentDirectory = Depends(get_directory),
):
    """Newest-first page of decrypted turns."""
    _require_pair(user_id, agent_id)
    if limit < 1 or limit > 1000:
        raise ValidationError("Limit must be a number between 1 and 1000", field="limit")
    if offset < 0:
        raise ValidationError("Offset must be a non-negative number", field="offset")

    logger.info(f"📖 Getting chat history for user: {user_id}, agent: {agent_id}")
    key = await _agent_key(directory, agent_id)
    return ok(await history.history_page(user_id, key, limit, offset))


@router.get("/latest")
async def get_latest_messages(
    user_id: Optional[str] = Query(None, alias="userId"),
    agent_id: Optional[str] = Query(None, alias="agentId"),
    count: int = Query(10),
    history: ChatHistoryStore = Depends(get_history),
    directory: AgentDirectory = Depends(get_directory),
):
    """The last ``count`` turns for the pair, oldest first."""
    if not user_id or not user_id.strip():
        raise ValidationError("userId is required and must be a non-empty string", field="userId")
    if not agent_id or not agent_id.strip():
        raise ValidationError("agentId is required and must be a non-empty string", field="agentId")
    if count < 1 or count > 1000:
        raise ValidationError("Count must be a number between 1 and 1000", field="count")

    logger.info(f"📚 Getting latest {count} messages between user {user_id} and agent {agent_id}")
    turns = await history.latest_turns(user_id, await _agent_key(directory, agent_id), count)
    return ok({
        "messages": [turn.to_dict() for turn in turns],
        "userId": user_id,
        "agentId": agent_id,
        "count": len(turns),
    })


@router.get("/user/{user_id}")
async def get_user_history(
    user_id: str,
    limit: int = Query(100),
    offset: int = Query(0),
    history: ChatHistoryStore = Depends(get_history),
):
    """Every agent's turns for one user, newest first."""
    if not user_id.strip():
        raise ValidationError("userId is required and must be a non-empty string", field="userId")
    if limit < 1 or limit > 1000:
        raise ValidationError("Limit must be a number between 1 and 1000", field="limit")
    if offset < 0:
        raise ValidationError("Offset must be a non-negative number", field="offset")

    logger.info(f"📚 Getting all chat history for user {user_id}")
    turns = await history.user_history(user_id, limit, offset)
    return ok({
        "history": [turn.to_dict() for turn in turns],
        "userId": user_id,
        "limit": limit,
        "offset": offset,
        "count": len(turns),
    })


@router.delete("")
async def delete_history(
    user_id: Optional[str] = Query(None, alias="userId"),
    agent_id: Optional[str] = Query(None, alias="agentId"),
    history: ChatHistoryStore = Depends(get_history),
    directory: AgentDirectory = Depends(get_directory),
):
    _require_pair(user_id, agent_id)
    deleted = await history.delete_history(user_id, await _agent_key(directory, agent_id))
    return ok({"deletedCount": deleted})
