"""
Chat orchestrator - builds the context for one chat message and gets the
agent's reply.

Per message:
1. Resolve the agent (agents table, then legacy personalities)
2. Gather knowledge, history and live-tool context concurrently
3. Build the system prompt and message list
4. Call the model
5. Persist the user turn and the reply

The orchestrator always returns a ChatResult; failures become
``success=False`` results with an apology as the response text.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Union

from agentchat.db.models import MessageRole
from agentchat.errors import LLMServiceError
from agentchat.services.agent_directory import AgentDirectory, AgentProfile, AgentRef
from agentchat.services.chat_history import ChatHistoryStore
from agentchat.services.history_analyzer import HistoryAnalyzer
from agentchat.services.knowledge_base import KnowledgeResult
from agentchat.services.llm_service import LLMService
from agentchat.services.tools import ToolDispatcher

logger = logging.getLogger(__name__)

FAILURE_REPLY = "I'm sorry, I'm having trouble responding right now. Please try again later."

GENERIC_PROMPT = (
    "You are a helpful AI assistant with access to live data tools. Be friendly, informative, "
    "and assist the user with their questions. Keep responses conversational and engaging."
)

BEHAVIOUR_GUIDELINES = (
    "- You have a unique personality and respond according to your tone\n"
    "- You can have longer conversations (150-300 tokens per response)\n"
    "- You remember previous conversations and build relationships\n"
    "- You're helpful, engaging, and stay in character\n"
    "- You have access to live data through various tools for current information\n\n"
)

LIVE_INFO_INSTRUCTION = "Use this live information to provide accurate, up-to-date responses when relevant."


class KnowledgeSource(Protocol):
    async def get_knowledge_for_query(
        self, query: str, scope_id: Optional[str] = None, max_results: int = 3
    ) -> KnowledgeResult: ...


@dataclass
class ChatResult:
    success: bool
    response: str
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat() + "Z")
    agent: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success, "response": self.response}
        if self.agent is not None:
            data["agent"] = self.agent
        if self.error is not None:
            data["error"] = self.error
        data["timestamp"] = self.timestamp
        return data


def format_knowledge_block(result: KnowledgeResult) -> str:
    if not result.found or not result.content:
        return ""
    return (
        f"\n\n=== KNOWLEDGE BASE ({result.source}) ===\n{result.content}\n\n"
        "Use the above information to answer questions when relevant. Cite sources.\n"
    )


def build_system_prompt(agent: Optional[AgentProfile], context: str = "") -> str:
    """Persona prompt for the agent, or the generic assistant prompt."""
    name = (agent.name or agent.personality_name) if agent else None
    tone = agent.tone if agent else None
    traits = agent.traits if agent else []
    has_context = bool(context and context.strip())

    if not name and not tone and not traits:
        prompt = GENERIC_PROMPT
        if has_context:
            prompt += f"\n\nCurrent live information available to you:\n{context}\n"
            prompt += LIVE_INFO_INSTRUCTION
        return prompt

    if name:
        prompt = f"You are {name}, an AI agent with the following characteristics:\n"
    else:
        prompt = "You are an AI agent with the following characteristics:\n"
    if tone:
        prompt += f"- Tone: {tone}\n"
    if traits:
        prompt += f"- Personality traits: {', '.join(traits)}\n"
    prompt += BEHAVIOUR_GUIDELINES

    if has_context:
        prompt += f"Current live information available to you:\n{context}\n"
        prompt += f"{LIVE_INFO_INSTRUCTION}\n\n"

    if name:
        prompt += (
            f"Respond as {name} would, using your {tone or 'natural'} tone "
            "and incorporating your personality traits when relevant.\n"
        )
    prompt += "Keep responses conversational and engaging, between 50-200 words typically."
    return prompt


def history_to_messages(conversation_history: Optional[List[Dict[str, Any]]]) -> List[Dict[str, str]]:
    messages = []
    for item in conversation_history or []:
        content = item.get("content")
        if content is None:
            continue
        role = item.get("role") or (MessageRole.USER.value if item.get("isUser") else MessageRole.ASSISTANT.value)
        messages.append({"role": role, "content": content})
    return messages


class ChatOrchestrator:
    def __init__(
        self,
        directory: AgentDirectory,
        knowledge: KnowledgeSource,
        analyzer: HistoryAnalyzer,
        tools: ToolDispatcher,
        llm: LLMService,
        history: ChatHistoryStore,
        knowledge_max_results: int = 5,
        history_window: int = 20,
    ):
        self.directory = directory
        self.knowledge = knowledge
        self.analyzer = analyzer
        self.tools = tools
        self.llm = llm
        self.history = history
        self.knowledge_max_results = knowledge_max_results
        self.history_window = history_window

    async def _knowledge_context(self, message: str, ref: AgentRef) -> str:
        try:
            result = await self.knowledge.get_knowledge_for_query(message, ref.raw, self.knowledge_max_results)
        except Exception as e:
            logger.error(f"Knowledge lookup failed: {e}")
            return ""
        if result.found:
            logger.info(f"✅ Found knowledge from {result.file_count} {result.source}")
        return format_knowledge_block(result)

    async def _history_context(self, message: str, user_id: Optional[str], agent_key: str) -> str:
        if not user_id:
            return ""
        try:
            context = await self.analyzer.analyze(message, user_id, agent_key, self.history_window)
        except Exception as e:
            logger.error(f"History analysis failed: {e}")
            return ""
        return f"{context}\n" if context else ""

    async def _tool_context(self, message: str) -> str:
        try:
            return await self.tools.dispatch_intents(message)
        except Exception as e:
            logger.error(f"Tool dispatch failed: {e}")
            return ""

    async def build_context(
        self, message: str, ref: AgentRef, user_id: Optional[str] = None, agent_key: Optional[str] = None
    ) -> str:
        """Knowledge block, then history context, then tool snippets."""
        knowledge, history, tools = await asyncio.gather(
            self._knowledge_context(message, ref),
            self._history_context(message, user_id, agent_key or ref.raw),
            self._tool_context(message),
        )
        context = knowledge + history + tools
        if not context:
            try:
                context = await self.tools.dispatch_web_search(message)
            except Exception as e:
                logger.error(f"Web search dispatch failed: {e}")
        return context

    async def _persist_exchange(self, user_id: str, agent_id: str, message: str, reply: str):
        if not reply or not reply.strip():
            logger.warning(f"Empty reply for user {user_id} and agent {agent_id}, exchange not stored")
            return
        try:
            await self.history.append_exchange(user_id, agent_id, message, reply)
            logger.info(f"💾 Stored encrypted conversation between user {user_id} and agent {agent_id}")
        except Exception as e:
            logger.error(f"Error storing chat messages: {e}", exc_info=True)

    async def generate_response(
        self,
        agent_id: Union[str, AgentRef],
        message: str,
        conversation_history: Optional[List[Dict[str, Any]]] = None,
        user_id: Optional[str] = None,
    ) -> ChatResult:
        try:
            ref = agent_id if isinstance(agent_id, AgentRef) else AgentRef.parse(agent_id)
            agent = await self.directory.resolve(ref)
            if not agent:
                return ChatResult(success=False, error=f"Agent not found with ID: {ref.raw}", response=FAILURE_REPLY)
            logger.info(f"✅ Found agent: {agent.display_name}")

            context = await self.build_context(message, ref, user_id, agent.agent_id)
            messages = [{"role": "system", "content": build_system_prompt(agent, context)}]
            messages.extend(history_to_messages(conversation_history))
            messages.append({"role": MessageRole.USER.value, "content": message})

            try:
                completion = await self.llm.complete(messages)
            except LLMServiceError as e:
                return ChatResult(success=False, error=e.user_message, response=FAILURE_REPLY)
            reply = completion.content

            if user_id:
                await self._persist_exchange(user_id, agent.agent_id, message, reply)

            return ChatResult(
                success=True,
                response=reply,
                agent={"id": agent.id, "name": agent.display_name, "agentId": ref.raw},
            )
        except Exception as e:
            logger.error(f"Error generating response: {e}", exc_info=True)
            return ChatResult(success=False, error=str(e), response=FAILURE_REPLY)

    async def get_agent_info(self, ref: AgentRef) -> Optional[Dict[str, Any]]:
        agent = await self.directory.resolve(ref)
        if not agent:
            return None
        return {
            "id": agent.id,
            "agentId": ref.raw,
            "name": agent.display_name,
            "traits": agent.traits,
            "tone": agent.tone,
            "description": agent.description,
            "createdAt": agent.created_at.isoformat() if agent.created_at else None,
        }
