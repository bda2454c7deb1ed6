"""
Tests for context composition and reply generation
"""

from unittest.mock import AsyncMock

import httpx
import pytest

from agentchat.errors import LLMServiceError
from agentchat.services.agent_directory import AgentProfile, AgentRef
from agentchat.services.chat_orchestrator import (
    FAILURE_REPLY, GENERIC_PROMPT, build_system_prompt, history_to_messages,
)
from tests.conftest import add_agent

DDG_URL = "https://api.duckduckgo.com/"


# ============ Prompt Building ============

def test_generic_prompt_without_persona_or_context():
    assert build_system_prompt(None, "") == GENERIC_PROMPT


def test_generic_prompt_carries_context():
    prompt = build_system_prompt(None, "Weather: sunny\n")
    assert prompt.startswith(GENERIC_PROMPT)
    assert "Current live information available to you:\nWeather: sunny" in prompt


def test_persona_prompt():
    agent = AgentProfile(id=1, agent_id="1", name="Coach", tone="encouraging", traits=["patient", "direct"])
    prompt = build_system_prompt(agent, "")
    assert prompt.startswith("You are Coach, an AI agent with the following characteristics:\n")
    assert "- Tone: encouraging\n" in prompt
    assert "- Personality traits: patient, direct\n" in prompt
    assert "Respond as Coach would, using your encouraging tone" in prompt
    assert "Current live information" not in prompt


def test_history_to_messages_accepts_both_shapes():
    messages = history_to_messages([
        {"role": "user", "content": "hi"},
        {"isUser": False, "content": "hello"},
        {"role": "assistant"},
    ])
    assert messages == [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]


# ============ Orchestration ============

@pytest.mark.asyncio
async def test_empty_context_uses_plain_persona_prompt(container, llm, http):
    agent = await add_agent(container, name="Coach")

    result = await container.orchestrator.generate_response(str(agent.id), "hello there")

    assert result.success
    assert result.response == llm.reply
    assert result.agent == {"id": agent.id, "name": "Coach", "agentId": str(agent.id)}
    assert "Current live information" not in llm.last_system_prompt
    assert http.requests == []


@pytest.mark.asyncio
async def test_context_is_knowledge_then_history_then_tools(container, llm, storage, http):
    agent = await add_agent(container, name="Coach")
    storage.put(f"{agent.id}/weather_notes.txt", b"Pack an umbrella")
    http.add("GET", DDG_URL, {"Abstract": "Sunny"})
    await container.history.append_turn("u1", str(agent.id), "user", "I like sailing")

    await container.orchestrator.generate_response(
        str(agent.id), "describe me and the weather in Beirut", user_id="u1"
    )

    prompt = llm.last_system_prompt
    knowledge_at = prompt.index("=== KNOWLEDGE BASE (knowledge files) ===")
    history_at = prompt.index("Based on our conversation history:")
    weather_at = prompt.index("Weather: Search result: Sunny")
    assert knowledge_at < history_at < weather_at
    assert "Pack an umbrella" in prompt


@pytest.mark.asyncio
async def test_web_search_only_without_other_context(container, llm, http):
    agent = await add_agent(container)
    http.add("GET", DDG_URL, {"Answer": "A mathematician"})

    await container.orchestrator.generate_response(str(agent.id), "who is Ada Lovelace")

    assert "Web search: Answer: A mathematician" in llm.last_system_prompt


@pytest.mark.asyncio
async def test_history_and_message_follow_system_prompt(container, llm):
    agent = await add_agent(container)
    history = [{"role": "user", "content": "earlier question"}, {"role": "assistant", "content": "earlier answer"}]

    await container.orchestrator.generate_response(str(agent.id), "new question", history)

    messages = llm.calls[-1]
    assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
    assert messages[-1]["content"] == "new question"


@pytest.mark.asyncio
async def test_reply_is_persisted_for_known_user(container):
    agent = await add_agent(container)
    await container.orchestrator.generate_response(str(agent.id), "hello", user_id="u1")
    turns = await container.history.latest_turns("u1", str(agent.id))
    assert [(t.role, t.content) for t in turns] == [("user", "hello"), ("assistant", "Hi! How can I help?")]


@pytest.mark.asyncio
async def test_persistence_failure_does_not_fail_reply(container, monkeypatch):
    agent = await add_agent(container)
    monkeypatch.setattr(container.history, "append_exchange", AsyncMock(side_effect=RuntimeError("disk full")))

    result = await container.orchestrator.generate_response(str(agent.id), "hello", user_id="u1")

    assert result.success


@pytest.mark.asyncio
async def test_unknown_agent_is_failure_envelope(container, llm):
    result = await container.orchestrator.generate_response("999", "hello")
    assert not result.success
    assert result.error == "Agent not found with ID: 999"
    assert result.response == FAILURE_REPLY
    assert llm.calls == []


@pytest.mark.asyncio
async def test_model_error_is_failure_envelope(container, llm):
    agent = await add_agent(container)
    llm.error = LLMServiceError("insufficient_quota", "OpenAI API quota exceeded. Please check your billing.")

    result = await container.orchestrator.generate_response(str(agent.id), "hello", user_id="u1")

    assert not result.success
    assert result.error == "OpenAI API quota exceeded. Please check your billing."
    assert await container.history.latest_turns("u1", str(agent.id)) == []


@pytest.mark.asyncio
async def test_failing_collaborators_degrade_to_empty_context(container, llm, monkeypatch):
    agent = await add_agent(container)
    monkeypatch.setattr(container.orchestrator.knowledge, "get_knowledge_for_query", AsyncMock(side_effect=RuntimeError))
    monkeypatch.setattr(container.orchestrator.tools, "dispatch_intents", AsyncMock(side_effect=httpx.ConnectError("x")))

    result = await container.orchestrator.generate_response(str(agent.id), "bitcoin price please")

    assert result.success
    assert "Current live information" not in llm.last_system_prompt


@pytest.mark.asyncio
async def test_agent_info(container):
    agent = await add_agent(container, name="Coach", description="Fitness coach")
    info = await container.orchestrator.get_agent_info(AgentRef.parse(str(agent.id)))
    assert info["name"] == "Coach"
    assert info["description"] == "Fitness coach"
    assert info["traits"] == ["patient", "direct"]
    assert await container.orchestrator.get_agent_info(AgentRef.parse("999")) is None


@pytest.mark.asyncio
async def test_empty_reply_is_not_persisted(container, llm):
    agent = await add_agent(container)
    llm.reply = ""

    result = await container.orchestrator.generate_response(str(agent.id), "hello", user_id="u1")

    assert result.success
    assert await container.history.latest_turns("u1", str(agent.id)) == []


@pytest.mark.asyncio
async def test_history_is_keyed_by_agent_whichever_id_form_is_used(container, llm):
    agent = await add_agent(container)
    await container.history.append_turn("u1", str(agent.id), "user", "I like sailing")

    await container.orchestrator.generate_response(agent.agent_uuid, "describe me", user_id="u1")

    assert "You've mentioned interest in: sailing" in llm.last_system_prompt
    turns = await container.history.latest_turns("u1", str(agent.id))
    assert [t.content for t in turns] == ["I like sailing", "describe me", llm.reply]
