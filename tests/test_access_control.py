"""
Tests for paid-agent access decisions
"""

from unittest.mock import AsyncMock

import pytest

from agentchat.db import PaymentStatus
from agentchat.services.access_control import AccessController, DecisionKind
from agentchat.services.agent_directory import AgentRef
from tests.conftest import add_agent, add_paid_agent, add_personality


async def _paid_record(container, user_id, agent_id, status):
    record = await container.payment_store.create_pending(user_id, agent_id, 5, "USD", "Coach")
    if status != PaymentStatus.PENDING.value:
        await container.payment_store.transition(record.external_id, status)
    return record


@pytest.mark.asyncio
async def test_free_agent_always_allowed(container):
    agent = await add_agent(container)
    decision = await container.access.check_access("u1", AgentRef.parse(str(agent.id)))
    assert decision.kind == DecisionKind.FREE
    assert decision.allowed
    assert not decision.requires_payment


@pytest.mark.asyncio
async def test_agent_without_pricing_row_is_allowed(container):
    decision = await container.access.check_access("u1", AgentRef.parse("asid_unknown"))
    assert decision.kind == DecisionKind.FREE
    assert decision.allowed


@pytest.mark.asyncio
async def test_free_legacy_personality_allowed_without_user(container):
    await add_personality(container, "asid_free", name="Free")
    decision = await container.access.check_access(None, AgentRef.parse("asid_free"))
    assert decision.allowed


@pytest.mark.asyncio
async def test_paid_agent_denied_until_success(container):
    agent = await add_paid_agent(container)
    ref = AgentRef.parse(str(agent.id))

    decision = await container.access.check_access("u1", ref)
    assert decision.kind == DecisionKind.DENIED
    assert decision.requires_payment
    assert decision.pricing.is_paid

    await _paid_record(container, "u1", ref.raw, PaymentStatus.FAILED.value)
    await _paid_record(container, "u1", ref.raw, PaymentStatus.PENDING.value)
    assert not (await container.access.check_access("u1", ref)).allowed

    await _paid_record(container, "u1", ref.raw, PaymentStatus.SUCCESS.value)
    decision = await container.access.check_access("u1", ref)
    assert decision.kind == DecisionKind.PAID
    assert decision.allowed


@pytest.mark.asyncio
async def test_payment_is_scoped_to_exact_user_and_agent(container):
    first = await add_paid_agent(container, name="First")
    second = await add_paid_agent(container, name="Second")
    await _paid_record(container, "u1", str(first.id), PaymentStatus.SUCCESS.value)

    assert (await container.access.check_access("u1", AgentRef.parse(str(first.id)))).allowed
    assert not (await container.access.check_access("u2", AgentRef.parse(str(first.id)))).allowed
    assert not (await container.access.check_access("u1", AgentRef.parse(str(second.id)))).allowed


@pytest.mark.asyncio
async def test_paid_agent_denied_for_anonymous_user(container):
    agent = await add_paid_agent(container)
    decision = await container.access.check_access(None, AgentRef.parse(str(agent.id)))
    assert decision.kind == DecisionKind.DENIED


@pytest.mark.asyncio
async def test_lookup_failure_allows_degraded():
    directory = AsyncMock()
    directory.resolve.side_effect = RuntimeError("database is down")
    controller = AccessController(directory, AsyncMock())

    decision = await controller.check_access("u1", AgentRef.parse("5"))
    assert decision.kind == DecisionKind.ALLOW_DEGRADED
    assert decision.allowed
    assert decision.degraded
    assert "database is down" in decision.reason


@pytest.mark.asyncio
async def test_payment_counts_for_every_form_of_agent_id(container):
    agent = await add_paid_agent(container)
    await _paid_record(container, "u1", str(agent.id), PaymentStatus.SUCCESS.value)

    by_id = await container.access.check_access("u1", AgentRef.parse(str(agent.id)))
    by_uuid = await container.access.check_access("u1", AgentRef.parse(agent.agent_uuid))

    assert by_id.kind == DecisionKind.PAID
    assert by_uuid.kind == DecisionKind.PAID
    assert by_uuid.agent_key == str(agent.id)


@pytest.mark.asyncio
async def test_paid_legacy_personality_keyed_by_asid(container):
    await add_personality(container, "asid_pro", name="Pro", role="paid", price_amount=3)
    ref = AgentRef.parse("asid_pro")
    assert (await container.access.check_access("u1", ref)).kind == DecisionKind.DENIED

    await _paid_record(container, "u1", "asid_pro", PaymentStatus.SUCCESS.value)
    decision = await container.access.check_access("u1", ref)
    assert decision.kind == DecisionKind.PAID
    assert decision.agent_key == "asid_pro"
