"""
Tests for payment records, their state machine and the payment lifecycle
"""

import asyncio

import httpx
import pytest
from sqlalchemy import Update, update

from agentchat.db import PaymentRecord, PaymentStatus
from agentchat.errors import (
    AgentChatError, InvalidTransitionError, NotFoundError, PaymentGatewayError, ValidationError,
)
from agentchat.services.agent_directory import AgentRef
from agentchat.services.payment_store import MAX_TRANSITION_ATTEMPTS, can_transition
from tests.conftest import add_agent, add_paid_agent

PAY_URL = "https://pay.test/payments"
STATUS_URL = "https://pay.test/payments/status"


def test_allowed_transitions():
    assert can_transition("pending", "success")
    assert can_transition("pending", "failed")
    assert can_transition("success", "refunded")
    assert not can_transition("failed", "success")
    assert not can_transition("success", "pending")
    assert not can_transition("refunded", "success")


# ============ Store Tests ============

@pytest.mark.asyncio
async def test_external_id_is_primary_key(container):
    record = await container.payment_store.create_pending("u1", "7", 5, "USD", "Coach")
    assert record.external_id == str(record.id)
    assert record.status == PaymentStatus.PENDING.value
    assert record.version == 1


@pytest.mark.asyncio
async def test_success_transition_sets_paid_at_once(container):
    store = container.payment_store
    record = await store.create_pending("u1", "7", 5, "USD", "Coach")

    first = await store.transition(record.external_id, "success", payer_phone="+961")
    assert first.applied
    assert first.previous_status == "pending"
    assert first.record.paid_at is not None
    assert first.record.payer_phone == "+961"

    second = await store.transition(record.external_id, "success")
    assert not second.applied
    stored = await store.get_by_external_id(record.external_id)
    assert stored.paid_at == first.record.paid_at
    assert stored.version == 2


@pytest.mark.asyncio
async def test_invalid_transition_raises(container):
    store = container.payment_store
    record = await store.create_pending("u1", "7", 5, "USD")
    await store.transition(record.external_id, "failed")
    with pytest.raises(InvalidTransitionError):
        await store.transition(record.external_id, "success")


@pytest.mark.asyncio
async def test_transition_unknown_record(container):
    with pytest.raises(NotFoundError):
        await container.payment_store.transition("404", "success")


@pytest.mark.asyncio
async def test_transition_merges_metadata(container):
    store = container.payment_store
    record = await store.create_pending("u1", "7", 5, "USD")
    await store.transition(record.external_id, "failed", metadata={"failureReason": "cancelled"})
    stored = await store.get_by_external_id(record.external_id)
    assert stored.metadata_dict == {"failureReason": "cancelled"}


@pytest.mark.asyncio
async def test_list_for_user_newest_first(container):
    store = container.payment_store
    first = await store.create_pending("u1", "7", 5, "USD")
    second = await store.create_pending("u1", "8", 6, "USD")
    await store.create_pending("u2", "7", 5, "USD")
    records = await store.list_for_user("u1")
    assert [r.id for r in records] == [second.id, first.id]
    assert (await store.latest_for("u1", "7")).id == first.id


# ============ Lifecycle Tests ============

@pytest.mark.asyncio
async def test_start_payment_creates_pending_record(container, http):
    agent = await add_paid_agent(container, name="Coach")
    http.add("POST", PAY_URL, {"collectUrl": "https://whish.test/pay/1", "externalId": 1})

    result = await container.payments.start_payment("u1", AgentRef.parse(str(agent.id)))

    assert result["collectUrl"] == "https://whish.test/pay/1"
    assert result["formattedPrice"] == "$5.00"
    assert result["agentName"] == "Coach"
    record = await container.payment_store.get_by_id(result["paymentId"])
    assert record.status == "pending"
    assert record.collect_url == "https://whish.test/pay/1"
    assert http.json_body(http.requests_to("/payments")[0])["externalId"] == record.id


@pytest.mark.asyncio
async def test_start_payment_rejects_free_agent(container, http):
    agent = await add_agent(container)
    with pytest.raises(ValidationError, match="free"):
        await container.payments.start_payment("u1", AgentRef.parse(str(agent.id)))
    assert http.requests == []


@pytest.mark.asyncio
async def test_start_payment_rejects_unknown_agent(container):
    with pytest.raises(NotFoundError):
        await container.payments.start_payment("u1", AgentRef.parse("999"))


@pytest.mark.asyncio
async def test_start_payment_rejects_user_who_already_paid(container, http):
    agent = await add_paid_agent(container)
    record = await container.payment_store.create_pending("u1", str(agent.id), 5, "USD")
    await container.payment_store.transition(record.external_id, "success")
    with pytest.raises(ValidationError, match="already has access"):
        await container.payments.start_payment("u1", AgentRef.parse(str(agent.id)))


@pytest.mark.asyncio
async def test_gateway_failure_marks_record_failed(container, http):
    agent = await add_paid_agent(container)
    http.add("POST", PAY_URL, lambda request: httpx.Response(500, json={"message": "provider down"}))

    with pytest.raises(PaymentGatewayError):
        await container.payments.start_payment("u1", AgentRef.parse(str(agent.id)))

    [record] = await container.payment_store.list_for_user("u1")
    assert record.status == "failed"
    assert record.metadata_dict["failureReason"] == "gateway_error"


@pytest.mark.asyncio
async def test_success_webhook_is_idempotent(container, http):
    record = await container.payment_store.create_pending("u1", "7", 5, "USD")
    http.add("POST", STATUS_URL, {"collectStatus": "success", "payerPhoneNumber": "+96171111111"})

    first = await container.payments.handle_success_webhook(record.external_id, "success")
    paid_at = first.record.paid_at
    second = await container.payments.handle_success_webhook(record.external_id, "success")

    assert first.applied
    assert not second.applied
    stored = await container.payment_store.get_by_external_id(record.external_id)
    assert stored.status == "success"
    assert stored.paid_at == paid_at
    assert stored.payer_phone == "+96171111111"


@pytest.mark.asyncio
async def test_success_webhook_survives_status_check_failure(container, http):
    record = await container.payment_store.create_pending("u1", "7", 5, "USD")
    result = await container.payments.handle_success_webhook(record.external_id)
    assert result.applied
    assert result.record.payer_phone is None


@pytest.mark.asyncio
async def test_success_webhook_requires_known_external_id(container):
    with pytest.raises(ValidationError):
        await container.payments.handle_success_webhook(None)
    with pytest.raises(NotFoundError):
        await container.payments.handle_success_webhook("12345")


@pytest.mark.asyncio
async def test_late_success_after_failure_is_ignored(container, http):
    record = await container.payment_store.create_pending("u1", "7", 5, "USD")
    await container.payment_store.transition(record.external_id, "failed")
    assert await container.payments.handle_success_webhook(record.external_id) is None
    assert (await container.payment_store.get_by_external_id(record.external_id)).status == "failed"


@pytest.mark.asyncio
async def test_failure_webhook_records_reason(container):
    record = await container.payment_store.create_pending("u1", "7", 5, "USD")
    result = await container.payments.handle_failure_webhook(record.external_id, "cancelled")
    assert result.applied
    stored = await container.payment_store.get_by_external_id(record.external_id)
    assert stored.status == "failed"
    assert stored.metadata_dict["failureReason"] == "cancelled"


@pytest.mark.asyncio
async def test_failure_webhook_for_unknown_payment_is_acknowledged(container):
    assert await container.payments.handle_failure_webhook("999", "cancelled") is None


@pytest.mark.asyncio
async def test_verify_payment_syncs_drifted_status(container, http):
    record = await container.payment_store.create_pending("u1", "7", 5, "USD")
    http.add("POST", STATUS_URL, {"collectStatus": "SUCCESS", "payerPhoneNumber": "+961", "currency": "USD"})

    result = await container.payments.verify_payment(record.id)

    assert result["status"] == "SUCCESS"
    assert result["payment"]["status"] == "success"
    assert result["payment"]["metadata"]["verifiedAt"]


@pytest.mark.asyncio
async def test_verify_payment_ignores_unknown_status(container, http):
    record = await container.payment_store.create_pending("u1", "7", 5, "USD")
    http.add("POST", STATUS_URL, {"collectStatus": "processing"})
    result = await container.payments.verify_payment(record.id)
    assert result["payment"]["status"] == "pending"


@pytest.mark.asyncio
async def test_payment_status_reports_latest_payment(container, http):
    agent = await add_paid_agent(container)
    ref = AgentRef.parse(str(agent.id))
    await container.payment_store.create_pending("u1", ref.raw, 5, "USD", "Coach")

    status = await container.payments.payment_status("u1", ref)

    assert status["hasAccess"] is False
    assert status["requiresPayment"] is True
    assert status["pricing"]["formattedPrice"] == "$5.00"
    assert status["latestPayment"]["status"] == "pending"


@pytest.mark.asyncio
async def test_payment_under_uuid_is_stored_under_agent_id(container, http):
    agent = await add_paid_agent(container)
    http.add("POST", PAY_URL, {"collectUrl": "https://whish.test/pay/1"})

    result = await container.payments.start_payment("u1", AgentRef.parse(agent.agent_uuid))

    record = await container.payment_store.get_by_id(result["paymentId"])
    assert record.agent_id == str(agent.id)
    status = await container.payments.payment_status("u1", AgentRef.parse(str(agent.id)))
    assert status["latestPayment"]["id"] == record.id


@pytest.mark.asyncio
async def test_start_payment_rejects_user_who_paid_under_other_id_form(container, http):
    agent = await add_paid_agent(container)
    record = await container.payment_store.create_pending("u1", str(agent.id), 5, "USD")
    await container.payment_store.transition(record.external_id, "success")

    with pytest.raises(ValidationError, match="already has access"):
        await container.payments.start_payment("u1", AgentRef.parse(agent.agent_uuid))
    assert http.requests == []


# ============ Concurrent Delivery ============

class ConflictingSession:
    """
    Wraps a session so its next UPDATEs lose a race: another writer bumps
    every payment's version just before the compare-and-set runs.
    """

    def __init__(self, session, conflicts: dict):
        self._session = session
        self._conflicts = conflicts

    async def __aenter__(self):
        await self._session.__aenter__()
        return self

    async def __aexit__(self, *exc_info):
        return await self._session.__aexit__(*exc_info)

    async def execute(self, statement, *args, **kwargs):
        if isinstance(statement, Update) and self._conflicts["left"] > 0:
            self._conflicts["left"] -= 1
            await self._session.execute(update(PaymentRecord).values(version=PaymentRecord.version + 1))
        return await self._session.execute(statement, *args, **kwargs)

    def __getattr__(self, name):
        return getattr(self._session, name)


def _with_conflicts(store, count: int) -> dict:
    conflicts = {"left": count}
    session_maker = store._session_maker
    store._session_maker = lambda: ConflictingSession(session_maker(), conflicts)
    return conflicts


@pytest.mark.asyncio
async def test_concurrent_success_webhooks_apply_once(container, http):
    record = await container.payment_store.create_pending("u1", "7", 5, "USD")
    http.add("POST", STATUS_URL, {"collectStatus": "success"})

    results = await asyncio.gather(
        *(container.payments.handle_success_webhook(record.external_id, "success") for _ in range(5))
    )

    applied = [r for r in results if r.applied]
    assert len(applied) == 1
    stored = await container.payment_store.get_by_external_id(record.external_id)
    assert stored.status == "success"
    assert stored.paid_at == applied[0].record.paid_at
    assert stored.version == 2


@pytest.mark.asyncio
async def test_transition_retries_after_version_conflict(container):
    store = container.payment_store
    record = await store.create_pending("u1", "7", 5, "USD")
    conflicts = _with_conflicts(store, 1)

    result = await store.transition(record.external_id, "success")

    assert conflicts["left"] == 0
    assert result.applied
    assert result.record.status == "success"
    assert result.record.version == 2


@pytest.mark.asyncio
async def test_transition_gives_up_after_repeated_conflicts(container):
    store = container.payment_store
    record = await store.create_pending("u1", "7", 5, "USD")
    conflicts = _with_conflicts(store, MAX_TRANSITION_ATTEMPTS)

    with pytest.raises(AgentChatError, match="could not be updated"):
        await store.transition(record.external_id, "success")

    assert conflicts["left"] == 0
    stored = await store.get_by_external_id(record.external_id)
    assert stored.status == "pending"
    assert stored.version == 1
    assert stored.paid_at is None
