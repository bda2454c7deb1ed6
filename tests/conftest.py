"""
Shared fixtures: an in-memory database, a fully wired service container and
fakes for the model, object storage and outbound HTTP.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from agentchat.config import Settings
from agentchat.container import ServiceContainer
from agentchat.db import Agent, Personality, create_engine_for, drop_db, init_db
from agentchat.main import create_app
from agentchat.services.llm_service import LLMResponse
from agentchat.services.object_storage import StoredObject

TEST_ENCRYPTION_KEY = "0123456789abcdef" * 4


class FakeStorage:
    """Object storage held in a dict."""

    def __init__(self):
        self.objects: Dict[str, Tuple[bytes, datetime]] = {}
        self.reads: List[str] = []

    def put(self, key: str, body: bytes, modified: Optional[datetime] = None):
        self.objects[key] = (body, modified or datetime(2024, 1, 1))

    async def list_objects(self, prefix: str, max_keys: int = 100) -> List[StoredObject]:
        keys = sorted(k for k in self.objects if k.startswith(prefix))[:max_keys]
        return [StoredObject(key=k, size=len(self.objects[k][0]), last_modified=self.objects[k][1]) for k in keys]

    async def get_object(self, key: str) -> bytes:
        self.reads.append(key)
        return self.objects[key][0]

    def public_url(self, key: str) -> str:
        return f"https://files.test/{key}"


class FakeLLM:
    """Records prompts and answers with a canned reply."""

    def __init__(self, reply: str = "Hi! How can I help?"):
        self.reply = reply
        self.error: Optional[Exception] = None
        self.calls: List[List[Dict[str, str]]] = []

    async def complete(self, messages, **kwargs) -> LLMResponse:
        self.calls.append(messages)
        if self.error:
            raise self.error
        return LLMResponse(
            content=self.reply,
            model="fake-model",
            tokens_prompt=0,
            tokens_completion=0,
            tokens_total=0,
            finish_reason="stop",
        )

    @property
    def last_system_prompt(self) -> str:
        return self.calls[-1][0]["content"]


class FakeHttp:
    """
    Routes outbound requests by (method, host + path) to canned responders.

    Unrouted requests get a 404 so tests notice unexpected calls.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, url: str, responder: Any):
        parsed = httpx.URL(url)
        if not callable(responder):
            body = responder
            responder = lambda request: httpx.Response(200, json=body)  # noqa: E731
        self.routes[(method.upper(), f"{parsed.host}{parsed.path}")] = responder

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, f"{request.url.host}{request.url.path}")
        responder = self.routes.get(key)
        if responder is None:
            return httpx.Response(404, json={"message": f"no route for {key}"})
        return responder(request)

    def requests_to(self, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    @staticmethod
    def json_body(request: httpx.Request) -> Dict[str, Any]:
        return json.loads(request.content)


def make_settings(**overrides) -> Settings:
    values = dict(
        database_url="sqlite+aiosqlite:///:memory:",
        payment_api_url="https://pay.test",
        backend_url="https://api.test",
        frontend_url="https://app.test",
        encryption_key=TEST_ENCRYPTION_KEY,
        train_api_url="https://train.test",
        openai_api_key=None,
        newsapi_key=None,
        weather_api_key=None,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def http() -> FakeHttp:
    return FakeHttp()


@pytest_asyncio.fixture
async def container(settings, storage, llm, http):
    """A container on a fresh in-memory database"""
    engine = create_engine_for(settings.database_url)
    services = ServiceContainer.build(
        settings,
        engine=engine,
        storage=storage,
        llm=llm,
        http_transport=httpx.MockTransport(http.handler),
    )
    await init_db(engine)
    yield services
    await drop_db(engine)
    await services.close()


@pytest_asyncio.fixture
async def client(container):
    """Create an async test client"""
    app = create_app(container=container)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def add_agent(container, **fields) -> Agent:
    fields.setdefault("name", "Coach")
    fields.setdefault("tone", "encouraging")
    fields.setdefault("trait_array", ["patient", "direct"])
    async with container.session_maker() as db:
        agent = Agent(**fields)
        db.add(agent)
        await db.commit()
        await db.refresh(agent)
        return agent


async def add_paid_agent(container, amount: str = "5.00", currency: str = "USD", **fields) -> Agent:
    return await add_agent(container, role="paid", price_amount=Decimal(amount), price_currency=currency, **fields)


async def add_personality(container, asid: str, **fields) -> Personality:
    async with container.session_maker() as db:
        personality = Personality(asid=asid, **fields)
        db.add(personality)
        await db.commit()
        await db.refresh(personality)
        return personality
