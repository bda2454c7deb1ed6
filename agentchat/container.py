"""
Service container - builds the component graph once per application.

Routes receive services through ``agentchat.api.deps``; nothing is a
module-level singleton, so tests can build a container around an
in-memory database and fake collaborators.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from agentchat.config import Settings
from agentchat.db.database import create_engine_for, create_session_maker
from agentchat.services.access_control import AccessController
from agentchat.services.agent_directory import AgentDirectory
from agentchat.services.chat_history import ChatHistoryStore
from agentchat.services.chat_orchestrator import ChatOrchestrator, KnowledgeSource
from agentchat.services.content_cache import ContentCache
from agentchat.services.encryption import EncryptionService
from agentchat.services.history_analyzer import HistoryAnalyzer
from agentchat.services.knowledge_base import KnowledgeBaseService
from agentchat.services.llm_service import LLMService
from agentchat.services.object_storage import ObjectStorage, S3ObjectStorage
from agentchat.services.payment_gateway import PaymentGatewayClient
from agentchat.services.payment_lifecycle import PaymentLifecycle
from agentchat.services.payment_store import PaymentStore
from agentchat.services.tools import ToolDispatcher
from agentchat.services.training_client import RemoteKnowledgeSource, TrainingServiceClient

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    engine: AsyncEngine
    session_maker: async_sessionmaker
    encryption: EncryptionService
    directory: AgentDirectory
    payment_store: PaymentStore
    gateway: PaymentGatewayClient
    access: AccessController
    payments: PaymentLifecycle
    knowledge_base: KnowledgeBaseService
    training: TrainingServiceClient
    knowledge: KnowledgeSource
    tools: ToolDispatcher
    history: ChatHistoryStore
    analyzer: HistoryAnalyzer
    llm: LLMService
    orchestrator: ChatOrchestrator

    @classmethod
    def build(
        cls,
        settings: Settings,
        engine: Optional[AsyncEngine] = None,
        storage: Optional[ObjectStorage] = None,
        llm: Optional[LLMService] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ServiceContainer":
        """
        Wire every service from settings.

        ``storage``, ``llm`` and ``http_transport`` replace the real S3
        bucket, OpenAI client and outbound HTTP when given.
        """
        engine = engine or create_engine_for(settings.database_url, settings.debug)
        session_maker = create_session_maker(engine)

        encryption = EncryptionService(settings.encryption_key)
        directory = AgentDirectory(session_maker)
        payment_store = PaymentStore(session_maker)
        gateway = PaymentGatewayClient(settings, transport=http_transport)
        access = AccessController(directory, payment_store)
        payments = PaymentLifecycle(directory, payment_store, gateway, access)

        cache = ContentCache(settings.knowledge_cache_ttl_seconds, settings.knowledge_cache_max_entries)
        knowledge_base = KnowledgeBaseService(
            storage or S3ObjectStorage(settings), cache, max_keys=settings.knowledge_max_keys
        )
        training = TrainingServiceClient(settings, transport=http_transport)
        if settings.knowledge_backend == "training":
            knowledge: KnowledgeSource = RemoteKnowledgeSource(training)
        else:
            knowledge = knowledge_base
        logger.info(f"Knowledge backend: {settings.knowledge_backend}")

        tools = ToolDispatcher(settings, transport=http_transport)
        history = ChatHistoryStore(session_maker, encryption)
        analyzer = HistoryAnalyzer(history)
        llm = llm or LLMService(settings)
        orchestrator = ChatOrchestrator(
            directory=directory,
            knowledge=knowledge,
            analyzer=analyzer,
            tools=tools,
            llm=llm,
            history=history,
            knowledge_max_results=settings.knowledge_max_files,
            history_window=settings.history_window,
        )

        return cls(
            settings=settings,
            engine=engine,
            session_maker=session_maker,
            encryption=encryption,
            directory=directory,
            payment_store=payment_store,
            gateway=gateway,
            access=access,
            payments=payments,
            knowledge_base=knowledge_base,
            training=training,
            knowledge=knowledge,
            tools=tools,
            history=history,
            analyzer=analyzer,
            llm=llm,
            orchestrator=orchestrator,
        )

    async def close(self):
        await self.engine.dispose()
