from agentchat.services.encryption import EncryptionService, EncryptionError
from agentchat.services.agent_directory import AgentDirectory, AgentRef, AgentProfile, AgentPricing
from agentchat.services.payment_store import PaymentStore
from agentchat.services.payment_gateway import PaymentGatewayClient, format_price, is_valid_currency
from agentchat.services.access_control import AccessController, AccessDecision, DecisionKind
from agentchat.services.payment_lifecycle import PaymentLifecycle
from agentchat.services.object_storage import ObjectStorage, S3ObjectStorage
from agentchat.services.content_cache import ContentCache
from agentchat.services.knowledge_base import KnowledgeBaseService, KnowledgeChunk, KnowledgeResult
from agentchat.services.training_client import TrainingServiceClient, RemoteKnowledgeSource
from agentchat.services.tools import ToolDispatcher
from agentchat.services.chat_history import ChatHistoryStore, ConversationTurn
from agentchat.services.history_analyzer import HistoryAnalyzer
from agentchat.services.llm_service import LLMService, LLMResponse
from agentchat.services.chat_orchestrator import ChatOrchestrator, ChatResult

__all__ = [
    "EncryptionService",
    "EncryptionError",
    "AgentDirectory",
    "AgentRef",
    "AgentProfile",
    "AgentPricing",
    "PaymentStore",
    "PaymentGatewayClient",
    "format_price",
    "is_valid_currency",
    "AccessController",
    "AccessDecision",
    "DecisionKind",
    "PaymentLifecycle",
    "ObjectStorage",
    "S3ObjectStorage",
    "ContentCache",
    "KnowledgeBaseService",
    "KnowledgeChunk",
    "KnowledgeResult",
    "TrainingServiceClient",
    "RemoteKnowledgeSource",
    "ToolDispatcher",
    "ChatHistoryStore",
    "ConversationTurn",
    "HistoryAnalyzer",
    "LLMService",
    "LLMResponse",
    "ChatOrchestrator",
    "ChatResult",
]
