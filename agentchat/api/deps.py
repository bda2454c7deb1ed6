"""FastAPI dependencies that hand services from the app's container to routes."""

from fastapi import Request

from agentchat.container import ServiceContainer
from agentchat.services.access_control import AccessController
from agentchat.services.agent_directory import AgentDirectory
from agentchat.services.chat_history import ChatHistoryStore
from agentchat.services.chat_orchestrator import ChatOrchestrator
from agentchat.services.payment_lifecycle import PaymentLifecycle
from agentchat.services.training_client import TrainingServiceClient


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_payments(request: Request) -> PaymentLifecycle:
    return get_container(request).payments


def get_access(request: Request) -> AccessController:
    return get_container(request).access


def get_orchestrator(request: Request) -> ChatOrchestrator:
    return get_container(request).orchestrator


def get_history(request: Request) -> ChatHistoryStore:
    return get_container(request).history


def get_training(request: Request) -> TrainingServiceClient:
    return get_container(request).training


def get_directory(request: Request) -> AgentDirectory:
    return get_container(request).directory
