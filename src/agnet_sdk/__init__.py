"""Python SDK for driving agnet providers and chats."""

from agnet_sdk.chats import ChatsService, ShortcutsService
from agnet_sdk.client import Agnet, AgentResult, Chat, ChatExecution
from agnet_sdk.context import AppContext, create_app_context
from agnet_sdk.dispatch import ApiHost
from agnet_sdk.providers import MOCK_PROVIDER_ID, ProvidersService
from agnet_sdk.schema import api_schema

__all__ = [
    "AgentResult",
    "Agnet",
    "ApiHost",
    "AppContext",
    "Chat",
    "ChatExecution",
    "ChatsService",
    "MOCK_PROVIDER_ID",
    "ProvidersService",
    "ShortcutsService",
    "api_schema",
    "create_app_context",
]
