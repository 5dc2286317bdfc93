"""File-backed persistence for chats and the provider registry."""

from agnet_runtime.storage.chats import ChatStore, PersistedChat
from agnet_runtime.storage.providers_registry import ProviderRegistryStore

__all__ = ["ChatStore", "PersistedChat", "ProviderRegistryStore"]
