"""
SDK for usage-ledger.

Chat client that records token usage for every completed exchange.
"""

from .chat_client import ChatProviderError, ChatStream, TrackedChatClient

__all__ = ["ChatProviderError", "ChatStream", "TrackedChatClient"]
