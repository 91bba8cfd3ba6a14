"""
store/ — Domain Store contract and the chat log.
"""

from store.chat_log import ChatLog, ChatMessage, ChatSession, InMemoryChatLog, SQLiteChatLog
from store.domain_store import DomainStore, InMemoryDomainStore, load_seed

__all__ = [
    "ChatLog",
    "ChatMessage",
    "ChatSession",
    "InMemoryChatLog",
    "SQLiteChatLog",
    "DomainStore",
    "InMemoryDomainStore",
    "load_seed",
]
