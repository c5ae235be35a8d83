"""
Message persistence contract.

The runtime emits every message it adds to a conversation to a
``MessageStore``. Durable storage lives outside this package; the in-memory
store is enough for tests and the command line.
"""

import asyncio
from collections import defaultdict
from typing import Protocol, runtime_checkable

from ..llm.base import LLMMessage


@runtime_checkable
class MessageStore(Protocol):
    async def insert(self, conversation_id: str, message: LLMMessage) -> None:
        ...


class InMemoryMessageStore:
    """MessageStore keeping serialized messages per conversation."""

    def __init__(self):
        self._records: dict[str, list[dict]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def insert(self, conversation_id: str, message: LLMMessage) -> None:
        async with self._lock:
            self._records[conversation_id].append(message.to_dict())

    def load(self, conversation_id: str) -> list[LLMMessage]:
        """Rebuild the stored messages of a conversation, oldest first."""
        return [LLMMessage.from_dict(record) for record in self._records.get(conversation_id, [])]

    def conversation_ids(self) -> list[str]:
        return list(self._records)
