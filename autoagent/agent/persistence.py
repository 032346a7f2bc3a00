"""Persistence collaborator contract.

The engine never designs a storage schema; it hands finished messages
to a ``MessagePersistence`` and only cares about the acknowledgement.
"""

from abc import ABC, abstractmethod
from typing import List, Sequence

from .models import Message


class MessagePersistence(ABC):
    """Saves finished feed messages somewhere outside the run."""

    @abstractmethod
    async def save_messages(self, messages: Sequence[Message]) -> bool:
        """Persist ``messages``; return True once they are accepted.

        Implementations raise ``PersistenceError`` on failure.
        """


class InMemoryMessagePersistence(MessagePersistence):
    """Keeps every saved batch in memory. Used by the CLI and tests."""

    def __init__(self):
        self.batches: List[List[Message]] = []

    async def save_messages(self, messages: Sequence[Message]) -> bool:
        self.batches.append([m.model_copy() for m in messages])
        return True

    @property
    def saved(self) -> List[Message]:
        return [m for batch in self.batches for m in batch]
