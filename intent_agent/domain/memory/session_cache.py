from typing import Dict, Any, Optional, List
from collections import OrderedDict
import asyncio

from langchain_core.chat_history import InMemoryChatMessageHistory
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
import structlog

from intent_agent.domain.models.conversation import MessageRole
from intent_agent.infrastructure.observability.logging import metrics

logger = structlog.get_logger(__name__)

DEFAULT_CACHE_CAPACITY = 1000


def to_chat_message(role: str, content: str) -> Optional[BaseMessage]:
    """Map a stored role onto a langchain chat message, None for unknown roles"""

    if role == MessageRole.USER.value:
        return HumanMessage(content=content)
    if role == MessageRole.ASSISTANT.value:
        return AIMessage(content=content)
    if role == MessageRole.SYSTEM.value:
        return SystemMessage(content=content)
    return None


class CachedConversation:
    """Model-ready projection of one session's message log"""

    def __init__(self, session_id: str):
        self.session_id = session_id
        self.history = InMemoryChatMessageHistory()

    def add(self, role: str, content: str) -> bool:
        """Append a turn; returns False if the role is not recognised"""

        message = to_chat_message(role, content)
        if message is None:
            return False
        self.history.add_message(message)
        return True

    @property
    def messages(self) -> List[BaseMessage]:
        return list(self.history.messages)

    def __len__(self) -> int:
        return len(self.history.messages)


class SessionCache:
    """Process-local, capacity-bounded LRU index of loaded conversations.

    Inserting past capacity evicts the least recently used session. Evicted
    sessions are rebuilt from the store on the next touch.
    """

    def __init__(self, capacity: int = DEFAULT_CACHE_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.entries: "OrderedDict[str, CachedConversation]" = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self._lock = asyncio.Lock()

    async def get(self, session_id: str) -> Optional[CachedConversation]:
        """Get a resident conversation and mark it most recently used"""

        async with self._lock:
            conversation = self.entries.get(session_id)
            if conversation is None:
                self.misses += 1
                return None

            self.entries.move_to_end(session_id)
            self.hits += 1
            return conversation

    async def set(self, session_id: str, conversation: CachedConversation) -> None:
        """Insert or replace a conversation; last write to a slot wins"""

        async with self._lock:
            self.entries[session_id] = conversation
            self.entries.move_to_end(session_id)

            while len(self.entries) > self.capacity:
                evicted_id, _ = self.entries.popitem(last=False)
                self.evictions += 1
                logger.debug("Evicted cached session", evicted_session_id=evicted_id)

            metrics.set_gauge("sessions.cached", len(self.entries))

    async def delete(self, session_id: str) -> bool:
        """Remove a conversation from the cache"""

        async with self._lock:
            removed = self.entries.pop(session_id, None) is not None
            metrics.set_gauge("sessions.cached", len(self.entries))
            return removed

    def __contains__(self, session_id: str) -> bool:
        return session_id in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics"""

        return {
            "capacity": self.capacity,
            "size": len(self.entries),
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
        }
