"""
Conversation Memory Manager

All session reads and writes go through this facade, which keeps the durable
SessionStore and the process-local SessionCache consistent.

Consistency model:
- The store is the source of truth. A session that predates this process is
  always rebuilt from the store on first touch.
- Appends to one session are serialized inside this process by a per-session
  lock, so concurrent requests for the same session cannot clobber each
  other's turns here.
- Across processes the append is still a read-modify-write of the whole
  record: the last writer wins. Callers that need strict ordering must
  serialize requests per session themselves.
- Store failures are raised as MemoryStorageError after the cached
  projection has been updated, so the cache may run ahead of the store until
  the session is evicted and reloaded.
- A store write cancelled mid-flight (request deadline) evicts the session
  from the cache, so a turn the caller never received is not replayed from
  the projection.
"""

from typing import Dict, Any, Iterable, List
from contextlib import asynccontextmanager
import asyncio

import structlog

from intent_agent.domain.models.conversation import Message, MessageRole, SessionRecord
from .exceptions import MemoryStorageError
from .session_cache import CachedConversation, SessionCache
from .session_store import SessionStore

logger = structlog.get_logger(__name__)

NO_HISTORY = "No previous conversation."

_HISTORY_PREFIXES = {
    "human": "User",
    "ai": "Assistant",
    "system": "System",
}


class ConversationMemoryManager:
    """Keeps session history consistent between store and cache"""

    def __init__(self, store: SessionStore, cache: SessionCache = None):
        self.store = store
        self.cache = cache or SessionCache()
        self._append_locks: Dict[str, asyncio.Lock] = {}
        self._lock_waiters: Dict[str, int] = {}

    async def load_or_create(self, session_id: str) -> CachedConversation:
        """Return the cached projection, loading it from the store if needed"""

        conversation = await self.cache.get(session_id)
        if conversation is not None:
            return conversation

        record = await self.store.load_session(session_id)

        conversation = CachedConversation(session_id)
        for message in record.messages:
            conversation.add(message.role.value, message.content)

        await self.cache.set(session_id, conversation)

        logger.info("Loaded session", session_id=session_id, message_count=len(record.messages))
        return conversation

    async def append_user_turn(self, session_id: str, user_id: str, text: str) -> SessionRecord:
        """Save a user message to both the cache and the store"""
        return await self._append_turn(session_id, user_id, MessageRole.USER, text)

    async def append_assistant_turn(self, session_id: str, user_id: str, text: str) -> SessionRecord:
        """Save an assistant message to both the cache and the store"""
        return await self._append_turn(session_id, user_id, MessageRole.ASSISTANT, text)

    async def _append_turn(self, session_id: str, user_id: str, role: MessageRole, text: str) -> SessionRecord:
        async with self._session_lock(session_id):
            conversation = await self.load_or_create(session_id)
            conversation.add(role.value, text)

            try:
                record = await self.store.save_message(session_id, user_id, role, text)
            except MemoryStorageError as e:
                logger.warning("Failed to persist turn", session_id=session_id, role=role.value, error=str(e))
                raise
            except asyncio.CancelledError:
                # outcome of the write is unknown; rebuild from the store on next touch
                await self.cache.delete(session_id)
                logger.warning("Turn persist cancelled, evicted cached session", session_id=session_id, role=role.value)
                raise

        logger.info("Saved turn", session_id=session_id, role=role.value, message_count=record.metadata.message_count)
        return record

    async def load_history_from_request(self, session_id: str, history: Iterable[Any]) -> int:
        """Replace the cached projection with caller-supplied history.

        Items need ``role`` and ``message`` attributes. Only user and
        assistant turns are kept. Nothing is written to the store.
        """

        conversation = CachedConversation(session_id)
        loaded = 0
        for item in history:
            if item.role not in (MessageRole.USER.value, MessageRole.ASSISTANT.value):
                continue
            if conversation.add(item.role, item.message):
                loaded += 1

        await self.cache.set(session_id, conversation)

        logger.info("Loaded history from request", session_id=session_id, message_count=loaded)
        return loaded

    async def formatted_history(self, session_id: str) -> str:
        """Render the conversation as role-prefixed lines for prompt building"""

        conversation = await self.load_or_create(session_id)
        messages = conversation.messages
        if not messages:
            return NO_HISTORY

        lines = []
        for message in messages:
            prefix = _HISTORY_PREFIXES.get(message.type)
            if prefix:
                lines.append(f"{prefix}: {message.content}\n")
        return "".join(lines)

    async def get_messages(self, session_id: str) -> List[Message]:
        """Raw durable messages for a session"""
        return await self.store.get_messages(session_id)

    async def clear(self, session_id: str) -> None:
        """Evict the session from the cache and delete it from the store"""

        await self.cache.delete(session_id)
        await self.store.clear_session(session_id)

        logger.info("Cleared session", session_id=session_id)

    async def exists(self, session_id: str) -> bool:
        return await self.store.session_exists(session_id)

    async def touch_activity(self, session_id: str) -> bool:
        """Extend the session's expiry window without appending a message"""
        return await self.store.update_activity(session_id)

    def active_session_count(self) -> int:
        return len(self.cache)

    async def ping(self) -> bool:
        return await self.store.ping()

    async def close(self) -> None:
        await self.store.close()

    @asynccontextmanager
    async def _session_lock(self, session_id: str):
        lock = self._append_locks.get(session_id)
        if lock is None:
            lock = self._append_locks[session_id] = asyncio.Lock()
        self._lock_waiters[session_id] = self._lock_waiters.get(session_id, 0) + 1

        try:
            async with lock:
                yield
        finally:
            self._lock_waiters[session_id] -= 1
            if self._lock_waiters[session_id] == 0:
                del self._lock_waiters[session_id]
                del self._append_locks[session_id]
