"""
Session Store - durable persistence of conversation sessions

One record per session, addressed by session id, with a sliding expiry that
is refreshed on every write. Readers never fail on unknown keys: a missing
record is the empty session.

``save_message`` is a read-modify-write of the whole record. It is not atomic
against writers in other processes; callers inside one process serialize it
per session (see ConversationMemoryManager).
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional
import asyncio
from datetime import datetime, timedelta

import redis.asyncio as redis
from redis.exceptions import RedisError
from pydantic import ValidationError
import structlog

from intent_agent.domain.models.conversation import Message, MessageRole, SessionRecord, utcnow
from .exceptions import MemoryStorageError

logger = structlog.get_logger(__name__)

DEFAULT_SESSION_TTL = 24 * 60 * 60


class SessionStore(ABC):
    """Storage backend for session records"""

    @abstractmethod
    async def load_session(self, session_id: str) -> SessionRecord:
        """Load a session, or the empty session if absent"""

    @abstractmethod
    async def save_session(self, record: SessionRecord) -> None:
        """Write the full record and refresh its expiry"""

    @abstractmethod
    async def clear_session(self, session_id: str) -> None:
        """Delete a session. Deleting a missing session is not an error."""

    @abstractmethod
    async def session_exists(self, session_id: str) -> bool:
        """Check whether a record exists"""

    async def save_message(self, session_id: str, user_id: str, role: MessageRole, content: str) -> SessionRecord:
        """Append a message to a session and persist it"""

        record = await self.load_session(session_id)

        # timestamps never go backwards within a session
        timestamp = utcnow()
        last = record.last_timestamp
        if last is not None and last > timestamp:
            timestamp = last

        record.append(Message(role=role, content=content, timestamp=timestamp), user_id)
        await self.save_session(record)
        return record

    async def get_messages(self, session_id: str) -> List[Message]:
        """Retrieve all messages for a session"""

        record = await self.load_session(session_id)
        return record.messages

    async def update_activity(self, session_id: str) -> bool:
        """Refresh last_activity and the expiry window without appending.

        Returns False when there is no record to refresh.
        """

        if not await self.session_exists(session_id):
            return False

        record = await self.load_session(session_id)
        record.touch()
        await self.save_session(record)
        return True

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass


class RedisSessionStore(SessionStore):
    """Session store backed by Redis, one JSON value per session key"""

    def __init__(self, client: redis.Redis, ttl: int = DEFAULT_SESSION_TTL, key_prefix: str = "session:"):
        self.client = client
        self.ttl = ttl
        self.key_prefix = key_prefix

    @classmethod
    async def from_url(cls, redis_url: str, ttl: int = DEFAULT_SESSION_TTL, connect_timeout: float = 5.0) -> "RedisSessionStore":
        """Create a store and verify the connection"""

        try:
            client = redis.from_url(redis_url, decode_responses=True)
        except ValueError as e:
            raise MemoryStorageError(f"failed to parse Redis URL: {e}") from e

        try:
            await asyncio.wait_for(client.ping(), timeout=connect_timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            await client.aclose()
            raise MemoryStorageError(f"failed to connect to Redis: {e}") from e

        logger.info("Connected to Redis", ttl=ttl)
        return cls(client, ttl=ttl)

    def session_key(self, session_id: str) -> str:
        return f"{self.key_prefix}{session_id}"

    async def load_session(self, session_id: str) -> SessionRecord:
        key = self.session_key(session_id)

        try:
            data = await self.client.get(key)
        except RedisError as e:
            raise MemoryStorageError(f"failed to load session from Redis: {e}", session_id) from e

        if data is None:
            return SessionRecord.empty(session_id)

        try:
            return SessionRecord.model_validate_json(data)
        except ValidationError as e:
            raise MemoryStorageError(f"failed to parse session data: {e}", session_id) from e

    async def save_session(self, record: SessionRecord) -> None:
        key = self.session_key(record.session_id)

        try:
            await self.client.set(key, record.model_dump_json(), ex=self.ttl)
        except RedisError as e:
            raise MemoryStorageError(f"failed to save session to Redis: {e}", record.session_id) from e

    async def clear_session(self, session_id: str) -> None:
        try:
            await self.client.delete(self.session_key(session_id))
        except RedisError as e:
            raise MemoryStorageError(f"failed to clear session: {e}", session_id) from e

    async def session_exists(self, session_id: str) -> bool:
        try:
            exists = await self.client.exists(self.session_key(session_id))
        except RedisError as e:
            raise MemoryStorageError(f"failed to check session existence: {e}", session_id) from e
        return exists > 0

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError as e:
            logger.warning("Redis ping failed", error=str(e))
            return False

    async def close(self) -> None:
        await self.client.aclose()


class InMemorySessionStore(SessionStore):
    """Process-local store with TTL support, for development and tests"""

    def __init__(self, ttl: int = DEFAULT_SESSION_TTL):
        self.ttl = ttl
        self.records: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def load_session(self, session_id: str) -> SessionRecord:
        async with self._lock:
            entry = self._live_entry(session_id)
            if entry is None:
                return SessionRecord.empty(session_id)
            # stored as JSON so callers never share mutable state with the store
            return SessionRecord.model_validate_json(entry["value"])

    async def save_session(self, record: SessionRecord) -> None:
        async with self._lock:
            self.records[record.session_id] = {
                "value": record.model_dump_json(),
                "expires_at": utcnow() + timedelta(seconds=self.ttl),
            }

    async def clear_session(self, session_id: str) -> None:
        async with self._lock:
            self.records.pop(session_id, None)

    async def session_exists(self, session_id: str) -> bool:
        async with self._lock:
            return self._live_entry(session_id) is not None

    def expires_at(self, session_id: str) -> Optional[datetime]:
        entry = self.records.get(session_id)
        return entry["expires_at"] if entry else None

    def _live_entry(self, session_id: str) -> Optional[Dict[str, Any]]:
        entry = self.records.get(session_id)
        if entry is None:
            return None
        if utcnow() > entry["expires_at"]:
            del self.records[session_id]
            return None
        return entry
