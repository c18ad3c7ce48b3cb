from dataclasses import dataclass
from typing import Optional

import structlog

from intent_agent.application.bus.dispatcher import RequestDispatcher
from intent_agent.application.bus.nats_transport import NATSTransport
from intent_agent.domain.intent.pipeline import IntentPipeline
from intent_agent.domain.memory.memory_manager import ConversationMemoryManager
from intent_agent.domain.memory.session_cache import SessionCache
from intent_agent.domain.memory.session_store import RedisSessionStore
from intent_agent.infrastructure.config.settings import Settings
from intent_agent.infrastructure.llm.anthropic_client import AnthropicCompletionClient
from intent_agent.infrastructure.llm.completion_client import CompletionClient

logger = structlog.get_logger(__name__)


@dataclass
class IntentService:
    """Wired components of one running service instance"""
    memory: ConversationMemoryManager
    client: CompletionClient
    pipeline: IntentPipeline
    dispatcher: RequestDispatcher
    transport: Optional[NATSTransport] = None

    async def start(self):
        if self.transport is not None:
            await self.transport.start()
        logger.info("Intent service started", bus=self.transport is not None)

    async def close(self):
        # stop intake first so in-flight requests can still persist turns
        if self.transport is not None:
            await self.transport.close()
        await self.client.close()
        await self.memory.close()
        logger.info("Intent service stopped")


async def build_service(settings: Settings) -> IntentService:
    """Connect to the store and assemble the request path"""

    store = await RedisSessionStore.from_url(settings.redis_url, ttl=settings.session_ttl_seconds)
    memory = ConversationMemoryManager(store, SessionCache(capacity=settings.session_cache_capacity))

    client = AnthropicCompletionClient(
        api_key=settings.anthropic_api_key,
        timeout=settings.anthropic_timeout,
    )
    pipeline = IntentPipeline(memory, client, model=settings.anthropic_model)
    dispatcher = RequestDispatcher(pipeline, request_timeout=settings.request_timeout)

    transport = NATSTransport(
        dispatcher,
        url=settings.nats_url,
        subject=settings.nats_request_subject,
        name=settings.service_name,
        connect_timeout=settings.nats_timeout,
        shutdown_timeout=settings.request_timeout,
    )

    return IntentService(
        memory=memory,
        client=client,
        pipeline=pipeline,
        dispatcher=dispatcher,
        transport=transport,
    )
