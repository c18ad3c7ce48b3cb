from typing import Optional, Set
import asyncio

import nats
from nats.aio.client import Client as NATSClient
from nats.aio.msg import Msg
from nats.aio.subscription import Subscription
from nats.errors import Error as NATSError
import structlog

from .dispatcher import RequestDispatcher

logger = structlog.get_logger(__name__)


class NATSTransport:
    """Request/reply worker on a NATS subject.

    nats-py awaits subscription callbacks one at a time, so each message is
    moved onto its own task before the callback returns.
    """

    def __init__(
        self,
        dispatcher: RequestDispatcher,
        url: str,
        subject: str,
        name: str = "cdnbuddy-intent",
        connect_timeout: float = 10.0,
        shutdown_timeout: float = 30.0,
    ):
        self.dispatcher = dispatcher
        self.url = url
        self.subject = subject
        self.name = name
        self.connect_timeout = connect_timeout
        self.shutdown_timeout = shutdown_timeout

        self.nc: Optional[NATSClient] = None
        self.subscription: Optional[Subscription] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def is_connected(self) -> bool:
        return self.nc is not None and self.nc.is_connected

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def start(self):
        """Connect and subscribe to the request subject"""

        self.nc = await nats.connect(
            servers=[self.url],
            name=self.name,
            connect_timeout=self.connect_timeout,
            reconnect_time_wait=2,
            max_reconnect_attempts=-1,
            error_cb=self._on_error,
            disconnected_cb=self._on_disconnected,
            reconnected_cb=self._on_reconnected,
        )
        self.subscription = await self.nc.subscribe(self.subject, cb=self._on_message)

        logger.info("Listening for intent requests", url=self.url, subject=self.subject)

    async def _on_message(self, msg: Msg):
        task = asyncio.create_task(self._handle(msg))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _handle(self, msg: Msg):
        reply = await self.dispatcher.handle(msg.data)

        if not msg.reply:
            logger.warning("Request has no reply subject, dropping reply", subject=msg.subject)
            return

        try:
            await msg.respond(reply)
        except NATSError as e:
            logger.error("Failed to send reply", subject=msg.subject, error=str(e))

    async def close(self):
        """Stop taking requests, finish in-flight ones and disconnect"""

        if self.nc is None:
            return

        if self.subscription is not None and self.nc.is_connected:
            try:
                await self.subscription.unsubscribe()
            except NATSError as e:
                logger.warning("Unsubscribe failed", error=str(e))

        if self._tasks:
            _, pending = await asyncio.wait(set(self._tasks), timeout=self.shutdown_timeout)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning("Cancelled unfinished requests", count=len(pending))
                await asyncio.gather(*pending, return_exceptions=True)

        if self.nc.is_connected:
            try:
                # flushes replies still buffered in the client
                await self.nc.drain()
            except NATSError as e:
                logger.warning("Drain failed", error=str(e))

        if not self.nc.is_closed:
            await self.nc.close()

        self.nc = None
        self.subscription = None
        logger.info("NATS transport closed")

    async def _on_error(self, e: Exception):
        logger.error("NATS error", error=str(e))

    async def _on_disconnected(self):
        logger.warning("Disconnected from NATS")

    async def _on_reconnected(self):
        logger.info("Reconnected to NATS", url=self.nc.connected_url.netloc if self.nc and self.nc.connected_url else None)
