"""Redis stream worker base class."""

from __future__ import annotations

import asyncio
import logging
import signal
import time
from dataclasses import dataclass
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import ResponseError

logger = logging.getLogger(__name__)

IDEMPOTENCY_TTL_SECONDS = 3600


@dataclass
class StreamMessage:
    msg_id: str
    stream: str
    payload: dict[str, Any]


class StreamWorker:
    """Base worker consuming messages from one Redis stream through a consumer group."""

    def __init__(self, redis: Redis, *, stream: str, group: str, name: str) -> None:
        self.redis = redis
        self.stream = stream
        self.group = group
        self.consumer = f"{name}-{int(time.time())}"
        self.shutdown_requested = False

    @property
    def dlq_stream(self) -> str:
        return f"{self.stream}:dlq"

    async def setup(self) -> None:
        try:
            await self.redis.xgroup_create(self.stream, self.group, id="$", mkstream=True)
        except ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise

    def _install_signal_handlers(self) -> None:
        def _handle_signal(signum: int, frame: object) -> None:
            logger.info("Received signal %s, shutting down after current message", signum)
            self.shutdown_requested = True

        signal.signal(signal.SIGTERM, _handle_signal)
        signal.signal(signal.SIGINT, _handle_signal)

    async def _next_message(self, block_ms: int = 1000) -> StreamMessage | None:
        result = await self.redis.xreadgroup(
            groupname=self.group,
            consumername=self.consumer,
            streams={self.stream: ">"},
            count=1,
            block=block_ms,
        )
        if not result:
            return None
        stream_name, messages = result[0]
        msg_id, payload = messages[0]
        return StreamMessage(msg_id=msg_id, stream=stream_name, payload=payload)

    async def _ack(self, message: StreamMessage) -> None:
        await self.redis.xack(message.stream, self.group, message.msg_id)

    async def _to_dlq(self, message: StreamMessage, error: str) -> None:
        payload = dict(message.payload)
        payload["error"] = error
        await self.redis.xadd(self.dlq_stream, payload)
        await self._ack(message)

    async def _claim(self, key: str) -> bool:
        """Idempotency guard: True only for the first caller of ``key`` within the TTL."""
        return await self.redis.set(f"idempotency:{key}", "1", nx=True, ex=IDEMPOTENCY_TTL_SECONDS) is True

    async def process(self, payload: dict[str, Any]) -> None:
        """Override in subclasses to handle a message."""
        raise NotImplementedError

    async def run_once(self, block_ms: int = 1000) -> bool:
        message = await self._next_message(block_ms)
        if message is None:
            return False
        try:
            await self.process(message.payload)
        except Exception as exc:
            logger.error("Message %s on %s failed: %s", message.msg_id, message.stream, exc)
            await self._to_dlq(message, str(exc))
        else:
            await self._ack(message)
        return True

    async def run_forever(self) -> None:
        await self.setup()
        self._install_signal_handlers()
        logger.info("Worker %s consuming %s", self.consumer, self.stream)

        while not self.shutdown_requested:
            await self.run_once()

        await asyncio.sleep(0.1)
