import asyncio
import logging
import socket
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence
from redis.asyncio import Redis
from redis.exceptions import RedisError, ResponseError
from infra.core_types import EventBroker, EventHandler, Placement
from infra.errors import DecodeError, PublishError
from infra.events import EventType, StorageEvent
from infra.locks import RWLock

logger = logging.getLogger(__name__)

class ConsumerState(str, Enum):
    IDLE = "idle"
    JOINING = "joining"
    CONSUMING = "consuming"
    REBALANCING = "rebalancing"
    DRAINING = "draining"
    CLOSED = "closed"

@dataclass(frozen=True)
class ProducerConfig:
    retries: int = 5
    retry_backoff: float = 0.1
    # WAIT for this many replicas after each XADD; None waits for every
    # connected replica, 0 disables it
    min_replicas: Optional[int] = None
    wait_timeout_ms: int = 1000
    # Approximate MAXLEN trimming of each stream; None keeps everything
    max_len: Optional[int] = None

class InsufficientReplicas(Exception):
    pass

def _text(value: Any) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)

def _field(fields: Optional[Dict[Any, Any]], name: str) -> Optional[Any]:
    if not fields:
        return None
    value = fields.get(name.encode())
    return value if value is not None else fields.get(name)

class RedisBroker(EventBroker):
    """
    Storage event broker on Redis Streams. Each topic is a stream, each
    entry id is the event's offset and the consumer group tracks what has
    been acknowledged.

    The producer and the consumer-group reader use separate connections so a
    blocking XREADGROUP never delays a publish.
    """
    def __init__(
        self,
        producer: Redis,
        consumer: Redis,
        group: str,
        consumer_name: Optional[str] = None,
        producer_config: Optional[ProducerConfig] = None,
        block_ms: int = 5000,
        batch_size: int = 10,
        start_id: str = '$',
        rejoin_backoff: float = 1.0,
        claim_idle_ms: int = 60000
    ):
        self.producer = producer
        self.consumer = consumer
        self.group = group
        self.consumer_name = consumer_name or f"{group}-{socket.gethostname()}"
        self.producer_config = producer_config or ProducerConfig()
        self.block_ms = block_ms
        self.batch_size = batch_size
        self.start_id = start_id
        self.rejoin_backoff = rejoin_backoff
        # Entries pending this long on any group member are taken over
        self.claim_idle_ms = claim_idle_ms
        self.state = ConsumerState.IDLE

        self._handlers: Dict[EventType, EventHandler] = {}
        self._handlers_lock = RWLock()
        self._cancel: Optional[asyncio.Event] = None
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    @classmethod
    def create(cls, url: str, group: str, **kwargs) -> 'RedisBroker':
        return cls(Redis.from_url(url), Redis.from_url(url), group, **kwargs)

    @property
    def consumer_task(self) -> Optional[asyncio.Task]:
        return self._task

    # Producer

    async def publish(self, topic: str, event: StorageEvent) -> Placement:
        if self._closed:
            raise PublishError("Broker client is closed")

        fields = {'type': event.type.value, 'value': event.to_wire()}
        attempts = self.producer_config.retries + 1
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            try:
                # A retry after a failed WAIT may append the event twice;
                # consumers only get at-least-once delivery anyway.
                entry_id = await self.producer.xadd(
                    topic,
                    fields,
                    maxlen=self.producer_config.max_len,
                    approximate=True
                )
                await self._await_replicas()
            except (RedisError, InsufficientReplicas) as e:
                last_error = e
                logger.warning(f"Publish attempt {attempt}/{attempts} to {topic} failed: {e}")
                if attempt < attempts:
                    await asyncio.sleep(self.producer_config.retry_backoff)
                continue

            placement = Placement(topic=topic, entry_id=_text(entry_id))
            logger.info(
                f"Event published [Topic: {topic}, Entry: {placement.entry_id}, "
                f"Type: {event.type.value}, Path: {event.path}]"
            )
            return placement

        raise PublishError(
            f"Failed to publish {event.type.value} event to {topic} after {attempts} attempts: {last_error}"
        ) from last_error

    async def _await_replicas(self) -> None:
        wanted = self.producer_config.min_replicas
        if wanted is None:
            info = await self.producer.info('replication')
            wanted = int(info.get('connected_slaves', 0))
        if wanted <= 0:
            return
        acked = await self.producer.wait(wanted, self.producer_config.wait_timeout_ms)
        if acked < wanted:
            raise InsufficientReplicas(f"only {acked} of {wanted} replicas acknowledged the write")

    # Handler registry

    async def register_handler(self, event_type: EventType, handler: EventHandler) -> None:
        event_type = EventType(event_type)
        async with self._handlers_lock.writer():
            self._handlers[event_type] = handler
        logger.info(f"Registered handler for event type: {event_type.value}")

    async def unregister_handler(self, event_type: EventType) -> bool:
        async with self._handlers_lock.writer():
            removed = self._handlers.pop(EventType(event_type), None)
        return removed is not None

    async def _lookup(self, event_type: EventType) -> Optional[EventHandler]:
        async with self._handlers_lock.reader():
            return self._handlers.get(event_type)

    # Consumer

    def _cancelled(self) -> bool:
        return self._stop.is_set() or (self._cancel is not None and self._cancel.is_set())

    async def start_consumers(self, cancel: asyncio.Event, topics: Sequence[str]) -> asyncio.Task:
        """
        Join the consumer group on every topic, then consume in one background
        task until `cancel` is set or the client is closed.

        Groups are created before this returns, so anything published
        afterwards reaches the group even with start_id '$'.
        """
        if self._closed:
            raise RuntimeError("Broker client is closed")
        if self._task is not None and not self._task.done():
            raise RuntimeError("Consumers are already running")

        topics = list(dict.fromkeys(topics))
        if not topics:
            raise ValueError("At least one topic is required")

        self._cancel = cancel
        joined = True
        try:
            await self._join(topics)
        except RedisError as e:
            logger.error(f"Failed to join group {self.group}, will retry: {e}")
            joined = False

        self._task = asyncio.create_task(
            self._supervise(topics, joined),
            name=f"{self.group}-consumer"
        )
        return self._task

    async def _join(self, topics: List[str]) -> None:
        self.state = ConsumerState.JOINING
        for topic in topics:
            try:
                await self.consumer.xgroup_create(topic, self.group, id=self.start_id, mkstream=True)
                logger.info(f"Created consumer group {self.group} on {topic}")
            except ResponseError as e:
                if 'BUSYGROUP' not in str(e):
                    raise

    async def _supervise(self, topics: List[str], joined: bool) -> None:
        logger.info(f"Consumer {self.consumer_name} listening on {', '.join(topics)}")
        try:
            while not self._cancelled():
                try:
                    if not joined:
                        await self._join(topics)
                        joined = True
                    self.state = ConsumerState.CONSUMING
                    await self._consume_session(topics)
                except RedisError as e:
                    logger.error(f"Error during stream consumption: {e}")
                    joined = False
                    self.state = ConsumerState.REBALANCING
                    await self._pause(self.rejoin_backoff)
        finally:
            self.state = ConsumerState.DRAINING
            logger.info(f"Consumer {self.consumer_name} stopped")
            # Stopped by the cancel token; start_consumers may run again
            if not self._closed:
                self.state = ConsumerState.IDLE

    async def _pause(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _consume_session(self, topics: List[str]) -> None:
        # Start from '0' to get back entries this consumer read but never acked
        # (crash between receipt and ack), then switch to new entries.
        cursors = {topic: '0' for topic in topics}
        loop = asyncio.get_running_loop()
        next_claim = 0.0

        while not self._cancelled():
            if loop.time() >= next_claim:
                await self._claim_stale(topics)
                next_claim = loop.time() + self.claim_idle_ms / 1000
                if self._cancelled():
                    return

            replaying = any(cursor != '>' for cursor in cursors.values())
            response = await self.consumer.xreadgroup(
                groupname=self.group,
                consumername=self.consumer_name,
                streams=dict(cursors),
                count=self.batch_size,
                block=None if replaying else self.block_ms
            )

            delivered = {}
            items = response.items() if isinstance(response, dict) else (response or [])
            for stream, entries in items:
                delivered[_text(stream)] = entries or []

            if replaying:
                for topic, cursor in cursors.items():
                    if cursor != '>' and not delivered.get(topic):
                        cursors[topic] = '>'

            for topic, entries in delivered.items():
                for entry_id, fields in entries:
                    if self._cancelled():
                        return
                    entry_id = _text(entry_id)
                    await self._dispatch(topic, entry_id, fields)
                    await self.consumer.xack(topic, self.group, entry_id)
                    if cursors.get(topic, '>') != '>':
                        cursors[topic] = entry_id

    async def _claim_stale(self, topics: List[str]) -> None:
        """
        Take over entries another member received but never acked, e.g. a
        worker that crashed and came back under a different name.
        """
        for topic in topics:
            start = '0-0'
            while True:
                response = await self.consumer.xautoclaim(
                    topic,
                    self.group,
                    self.consumer_name,
                    min_idle_time=self.claim_idle_ms,
                    start_id=start,
                    count=self.batch_size
                )
                start = _text(response[0])
                for entry_id, fields in response[1]:
                    # Trimmed from the stream while pending
                    if entry_id is None:
                        continue
                    if self._cancelled():
                        return
                    entry_id = _text(entry_id)
                    logger.info(f"Claimed stale entry {entry_id} on {topic}")
                    await self._dispatch(topic, entry_id, fields)
                    await self.consumer.xack(topic, self.group, entry_id)
                if start == '0-0':
                    break

    async def _dispatch(self, topic: str, entry_id: str, fields: Optional[Dict[Any, Any]]) -> None:
        """Decode one entry and run its handler. Every outcome ends with the entry acked."""
        try:
            raw = _field(fields, 'value')
            if raw is None:
                raise DecodeError("Stream entry has no value field")
            event = StorageEvent.from_wire(raw)
        except DecodeError as e:
            logger.error(f"Failed to parse message {entry_id} on {topic}: {e}")
            return

        logger.info(f"Received event {event.type.value} for {event.path} [Topic: {topic}, Entry: {entry_id}]")

        handler = await self._lookup(event.type)
        if handler is None:
            logger.warning(f"No handler registered for event type: {event.type.value}")
            return

        try:
            await handler(event)
        except Exception:
            logger.exception(f"Handler for {event.type.value} failed on {event.path} [Entry: {entry_id}]")

    async def close(self) -> None:
        """Stop consuming, wait for the loop to exit, then release both connections."""
        if self._closed:
            return
        self._closed = True
        self._stop.set()

        if self._task is not None:
            try:
                await self._task
            except Exception:
                logger.exception("Consumer loop exited with an error")

        await self.producer.aclose()
        await self.consumer.aclose()
        self.state = ConsumerState.CLOSED
        logger.info("Broker client closed")
