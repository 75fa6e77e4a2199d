import asyncio
import logging
import signal
from typing import Optional
from logging.handlers import QueueListener
from domain.config import Settings, load_settings
from domain.constants import ServiceConfig
from domain.dependencies import WorkerDependencies, build_storage
from domain.handler.replicate import build_handlers
from infra.core_types import FileStorage
from infra.local import LocalFileStorage
from infra.log_config import configure_logging
from infra.redis import RedisBroker

logger = logging.getLogger(__name__)

class StorageWorkerMicroservice:
    """
    Complete runtime for the storage worker: consumes storage events and
    re-applies each mutation to the worker's own replica storage.
    """
    @staticmethod
    async def create(settings: Optional[Settings] = None) -> 'StorageWorkerMicroservice':
        """Factory method to create and initialize the microservice"""
        settings = settings or load_settings()
        listener = configure_logging(settings.logging.level, settings.logging.shipping_url)

        broker = RedisBroker.create(
            settings.broker.url,
            settings.broker.group,
            consumer_name=settings.broker.consumer_name,
            producer_config=settings.broker.producer,
            block_ms=settings.broker.block_ms,
            claim_idle_ms=settings.broker.claim_idle_ms
        )
        return StorageWorkerMicroservice(
            broker=broker,
            source=build_storage(settings),
            replica=LocalFileStorage(settings.replica_path),
            topic=settings.broker.topic,
            log_listener=listener
        )

    def __init__(
        self,
        broker: RedisBroker,
        source: FileStorage,
        replica: FileStorage,
        topic: str,
        log_listener: Optional[QueueListener] = None
    ):
        self.broker = broker
        self.topic = topic
        self.deps = WorkerDependencies(source=source, replica=replica)
        self.stop_event = asyncio.Event()
        self.log_listener = log_listener

    async def start(self) -> None:
        """Register handlers, consume until stop_event is set, then shut down."""
        try:
            logger.info(f"Starting {ServiceConfig.WORKER_NAME} service...")
            for event_type, handler in build_handlers(self.deps).items():
                await self.broker.register_handler(event_type, handler)
            await self.broker.start_consumers(self.stop_event, [self.topic])
            logger.info(f"Worker is now listening for events on {self.topic}")
            await self.stop_event.wait()
        except Exception as e:
            logger.error(f"Fatal error in {ServiceConfig.WORKER_NAME} service: {e}")
            raise
        finally:
            await self.broker.close()
            if self.log_listener is not None:
                self.log_listener.stop()

    def stop(self) -> None:
        self.stop_event.set()

def main():
    """Entry point for the storage worker"""
    async def run():
        service = await StorageWorkerMicroservice.create()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, service.stop)
        await service.start()

    asyncio.run(run())

if __name__ == "__main__":
    main()
