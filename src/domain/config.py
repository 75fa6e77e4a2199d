import os
import socket
from dataclasses import dataclass, field
from typing import Optional
from dotenv import load_dotenv
from domain.constants import ServiceConfig
from infra.redis import ProducerConfig

@dataclass(frozen=True)
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080

@dataclass(frozen=True)
class ObjectStoreConfig:
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    bucket: str = "storage"
    endpoint_url: Optional[str] = None
    region: str = "us-east-1"

    @property
    def enabled(self) -> bool:
        """Without credentials the services fall back to local storage"""
        return bool(self.access_key and self.secret_key)

@dataclass(frozen=True)
class BrokerConfig:
    url: str = "redis://localhost:6379/0"
    group: str = ServiceConfig.CONSUMER_GROUP
    consumer_name: Optional[str] = None
    # One key for both sides, so producer and consumer cannot drift apart
    topic: str = ServiceConfig.EVENTS_TOPIC
    block_ms: int = 5000
    claim_idle_ms: int = 60000
    producer: ProducerConfig = field(default_factory=ProducerConfig)

@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    shipping_url: Optional[str] = None

@dataclass(frozen=True)
class Settings:
    server: ServerConfig = field(default_factory=ServerConfig)
    object_store: ObjectStoreConfig = field(default_factory=ObjectStoreConfig)
    broker: BrokerConfig = field(default_factory=BrokerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    local_base_path: str = "./local_data"
    replica_path: str = "./replica_data"

def _optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    return int(value) if value else None

def load_settings(env_file: Optional[str] = None) -> Settings:
    """Read the environment (and .env) once; the result is passed to every component."""
    load_dotenv(env_file)

    return Settings(
        server=ServerConfig(
            host=os.getenv('SERVER_HOST', '0.0.0.0'),
            port=int(os.getenv('SERVER_PORT', 8080))
        ),
        object_store=ObjectStoreConfig(
            access_key=os.getenv('S3_ACCESS_KEY') or None,
            secret_key=os.getenv('S3_SECRET_KEY') or None,
            bucket=os.getenv('S3_BUCKET', 'storage'),
            endpoint_url=os.getenv('S3_ENDPOINT_URL') or None,
            region=os.getenv('S3_REGION', 'us-east-1')
        ),
        broker=BrokerConfig(
            url=os.getenv('REDIS_URL', 'redis://localhost:6379/0'),
            group=os.getenv('CONSUMER_GROUP', ServiceConfig.CONSUMER_GROUP),
            consumer_name=os.getenv('CONSUMER_NAME') or f"{ServiceConfig.WORKER_NAME}-{socket.gethostname()}",
            topic=os.getenv('STORAGE_EVENTS_TOPIC', ServiceConfig.EVENTS_TOPIC),
            block_ms=int(os.getenv('CONSUMER_BLOCK_MS', 5000)),
            claim_idle_ms=int(os.getenv('CONSUMER_CLAIM_IDLE_MS', 60000)),
            producer=ProducerConfig(
                retries=int(os.getenv('PRODUCER_RETRIES', 5)),
                retry_backoff=float(os.getenv('PRODUCER_RETRY_BACKOFF', 0.1)),
                min_replicas=_optional_int('PRODUCER_MIN_REPLICAS'),
                wait_timeout_ms=int(os.getenv('PRODUCER_WAIT_TIMEOUT_MS', 1000)),
                max_len=_optional_int('PRODUCER_MAX_LEN')
            )
        ),
        logging=LoggingConfig(
            level=os.getenv('LOG_LEVEL', 'INFO'),
            shipping_url=os.getenv('LOG_SHIPPING_URL') or None
        ),
        local_base_path=os.getenv('LOCAL_STORAGE_PATH', './local_data'),
        replica_path=os.getenv('REPLICA_STORAGE_PATH', './replica_data')
    )
