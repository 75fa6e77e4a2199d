from dataclasses import dataclass

@dataclass(frozen=True)
class ServiceConfig:
    API_NAME: str = "storage-api"
    WORKER_NAME: str = "storage-worker"
    EVENTS_TOPIC: str = "storage-events"
    CONSUMER_GROUP: str = "storage-workers"
    DIRECTORY_MARKER: str = ".keep"
