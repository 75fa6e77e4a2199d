from typing import Protocol
from infra.core_types import EventBroker, FileStorage

class Deps(Protocol):
    file_storage: FileStorage
    broker: EventBroker
    topic: str

class WorkerDeps(Protocol):
    source: FileStorage
    replica: FileStorage
