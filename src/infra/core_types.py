from dataclasses import dataclass
from typing import Protocol, List, Awaitable
from typing_extensions import Callable
from infra.events import EventType, StorageEvent

EventHandler = Callable[[StorageEvent], Awaitable[None]]

@dataclass(frozen=True)
class Placement:
    """Where the broker stored a published event"""
    topic: str
    entry_id: str

class FileStorage(Protocol):
    async def write(self, path: str, data: bytes, overwrite: bool = False) -> None: ...
    async def read(self, path: str) -> bytes: ...
    async def delete(self, path: str) -> None: ...
    async def list(self, prefix: str = "") -> List[str]: ...
    async def upload(self, path: str, data: bytes) -> None: ...

class EventBroker(Protocol):
    async def publish(self, topic: str, event: StorageEvent) -> Placement: ...
    async def register_handler(self, event_type: EventType, handler: EventHandler) -> None: ...
    async def close(self) -> None: ...

def normalize_path(path: str) -> str:
    """Strip leading/trailing slashes and "./" so every backend keys entries alike"""
    path = path.replace("\\", "/").strip("/")
    while path.startswith("./"):
        path = path[2:]
    return "" if path == "." else path

def under_prefix(path: str, prefix: str) -> bool:
    """True when path is the prefix itself or lies below it"""
    prefix = normalize_path(prefix)
    if not prefix:
        return True
    return path == prefix or path.startswith(prefix + "/")
