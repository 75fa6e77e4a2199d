import logging
from typing import Dict, List, Optional
from infra.core_types import normalize_path
from infra.errors import NotFoundError, PublishError, ValidationError
from infra.events import EventType, StorageEvent
from domain.constants import ServiceConfig
from domain.types import Deps

logger = logging.getLogger(__name__)

def _require_path(path: Optional[str]) -> str:
    normalized = normalize_path(path or "")
    if not normalized:
        raise ValidationError("Path parameter is required")
    return normalized

class StorageOrchestrator:
    """
    Applies a storage mutation, then announces it on the broker.

    The two steps are not transactional: once the storage call succeeds the
    mutation stands, and a failed publish is only logged.
    """
    def __init__(self, deps: Deps):
        self.deps = deps

    @property
    def storage(self):
        return self.deps.file_storage

    async def upload(
        self,
        path: str,
        data: bytes,
        overwrite: bool = False,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> None:
        path = _require_path(path)
        await self.storage.write(path, data, overwrite=overwrite)
        await self._publish(EventType.FILE_UPLOADED, path, size=len(data), user_id=user_id, metadata={
            'filename': filename or path.rsplit('/', 1)[-1],
            'contentType': content_type or 'application/octet-stream',
            'overwrite': str(overwrite).lower()
        })

    async def delete(self, path: str, user_id: Optional[str] = None) -> None:
        path = _require_path(path)
        await self.storage.delete(path)
        await self._publish(EventType.FILE_DELETED, path, user_id=user_id)

    async def read(self, path: str) -> bytes:
        return await self.storage.read(_require_path(path))

    async def list(self, prefix: str = ".") -> List[str]:
        return await self.storage.list(normalize_path(prefix or ""))

    async def create_directory(self, path: str, user_id: Optional[str] = None) -> None:
        path = _require_path(path)
        await self.storage.write(f"{path}/{ServiceConfig.DIRECTORY_MARKER}", b"", overwrite=False)
        await self._publish(EventType.DIRECTORY_CREATED, path, user_id=user_id)

    async def delete_directory(self, path: str, user_id: Optional[str] = None) -> None:
        path = _require_path(path)
        entries = await self.storage.list(path)
        if not entries:
            raise NotFoundError(path)
        for entry in entries:
            try:
                await self.storage.delete(entry)
            except NotFoundError:
                logger.debug(f"{entry} vanished while deleting directory {path}")
        await self._publish(EventType.DIRECTORY_DELETED, path, user_id=user_id, metadata={
            'entries': str(len(entries))
        })

    async def _publish(
        self,
        event_type: EventType,
        path: str,
        size: Optional[int] = None,
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None
    ) -> None:
        event = StorageEvent.create(event_type, path, size=size, user_id=user_id, metadata=metadata)
        try:
            await self.deps.broker.publish(self.deps.topic, event)
        except PublishError as e:
            # Storage already changed; the event stream now lags behind it
            logger.error(f"Failed to publish event {event_type.value} for {path}: {e}")
