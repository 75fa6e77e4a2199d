from typing import Dict, List
from infra.core_types import FileStorage, normalize_path, under_prefix
from infra.errors import AlreadyExistsError, NotFoundError, ValidationError
from infra.locks import RWLock

class InMemoryFileStorage(FileStorage):
    """Dict-backed storage for tests. One reader/writer lock guards the whole keyspace."""

    def __init__(self):
        self._data: Dict[str, bytes] = {}
        self._lock = RWLock()

    @staticmethod
    def _key(path: str) -> str:
        key = normalize_path(path)
        if not key:
            raise ValidationError("Path parameter is required")
        return key

    async def write(self, path: str, data: bytes, overwrite: bool = False) -> None:
        key = self._key(path)
        async with self._lock.writer():
            if not overwrite and key in self._data:
                raise AlreadyExistsError(key)
            self._data[key] = bytes(data)

    async def upload(self, path: str, data: bytes) -> None:
        await self.write(path, data, overwrite=False)

    async def read(self, path: str) -> bytes:
        key = self._key(path)
        async with self._lock.reader():
            try:
                return self._data[key]
            except KeyError:
                raise NotFoundError(key) from None

    async def delete(self, path: str) -> None:
        key = self._key(path)
        async with self._lock.writer():
            if self._data.pop(key, None) is None:
                raise NotFoundError(key)

    async def list(self, prefix: str = "") -> List[str]:
        async with self._lock.reader():
            return [key for key in self._data if under_prefix(key, prefix)]
