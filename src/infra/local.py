import os
import asyncio
import logging
import tempfile
from functools import partial
from pathlib import Path
from typing import List, Union
from infra.core_types import FileStorage, normalize_path
from infra.errors import AlreadyExistsError, NotFoundError, StorageBackendError, ValidationError

logger = logging.getLogger(__name__)

class LocalFileStorage(FileStorage):
    """Filesystem storage rooted at base_path. Concurrent writers to one path are not coordinated."""

    def __init__(self, base_path: Union[str, Path]):
        self.base_path = Path(base_path).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        relative = normalize_path(path)
        if not relative:
            raise ValidationError("Path parameter is required")
        full_path = (self.base_path / relative).resolve()
        if self.base_path not in full_path.parents:
            raise ValidationError(f"Path escapes storage root: {path}")
        return full_path

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args))

    def _write_sync(self, full_path: Path, data: bytes, overwrite: bool) -> None:
        if not overwrite and full_path.exists():
            raise AlreadyExistsError(str(full_path.relative_to(self.base_path)))
        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            # Stage next to the target so os.replace stays on one filesystem
            fd, tmp_name = tempfile.mkstemp(dir=full_path.parent, prefix=".tmp-")
            try:
                with os.fdopen(fd, 'wb') as f:
                    f.write(data)
                os.chmod(tmp_name, 0o644)
                os.replace(tmp_name, full_path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise StorageBackendError(f"Failed to save file: {e}") from e

    def _read_sync(self, full_path: Path) -> bytes:
        if not full_path.is_file():
            raise NotFoundError(str(full_path.relative_to(self.base_path)))
        try:
            return full_path.read_bytes()
        except OSError as e:
            raise StorageBackendError(f"Failed to read file: {e}") from e

    def _delete_sync(self, full_path: Path) -> None:
        if not full_path.is_file():
            raise NotFoundError(str(full_path.relative_to(self.base_path)))
        try:
            full_path.unlink()
        except FileNotFoundError:
            raise NotFoundError(str(full_path.relative_to(self.base_path))) from None
        except OSError as e:
            raise StorageBackendError(f"Failed to delete file: {e}") from e
        self._prune_empty_dirs(full_path.parent)

    def _prune_empty_dirs(self, directory: Path) -> None:
        while directory != self.base_path:
            try:
                directory.rmdir()
            except OSError:
                return
            directory = directory.parent

    def _list_sync(self, prefix: str) -> List[str]:
        relative = normalize_path(prefix)
        root = (self.base_path / relative).resolve()
        if root != self.base_path and self.base_path not in root.parents:
            raise ValidationError(f"Path escapes storage root: {prefix}")
        if root.is_file():
            return [relative]
        if not root.is_dir():
            return []
        files = []
        try:
            for dirpath, _, filenames in os.walk(root):
                for name in filenames:
                    if name.startswith(".tmp-"):
                        continue
                    full_path = Path(dirpath) / name
                    files.append(full_path.relative_to(self.base_path).as_posix())
        except OSError as e:
            raise StorageBackendError(f"Failed to list files: {e}") from e
        return files

    async def write(self, path: str, data: bytes, overwrite: bool = False) -> None:
        full_path = self._resolve(path)
        await self._run(self._write_sync, full_path, data, overwrite)
        logger.debug(f"Wrote {len(data)} bytes to {full_path}")

    async def upload(self, path: str, data: bytes) -> None:
        await self.write(path, data, overwrite=False)

    async def read(self, path: str) -> bytes:
        return await self._run(self._read_sync, self._resolve(path))

    async def delete(self, path: str) -> None:
        await self._run(self._delete_sync, self._resolve(path))

    async def list(self, prefix: str = "") -> List[str]:
        return await self._run(self._list_sync, prefix)
