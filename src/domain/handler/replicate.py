import logging
from functools import partial
from typing import Dict
from infra.core_types import EventHandler
from infra.errors import HandlerError, NotFoundError, StorageSyncError
from infra.events import EventType, StorageEvent
from domain.constants import ServiceConfig
from domain.types import WorkerDeps

logger = logging.getLogger(__name__)

# Every handler converges the replica to the state implied by the event, so
# a redelivered event leaves the replica unchanged.

async def replicate_upload(deps: WorkerDeps, event: StorageEvent) -> None:
    logger.info(f"Processing uploaded file: {event.path}")
    try:
        content = await deps.source.read(event.path)
    except NotFoundError:
        # Deleted again before we got here; the FileDeleted event follows
        logger.warning(f"Uploaded file {event.path} no longer exists at the source, skipping")
        return
    except StorageSyncError as e:
        raise HandlerError(f"Failed to fetch uploaded file {event.path}: {e}") from e

    if event.size is not None and event.size != len(content):
        logger.info(f"{event.path} changed since the event ({event.size} -> {len(content)} bytes), copying latest")

    try:
        await deps.replica.write(event.path, content, overwrite=True)
    except StorageSyncError as e:
        raise HandlerError(f"Failed to process uploaded file {event.path}: {e}") from e
    logger.info(f"Successfully processed uploaded file: {event.path}")

async def replicate_delete(deps: WorkerDeps, event: StorageEvent) -> None:
    logger.info(f"Processing deleted file: {event.path}")
    try:
        await deps.replica.delete(event.path)
    except NotFoundError:
        logger.info(f"{event.path} already absent from replica")
        return
    except StorageSyncError as e:
        raise HandlerError(f"Failed to process deleted file {event.path}: {e}") from e
    logger.info(f"Successfully processed deleted file: {event.path}")

async def replicate_directory_created(deps: WorkerDeps, event: StorageEvent) -> None:
    marker = f"{event.path}/{ServiceConfig.DIRECTORY_MARKER}"
    try:
        await deps.replica.write(marker, b"", overwrite=True)
    except StorageSyncError as e:
        raise HandlerError(f"Failed to create directory {event.path}: {e}") from e
    logger.info(f"Successfully created directory: {event.path}")

async def replicate_directory_deleted(deps: WorkerDeps, event: StorageEvent) -> None:
    try:
        entries = await deps.replica.list(event.path)
        for entry in entries:
            try:
                await deps.replica.delete(entry)
            except NotFoundError:
                pass
    except StorageSyncError as e:
        raise HandlerError(f"Failed to delete directory {event.path}: {e}") from e
    logger.info(f"Successfully deleted directory: {event.path} ({len(entries)} entries)")

def build_handlers(deps: WorkerDeps) -> Dict[EventType, EventHandler]:
    """Fixed dispatch table. FileAppended has no producer yet and stays unhandled."""
    return {
        EventType.FILE_UPLOADED: partial(replicate_upload, deps),
        EventType.FILE_DELETED: partial(replicate_delete, deps),
        EventType.DIRECTORY_CREATED: partial(replicate_directory_created, deps),
        EventType.DIRECTORY_DELETED: partial(replicate_directory_deleted, deps),
    }
