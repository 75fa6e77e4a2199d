import logging
from infra.core_types import FileStorage, EventBroker
from infra.local import LocalFileStorage
from infra.s3 import S3FileStorage
from domain.config import Settings

logger = logging.getLogger(__name__)

class Dependencies:
    def __init__(
        self,
        file_storage: FileStorage,
        broker: EventBroker,
        topic: str
    ):
        self.file_storage = file_storage
        self.broker = broker
        self.topic = topic

class WorkerDependencies:
    def __init__(
        self,
        source: FileStorage,
        replica: FileStorage
    ):
        self.source = source
        self.replica = replica

def build_storage(settings: Settings) -> FileStorage:
    """Pick the storage backend once, from the credentials that are present"""
    store = settings.object_store
    if store.enabled:
        logger.info(f"Using object storage bucket {store.bucket}")
        return S3FileStorage.create(
            bucket=store.bucket,
            access_key=store.access_key,
            secret_key=store.secret_key,
            endpoint_url=store.endpoint_url,
            region=store.region
        )
    logger.info(f"Object store credentials missing, using local storage at {settings.local_base_path}")
    return LocalFileStorage(settings.local_base_path)
