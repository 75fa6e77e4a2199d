class StorageSyncError(Exception):
    """Base class for every error raised by the storage sync pipeline"""

class ValidationError(StorageSyncError):
    """A required argument is missing or malformed"""

class NotFoundError(StorageSyncError):
    def __init__(self, path: str):
        super().__init__(f"File not found: {path}")
        self.path = path

class AlreadyExistsError(StorageSyncError):
    def __init__(self, path: str):
        super().__init__(f"File already exists and overwrite is disabled: {path}")
        self.path = path

class StorageBackendError(StorageSyncError):
    """I/O failure against the local disk or the object store"""

class PublishError(StorageSyncError):
    """The broker could not accept an event after all retries"""

class DecodeError(StorageSyncError):
    """A broker message does not hold a valid storage event"""

class HandlerError(StorageSyncError):
    """A registered event handler failed"""
