import json
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Union
from infra.errors import DecodeError

class EventType(str, Enum):
    FILE_UPLOADED = "FileUploaded"
    FILE_DELETED = "FileDeleted"
    FILE_APPENDED = "FileAppended"
    DIRECTORY_CREATED = "DirectoryCreated"
    DIRECTORY_DELETED = "DirectoryDeleted"

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)

_FRACTION = re.compile(r'\.(\d+)')

def _parse_timestamp(value: str) -> datetime:
    """RFC 3339 as well as isoformat() output: trailing Z, any number of fraction digits"""
    if value[-1:] in ('Z', 'z'):
        value = value[:-1] + '+00:00'
    value = _FRACTION.sub(lambda m: '.' + m.group(1)[:6].ljust(6, '0'), value, count=1)
    return datetime.fromisoformat(value)

@dataclass(frozen=True)
class StorageEvent:
    type: EventType
    path: str
    id: str = ""
    size: Optional[int] = None
    timestamp: datetime = field(default_factory=_utcnow)
    user_id: Optional[str] = None
    metadata: Optional[Mapping[str, str]] = None

    def __post_init__(self):
        if self.size is not None and self.size < 0:
            raise ValueError(f"Event size must be non-negative, got {self.size}")
        if self.metadata is not None:
            object.__setattr__(self, 'metadata', MappingProxyType(dict(self.metadata)))

    @classmethod
    def create(
        cls,
        event_type: EventType,
        path: str,
        size: Optional[int] = None,
        user_id: Optional[str] = None,
        metadata: Optional[Mapping[str, str]] = None
    ) -> 'StorageEvent':
        """Build a new event with a producer-assigned id and the current time"""
        return cls(
            id=uuid.uuid4().hex,
            type=event_type,
            path=path,
            size=size,
            user_id=user_id,
            metadata=metadata
        )

    def to_wire(self) -> bytes:
        payload: Dict[str, Any] = {
            'id': self.id,
            'type': self.type.value,
            'path': self.path,
            'timestamp': self.timestamp.isoformat()
        }
        if self.size is not None:
            payload['size'] = self.size
        if self.user_id is not None:
            payload['userId'] = self.user_id
        if self.metadata is not None:
            payload['metadata'] = dict(self.metadata)
        return json.dumps(payload, ensure_ascii=False).encode()

    @classmethod
    def from_wire(cls, raw: Union[bytes, str]) -> 'StorageEvent':
        """
        Parse a broker message value. A missing metadata mapping comes back
        as an empty dict so handlers never see None.
        """
        try:
            payload = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DecodeError(f"Malformed event payload: {e}") from e

        if not isinstance(payload, dict):
            raise DecodeError("Event payload must be a JSON object")

        try:
            event_type = EventType(payload['type'])
        except KeyError:
            raise DecodeError("Event payload has no type") from None
        except ValueError:
            raise DecodeError(f"Unknown event type: {payload['type']!r}") from None

        path = payload.get('path')
        if not isinstance(path, str):
            raise DecodeError("Event payload has no path")

        timestamp = payload.get('timestamp')
        try:
            timestamp = _parse_timestamp(timestamp) if timestamp else _utcnow()
        except (TypeError, ValueError) as e:
            raise DecodeError(f"Invalid event timestamp: {timestamp!r}") from e

        metadata = payload.get('metadata') or {}
        if not isinstance(metadata, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in metadata.items()
        ):
            raise DecodeError("Event metadata must map strings to strings")

        size = payload.get('size')
        if size is not None and (not isinstance(size, int) or isinstance(size, bool)):
            raise DecodeError(f"Invalid event size: {size!r}")

        user_id = payload.get('userId')
        if user_id is not None and not isinstance(user_id, str):
            raise DecodeError(f"Invalid event user id: {user_id!r}")

        try:
            return cls(
                id=str(payload.get('id') or ""),
                type=event_type,
                path=path,
                size=size,
                timestamp=timestamp,
                user_id=user_id,
                metadata=metadata
            )
        except ValueError as e:
            raise DecodeError(str(e)) from e
