"""
Error taxonomy for the timetable sync engine.

Data-layer mutations only raise for an unknown owner entity; missing
cross-references degrade to a primary-only write. Boundary code (pairing
codec, remote backends) converts these errors into result objects instead
of propagating them.
"""

from datetime import datetime
from typing import Dict, Any, Optional


class ErrorCode:
    """Stable error codes shared by exceptions and result objects."""
    NOT_FOUND = "NOT_FOUND"
    INVALID_TOKEN = "INVALID_TOKEN"
    IMPORT_EMPTY = "IMPORT_EMPTY"
    REPLICATION_FAILURE = "REPLICATION_FAILURE"
    NOT_PAIRED = "NOT_PAIRED"


class TimetableSyncError(Exception):
    """Base exception carrying a stable code and structured details."""

    code = "UNKNOWN"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/API responses."""
        return {
            'code': self.code,
            'message': self.message,
            'details': self.details,
            'timestamp': self.timestamp.isoformat(),
        }


class EntityNotFoundError(TimetableSyncError):
    """Unknown entity id."""

    code = ErrorCode.NOT_FOUND

    def __init__(self, entity_id: str, **kwargs):
        super().__init__(
            f"Entity not found: {entity_id}",
            details={'entity_id': entity_id},
            **kwargs
        )
        self.entity_id = entity_id


class InvalidTokenError(TimetableSyncError):
    """Pairing token could not be decoded or lacks required fields."""

    code = ErrorCode.INVALID_TOKEN


class ImportEmptyError(TimetableSyncError):
    """Extractor or reconciler produced zero profiles."""

    code = ErrorCode.IMPORT_EMPTY

    def __init__(self, message: str = "No profiles detected.", **kwargs):
        super().__init__(message, **kwargs)


class ReplicationFailure(TimetableSyncError):
    """Push or subscribe fault against the remote store."""

    code = ErrorCode.REPLICATION_FAILURE
