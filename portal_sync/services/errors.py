"""
Error taxonomy for the sync core.

Errors are returned as values inside result objects rather than raised, so every
caller can decide between "queued for later" and "hard failure".
"""

from dataclasses import dataclass
from typing import ClassVar, Optional


@dataclass
class PortalSyncError:
    """Base error carried by PortalResult / StoreResult / OperationResult"""
    message: str
    status: Optional[int] = None
    details: Optional[str] = None

    code: ClassVar[str] = "error"
    retryable: ClassVar[bool] = True

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "status": self.status,
            "details": self.details,
            "retryable": self.retryable,
        }


class NetworkError(PortalSyncError):
    """Portal unreachable or the transport failed"""
    code = "network_error"


class AuthError(PortalSyncError):
    """No Portal credential could be obtained"""
    code = "auth_error"


class PortalApplicationError(PortalSyncError):
    """Portal answered with an error (validation, not found, server error)"""
    code = "portal_error"


class LocalStoreError(PortalSyncError):
    """The local mirror write failed"""
    code = "local_store_error"


class MappingError(PortalSyncError):
    """A local row has no Portal id; retrying cannot fix it"""
    code = "mapping_error"
    retryable = False


class InputError(PortalSyncError):
    """Input rejected before any remote call"""
    code = "input_error"
    retryable = False
