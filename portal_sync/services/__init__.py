# Services package
from .errors import (
    PortalSyncError, NetworkError, AuthError, PortalApplicationError,
    LocalStoreError, MappingError, InputError
)
from .status_translator import (
    portal_status_to_local, reservation_status_to_local, portal_role_to_local
)
from .portal_session import PortalCredential, PortalSessionStore, SessionContext
from .portal_client import PortalClient, PortalResult, normalize_portal_error
from .portal_auth import AuthSessionManager, AuthResult
from .local_store import LocalStore, StoreResult, IdMappingResolver
from .sync_queue import SyncJob, SyncJobType, SyncQueueStore, parse_job
from .dual_write import (
    DualWriteOrchestrator, OperationResult, ReservationRequest, IncidentRequest
)
from .queue_drainer import QueueDrainer, DrainResult
from .catalog_sync import CatalogSyncService, CatalogSyncResult

__all__ = [
    "PortalSyncError", "NetworkError", "AuthError", "PortalApplicationError",
    "LocalStoreError", "MappingError", "InputError",
    "portal_status_to_local", "reservation_status_to_local", "portal_role_to_local",
    "PortalCredential", "PortalSessionStore", "SessionContext",
    "PortalClient", "PortalResult", "normalize_portal_error",
    "AuthSessionManager", "AuthResult",
    "LocalStore", "StoreResult", "IdMappingResolver",
    "SyncJob", "SyncJobType", "SyncQueueStore", "parse_job",
    "DualWriteOrchestrator", "OperationResult", "ReservationRequest", "IncidentRequest",
    "QueueDrainer", "DrainResult",
    "CatalogSyncService", "CatalogSyncResult"
]
