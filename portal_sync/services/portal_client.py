"""
Portal API Client

Thin wrapper around the Portal REST API that handles:
- URL composition from the configured base, dropping empty query parameters
- Authorization header from the caller's SessionContext
- JSON bodies and tolerant JSON parsing
- Normalizing the Portal's heterogeneous error shapes into one taxonomy

Login is never attempted implicitly here; callers run
AuthSessionManager.ensure_auth first.
"""

import time
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urljoin

import httpx

from ..config import settings
from ..utils.logging_config import get_logger, redact
from .errors import NetworkError, PortalApplicationError, PortalSyncError
from .portal_session import SessionContext

logger = logging.getLogger(__name__)
structured_logger = get_logger(__name__)

LOGIN_PATH = "auth/login"


@dataclass
class PortalResult:
    """Uniform (data, error) result of a Portal call"""
    data: Any = None
    error: Optional[PortalSyncError] = None
    status_code: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def normalize_portal_error(payload: Any, status_code: Optional[int]) -> PortalApplicationError:
    """Map the different error bodies the Portal returns to one error type"""
    body = payload if isinstance(payload, dict) else {}

    nested = body.get("error")
    if isinstance(nested, dict) and nested.get("message"):
        return PortalApplicationError(
            message=str(nested["message"]),
            status=nested.get("code") or status_code,
            details=nested.get("description"),
        )

    if body.get("message"):
        return PortalApplicationError(message=str(body["message"]), status=status_code)

    if status_code == 404:
        return PortalApplicationError(message="No record found", status=404)

    return PortalApplicationError(message="Unexpected portal API error", status=status_code)


class PortalClient:
    """
    Client for Portal API operations.

    ``transport`` lets tests plug in an ``httpx.MockTransport``.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
        request_id: Optional[str] = None
    ):
        base = base_url or settings.portal_api_base_url
        self.base_url = base if base.endswith("/") else f"{base}/"
        self.timeout = timeout or settings.portal_timeout_seconds
        self.transport = transport
        self.request_id = request_id or "no-request-id"

    def build_url(self, path: str) -> str:
        return urljoin(self.base_url, path.lstrip("/"))

    @staticmethod
    def _clean_params(params: Optional[Dict[str, Any]]) -> Dict[str, str]:
        if not params:
            return {}
        return {k: str(v) for k, v in params.items() if v is not None and v != ""}

    def _get_headers(
        self,
        session: Optional[SessionContext],
        has_body: bool,
        extra: Optional[Dict[str, str]] = None
    ) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if extra:
            headers.update(extra)
        if has_body:
            headers["Content-Type"] = "application/json"
        credential = session.credential if session else None
        if credential:
            headers["Authorization"] = credential.authorization
        return headers

    def request(
        self,
        session: Optional[SessionContext],
        path: str,
        method: str = "GET",
        body: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None
    ) -> PortalResult:
        """Make an HTTP request to the Portal and return a PortalResult"""
        url = self.build_url(path)
        request_headers = self._get_headers(session, body is not None, headers)
        start_time = time.time()

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.request(
                    method.upper(),
                    url,
                    headers=request_headers,
                    json=body,
                    params=self._clean_params(params),
                )
        except httpx.HTTPError as e:
            logger.warning(f"[{self.request_id}] Portal {method} {path} failed: {e}")
            return PortalResult(error=NetworkError(message=str(e) or "Network error"))

        duration_ms = int((time.time() - start_time) * 1000)
        structured_logger.portal_request(method.upper(), path, response.status_code, duration_ms)

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        is_error_body = isinstance(payload, dict) and payload.get("status") == "error"
        if not response.is_success or is_error_body:
            error = normalize_portal_error(payload, response.status_code)
            logger.warning(
                f"[{self.request_id}] Portal {method} {path} -> {response.status_code}: {error.message}"
            )
            logger.debug(f"[{self.request_id}] Request body: {redact(body)}")
            return PortalResult(error=error, status_code=response.status_code)

        return PortalResult(data=payload, status_code=response.status_code)

    # ==================
    # Auth
    # ==================

    def login(self, session: Optional[SessionContext], email: str) -> PortalResult:
        return self.request(session, LOGIN_PATH, method="POST", body={"correo": email})

    def create_auth_user(self, session: SessionContext, payload: Dict[str, Any]) -> PortalResult:
        return self.request(session, "auth/usuarios", method="POST", body=payload)

    # ==================
    # Catalog
    # ==================

    def get_properties(self, session: SessionContext, page: Optional[int] = None, limit: Optional[int] = None) -> PortalResult:
        return self.request(session, "propiedades", params={"page": page, "limit": limit})

    def get_units(self, session: SessionContext, property_id, page: Optional[int] = None, limit: Optional[int] = None) -> PortalResult:
        return self.request(session, f"unidades/{property_id}", params={"page": page, "limit": limit})

    def get_amenities(self, session: SessionContext, property_id, page: Optional[int] = None, limit: Optional[int] = None) -> PortalResult:
        return self.request(session, f"amenity/{property_id}", params={"page": page, "limit": limit})

    def get_amenity_info(self, session: SessionContext, amenity_id) -> PortalResult:
        return self.request(session, f"reservas/amenities/{amenity_id}/info")

    def get_amenity_availability(
        self,
        session: SessionContext,
        amenity_id,
        fecha: str,
        slot_min: Optional[str] = None,
        start: Optional[str] = None
    ) -> PortalResult:
        return self.request(
            session,
            f"reservas/amenities/{amenity_id}/availability",
            params={"fecha": fecha, "slot_min": slot_min, "start": start},
        )

    # ==================
    # Reservations
    # ==================

    def create_reservation(self, session: SessionContext, payload: Dict[str, Any]) -> PortalResult:
        return self.request(session, "reservas", method="POST", body=payload)

    def get_approvals_reservations(self, session: SessionContext, page: Optional[int] = None, limit: Optional[int] = None) -> PortalResult:
        return self.request(
            session,
            settings.portal_approvals_reservations_path,
            params={"page": page, "limit": limit},
        )

    def approve_reservation(self, session: SessionContext, reservation_id) -> PortalResult:
        path = f"{settings.portal_approvals_reservations_path.rstrip('/')}/{reservation_id}"
        return self.request(session, path, method="PUT")

    # ==================
    # Incidents
    # ==================

    def create_incident(self, session: SessionContext, payload: Dict[str, Any]) -> PortalResult:
        return self.request(session, "incidencias", method="POST", body=payload)

    def update_incident(self, session: SessionContext, incident_id, payload: Dict[str, Any]) -> PortalResult:
        return self.request(session, f"incidencias/{incident_id}", method="PUT", body=payload)

    def get_dashboard_incidents(
        self,
        session: SessionContext,
        estado: Optional[str] = None,
        titulo: Optional[str] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None
    ) -> PortalResult:
        return self.request(
            session,
            settings.portal_dashboard_incidents_path,
            params={"estado": estado, "titulo": titulo, "page": page, "limit": limit},
        )
