"""
Portal authentication lifecycle.

Acquires a credential for an identity email, persists it, and keeps the local
user's role aligned with the role claim the Portal returns on login.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from ..config import settings
from .errors import AuthError, PortalSyncError
from .local_store import LocalStore
from .portal_client import PortalClient, PortalResult
from .portal_session import PortalCredential, PortalSessionStore, SessionContext
from .status_translator import portal_role_to_local

logger = logging.getLogger(__name__)


@dataclass
class AuthResult:
    """Outcome of ensure_auth; ``refreshed`` is True when a login round-trip happened"""
    token: Optional[str] = None
    error: Optional[PortalSyncError] = None
    refreshed: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


class AuthSessionManager:

    def __init__(
        self,
        db: Session,
        client: Optional[PortalClient] = None,
        store: Optional[LocalStore] = None,
        session_store: Optional[PortalSessionStore] = None
    ):
        self.db = db
        self.client = client or PortalClient()
        self.store = store or LocalStore(db)
        self.session_store = session_store or PortalSessionStore(db)

    def login(self, session: SessionContext, email: str) -> PortalResult:
        """
        Log in to the Portal with an identity email.

        On success the credential is stored on the session (and persisted) and
        ``data`` holds the PortalCredential. Role sync is best-effort: an
        unknown role claim never fails the login.
        """
        result = self.client.login(session, email)
        if result.error:
            logger.warning(f"Portal login failed for {email}: {result.error.message}")
            return PortalResult(error=AuthError(
                message=result.error.message,
                status=result.error.status,
                details=result.error.details
            ), status_code=result.status_code)

        body = result.data if isinstance(result.data, dict) else {}
        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        token = data.get("token")
        if not token:
            return PortalResult(error=AuthError(message="Portal login failed"), status_code=result.status_code)

        credential = PortalCredential(
            token=token,
            token_type=data.get("tokenType") or settings.portal_default_token_type
        )
        session.set_credential(credential)
        if not session.identity_email:
            session.identity_email = email
        logger.info(f"Portal session established for {email}")

        role_claim = data.get("rol")
        if role_claim:
            self.sync_role(session, email, role_claim)

        return PortalResult(data=credential, status_code=result.status_code)

    def sync_role(self, session: SessionContext, email: str, role_claim: str) -> Optional[str]:
        """Write the mapped Portal role to the local user; returns the local role or None"""
        self.session_store.set_role(role_claim)

        local_role = portal_role_to_local(role_claim)
        if not local_role:
            logger.info(f"Portal role '{role_claim}' has no local equivalent, skipping role sync")
            return None

        user_id = session.user_id
        if not user_id:
            user = self.store.get_user_by_email(email)
            user_id = user.id if user else None
        if not user_id:
            logger.info(f"No local user for {email}, skipping role sync")
            return None

        profile = self.store.update_user_profile(user_id, {"role": local_role})
        if profile.error:
            logger.warning(f"Role sync failed for user {user_id}: {profile.error.message}")
            return None
        roles = self.store.set_user_roles(user_id, [local_role])
        if roles.error:
            logger.warning(f"Role list sync failed for user {user_id}: {roles.error.message}")
            return None

        logger.info(f"User {user_id} role synced from Portal: {local_role}")
        return local_role

    def ensure_auth(self, session: SessionContext, email: Optional[str] = None) -> AuthResult:
        """Reuse the held credential, or log in with the identity email"""
        credential = session.reload()
        if credential:
            return AuthResult(token=credential.token)

        identity = email or session.identity_email
        if not identity:
            return AuthResult(error=AuthError(message="Cannot establish Portal session"))

        result = self.login(session, identity)
        if result.error:
            return AuthResult(error=result.error, refreshed=True)
        return AuthResult(token=result.data.token, refreshed=True)

    def logout(self, session: SessionContext) -> None:
        session.clear()
