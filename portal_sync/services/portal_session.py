"""
Portal credential handling.

PortalSessionStore persists the bearer credential in the local_state table so it
survives restarts. SessionContext is the object threaded through the client and
the auth manager: it holds the credential for one identity and writes changes
through to the store.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..utils.db_helpers import read_state, write_state, delete_state

logger = logging.getLogger(__name__)

TOKEN_KEY = "portalToken"
TOKEN_TYPE_KEY = "portalTokenType"
ROLE_KEY = "portalRole"


@dataclass(frozen=True)
class PortalCredential:
    token: str
    token_type: str = "Bearer"

    @property
    def authorization(self) -> str:
        return f"{self.token_type} {self.token}"


class PortalSessionStore:
    """Durable get/set/clear for the current Portal credential"""

    def __init__(self, db: Session):
        self.db = db

    def get(self) -> Optional[PortalCredential]:
        token = read_state(self.db, TOKEN_KEY)
        if not token:
            return None
        token_type = read_state(self.db, TOKEN_TYPE_KEY) or settings.portal_default_token_type
        return PortalCredential(token=token, token_type=token_type)

    def set(self, credential: PortalCredential) -> None:
        write_state(self.db, TOKEN_KEY, credential.token, commit=False)
        write_state(self.db, TOKEN_TYPE_KEY, credential.token_type, commit=False)
        self.db.commit()

    def clear(self) -> None:
        delete_state(self.db, TOKEN_KEY, commit=False)
        delete_state(self.db, TOKEN_TYPE_KEY, commit=False)
        self.db.commit()

    def get_role(self) -> Optional[str]:
        return read_state(self.db, ROLE_KEY)

    def set_role(self, role: str) -> None:
        write_state(self.db, ROLE_KEY, role)


class SessionContext:
    """
    Credential and identity for one Portal caller.

    ``identity_email`` is what ensure_auth logs in with when no credential is
    held; ``user_id`` is the local user whose role is synced on login.
    """

    def __init__(
        self,
        store: Optional[PortalSessionStore] = None,
        identity_email: Optional[str] = None,
        user_id: Optional[str] = None,
        credential: Optional[PortalCredential] = None
    ):
        self.store = store
        self.identity_email = identity_email
        self.user_id = user_id
        self._credential = credential

    @classmethod
    def from_store(
        cls,
        store: PortalSessionStore,
        identity_email: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> "SessionContext":
        return cls(store=store, identity_email=identity_email, user_id=user_id, credential=store.get())

    @property
    def credential(self) -> Optional[PortalCredential]:
        return self._credential

    @property
    def is_authenticated(self) -> bool:
        return self._credential is not None

    def reload(self) -> Optional[PortalCredential]:
        """Pick up a credential persisted by another process or request"""
        if self._credential is None and self.store is not None:
            self._credential = self.store.get()
        return self._credential

    def set_credential(self, credential: PortalCredential) -> None:
        self._credential = credential
        if self.store is not None:
            self.store.set(credential)

    def clear(self) -> None:
        self._credential = None
        if self.store is not None:
            self.store.clear()
        logger.info("Portal session cleared")
