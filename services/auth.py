"""
Identity boundary. The core only ever consumes (user_id, email?) from here.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from services.errors import Unauthenticated

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthIdentity:
    user_id: str
    email: Optional[str] = None
    photo_url: Optional[str] = None


class AuthProvider:
    """Issues identities and owns the account lifecycle outside our collections."""

    def authenticate(self, user_id: Optional[str], email: Optional[str] = None,
                     allow_pending_deletion: bool = False) -> AuthIdentity:
        raise NotImplementedError

    def delete_user(self, user_id: str):
        """Must be idempotent: deleting an unknown or already deleted user succeeds."""
        raise NotImplementedError

    def finish_deletion(self, user_id: str):
        """Called once the account's data is gone. Providers with nothing to close can ignore it."""


class TrustedHeaderAuth(AuthProvider):
    """
    Accepts the identity asserted by an upstream gateway (X-User-Id / X-User-Email).
    Deleted accounts are revoked for the life of the process. Until the deletion
    finishes, the id may still be used to retry it.
    """

    def __init__(self):
        self._revoked = set()
        self._pending = set()

    def authenticate(self, user_id: Optional[str], email: Optional[str] = None,
                     allow_pending_deletion: bool = False) -> AuthIdentity:
        user_id = (user_id or "").strip()
        if not user_id:
            raise Unauthenticated("Not authenticated")
        if user_id in self._revoked and not (allow_pending_deletion and user_id in self._pending):
            raise Unauthenticated("Account has been deleted")
        return AuthIdentity(user_id=user_id, email=email or None)

    def delete_user(self, user_id: str):
        if user_id not in self._revoked:
            self._pending.add(user_id)
        self._revoked.add(user_id)
        logger.info("Revoked auth for %s", user_id)

    def finish_deletion(self, user_id: str):
        self._pending.discard(user_id)
