"""
Local session state capability.

The orchestration layer only talks to the SessionStore protocol; where the
state actually lives (browser storage, a desktop profile file, memory) is up
to the caller. InMemorySessionStore is the default process-local version.
"""

from typing import Dict, Optional, Protocol

from .models import Entitlement, SessionUser


class SessionStore(Protocol):
    """Cached caller state consulted before hitting the profile store."""

    def get_current_user(self) -> Optional[SessionUser]: ...

    def get_cached_token(self) -> Optional[str]: ...

    def set_cached_token(self, token: str) -> None: ...

    def get_selected_endpoint(self) -> Optional[str]: ...

    def get_cached_pooled_key(self) -> Optional[str]: ...

    def set_cached_pooled_key(self, key: str) -> None: ...

    def get_cached_entitlement(self, user_id: str) -> Optional[Entitlement]: ...

    def set_cached_entitlement(self, user_id: str, entitlement: Entitlement) -> None: ...


class InMemorySessionStore:
    """Process-local session state."""

    def __init__(
        self,
        user: Optional[SessionUser] = None,
        selected_endpoint: Optional[str] = None,
        pooled_key: Optional[str] = None,
    ):
        self.user = user
        self.selected_endpoint = selected_endpoint
        self._pooled_key = pooled_key
        self._entitlements: Dict[str, Entitlement] = {}

    def get_current_user(self) -> Optional[SessionUser]:
        if self.user and self.user.id:
            return self.user
        return None

    def get_cached_token(self) -> Optional[str]:
        user = self.get_current_user()
        if user and user.personal_auth_token and user.personal_auth_token.strip():
            return user.personal_auth_token
        return None

    def set_cached_token(self, token: str) -> None:
        if self.user:
            self.user.personal_auth_token = token

    def get_selected_endpoint(self) -> Optional[str]:
        return self.selected_endpoint

    def select_endpoint(self, url: Optional[str]) -> None:
        self.selected_endpoint = url.rstrip("/") if url else None

    def get_cached_pooled_key(self) -> Optional[str]:
        if self._pooled_key and self._pooled_key.strip():
            return self._pooled_key
        return None

    def set_cached_pooled_key(self, key: str) -> None:
        self._pooled_key = key

    def get_cached_entitlement(self, user_id: str) -> Optional[Entitlement]:
        return self._entitlements.get(user_id)

    def set_cached_entitlement(self, user_id: str, entitlement: Entitlement) -> None:
        self._entitlements[user_id] = entitlement
