"""
Credential resolution.

Precedence: explicit per-call token, then the token cached in session
state, then a fresh lookup in the profile store. A token found in the
profile store is written back to the session so the next resolution stops
at step two.
"""

import logging
from typing import Optional

from .errors import AuthMissing, GatewayError
from .models import Credential, CredentialSource
from .profile_store import ProfileStore
from .session_store import SessionStore

logger = logging.getLogger(__name__)

AUTH_MISSING_MESSAGE = (
    "Authentication failed: No Personal Token found. "
    "Please go to Settings > Token & API and set your token."
)


def _usable(token: Optional[str]) -> bool:
    return bool(token and token.strip())


class CredentialResolver:
    """Produces exactly one bearer credential per request."""

    def __init__(self, session: SessionStore, profiles: Optional[ProfileStore] = None):
        self.session = session
        self.profiles = profiles

    async def resolve(self, explicit_token: Optional[str] = None) -> Credential:
        if _usable(explicit_token):
            return Credential(token=explicit_token, source=CredentialSource.SPECIFIC)

        cached = self.session.get_cached_token()
        if _usable(cached):
            return Credential(token=cached, source=CredentialSource.PERSONAL)

        fresh = await self._fetch_from_profile_store()
        if _usable(fresh):
            self.session.set_cached_token(fresh)
            logger.info("Refreshed personal token from profile store and updated session")
            return Credential(token=fresh, source=CredentialSource.PERSONAL)

        logger.error("Authentication failed. No token in session or profile store.")
        raise AuthMissing(AUTH_MISSING_MESSAGE)

    async def _fetch_from_profile_store(self) -> Optional[str]:
        user = self.session.get_current_user()
        if user is None:
            logger.warning("No current user in session; cannot refetch token")
            return None
        if self.profiles is None:
            return None
        try:
            return await self.profiles.fetch_personal_token(user.id)
        except GatewayError as e:
            logger.error(f"Profile store error fetching token: {e}")
            return None
