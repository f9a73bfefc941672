"""
Tests for bearer credential resolution.
"""

import pytest

from core.credentials import AUTH_MISSING_MESSAGE, CredentialResolver
from core.errors import AuthMissing, UpstreamError
from core.models import CredentialSource


class TestCredentialPrecedence:

    @pytest.mark.asyncio
    async def test_explicit_token_wins(self, session, profiles):
        resolver = CredentialResolver(session, profiles)

        credential = await resolver.resolve("explicit-token")

        assert credential.token == "explicit-token"
        assert credential.source == CredentialSource.SPECIFIC
        profiles.fetch_personal_token.assert_not_called()

    @pytest.mark.asyncio
    async def test_session_token_used_when_no_explicit(self, session, profiles):
        resolver = CredentialResolver(session, profiles)

        credential = await resolver.resolve()

        assert credential.token == "personal-token-abc123"
        assert credential.source == CredentialSource.PERSONAL
        profiles.fetch_personal_token.assert_not_called()

    @pytest.mark.asyncio
    async def test_blank_explicit_token_falls_through(self, session, profiles):
        resolver = CredentialResolver(session, profiles)

        credential = await resolver.resolve("   ")

        assert credential.source == CredentialSource.PERSONAL

    @pytest.mark.asyncio
    async def test_profile_store_token_is_written_back(self, session, session_user, profiles):
        session_user.personal_auth_token = None
        profiles.fetch_personal_token.return_value = "fresh-token"
        resolver = CredentialResolver(session, profiles)

        credential = await resolver.resolve()

        assert credential.token == "fresh-token"
        assert credential.source == CredentialSource.PERSONAL
        assert session.get_cached_token() == "fresh-token"
        profiles.fetch_personal_token.assert_awaited_once_with("user-1")

        # Second resolution stops at the session cache
        await resolver.resolve()
        assert profiles.fetch_personal_token.await_count == 1


class TestCredentialMissing:

    @pytest.mark.asyncio
    async def test_no_token_anywhere_raises(self, session, session_user, profiles):
        session_user.personal_auth_token = ""
        resolver = CredentialResolver(session, profiles)

        with pytest.raises(AuthMissing) as exc_info:
            await resolver.resolve()

        assert exc_info.value.status_code == 401
        assert exc_info.value.message == AUTH_MISSING_MESSAGE

    @pytest.mark.asyncio
    async def test_profile_store_error_counts_as_missing(self, session, session_user, profiles):
        session_user.personal_auth_token = None
        profiles.fetch_personal_token.side_effect = UpstreamError("down", status_code=503)
        resolver = CredentialResolver(session, profiles)

        with pytest.raises(AuthMissing):
            await resolver.resolve()

    @pytest.mark.asyncio
    async def test_no_current_user_skips_profile_store(self, profiles):
        from core.session_store import InMemorySessionStore

        resolver = CredentialResolver(InMemorySessionStore(), profiles)

        with pytest.raises(AuthMissing):
            await resolver.resolve()
        profiles.fetch_personal_token.assert_not_called()

    @pytest.mark.asyncio
    async def test_without_profile_store(self, session, session_user):
        session_user.personal_auth_token = None
        resolver = CredentialResolver(session)

        with pytest.raises(AuthMissing):
            await resolver.resolve()
