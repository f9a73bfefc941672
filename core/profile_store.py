"""
Profile store capability.

Backs the parts of the system this layer does not own: the persisted
personal token, elevated-tier registrations, the pooled captcha key, the
shared slot coordinator and server-usage recording. RestProfileStore talks
to a PostgREST-style HTTP API (tables under /rest/v1, functions under
/rest/v1/rpc).
"""

import asyncio
import json as json_lib
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

import aiohttp

from .errors import TransportError, UpstreamError, UpstreamProtocolViolation
from .models import Entitlement

logger = logging.getLogger(__name__)


class ProfileStore(Protocol):
    async def fetch_personal_token(self, user_id: str) -> Optional[str]: ...

    async def fetch_entitlement(self, user_id: str) -> Optional[Entitlement]: ...

    async def fetch_pooled_captcha_key(self) -> Optional[str]: ...

    async def request_generation_slot(self, cooldown_seconds: int, server_url: str) -> None: ...

    async def record_server_usage(self, user_id: str, server_url: str) -> None: ...


class RestProfileStore:
    """
    PostgREST-backed profile store.

    Usage:
        store = RestProfileStore(base_url="https://xyz.example.co", api_key="...")
        token = await store.fetch_personal_token(user_id)
    """

    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: int = 15):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, str]] = None,
        json: Any = None,
    ) -> Any:
        url = f"{self.base_url}/rest/v1{path}"
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(method, url, params=params, json=json, headers=self._headers()) as resp:
                    status = resp.status
                    text = await resp.text(errors="replace")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"Profile store unreachable: {e}") from e

        if not 200 <= status < 300:
            raise UpstreamError(
                f"Profile store {method} {path} failed ({status}): {text[:200]}",
                status_code=status,
            )
        if not text.strip():
            return None
        try:
            return json_lib.loads(text)
        except ValueError:
            raise UpstreamProtocolViolation(
                f"Profile store {method} {path} returned non-JSON: {text[:100]}",
                raw_body=text,
            )

    @staticmethod
    def _first_row(rows: Any, path: str) -> Optional[Dict[str, Any]]:
        """First row of a table read; anything but a list of objects is a protocol error."""
        if not rows:
            return None
        if not isinstance(rows, list) or not isinstance(rows[0], dict):
            raise UpstreamProtocolViolation(f"Profile store {path} returned unexpected rows: {str(rows)[:100]}")
        return rows[0]

    async def fetch_personal_token(self, user_id: str) -> Optional[str]:
        rows = await self._request(
            "GET", "/users",
            params={"id": f"eq.{user_id}", "select": "personal_auth_token", "limit": "1"},
        )
        row = self._first_row(rows, "/users")
        if row is None:
            return None
        token = row.get("personal_auth_token")
        return token if token and str(token).strip() else None

    async def fetch_entitlement(self, user_id: str) -> Optional[Entitlement]:
        rows = await self._request(
            "GET", "/token_ultra_registrations",
            params={
                "user_id": f"eq.{user_id}",
                "select": "status,expires_at,allow_master_token",
                "order": "registered_at.desc",
                "limit": "1",
            },
        )
        row = self._first_row(rows, "/token_ultra_registrations")
        return Entitlement.from_row(row) if row is not None else None

    async def fetch_pooled_captcha_key(self) -> Optional[str]:
        result = await self._request("POST", "/rpc/get_master_recaptcha_token", json={})
        if isinstance(result, dict):
            key = result.get("api_key") or result.get("apiKey")
        elif isinstance(result, list) and result:
            first = result[0]
            key = first.get("api_key") if isinstance(first, dict) else first
        else:
            key = result
        return key.strip() if isinstance(key, str) and key.strip() else None

    async def request_generation_slot(self, cooldown_seconds: int, server_url: str) -> None:
        await self._request(
            "POST", "/rpc/request_generation_slot",
            json={"cooldown_seconds": cooldown_seconds, "server_url": server_url},
        )

    async def record_server_usage(self, user_id: str, server_url: str) -> None:
        await self._request(
            "PATCH", "/users",
            params={"id": f"eq.{user_id}"},
            json={
                "proxy_server": server_url,
                "last_seen_at": datetime.now(timezone.utc).isoformat(),
            },
        )
