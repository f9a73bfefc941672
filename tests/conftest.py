"""
Pytest fixtures and configuration for the Media Generation Gateway test suite.
"""

import io
import json
import os
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Keep test runs from writing into the project's log directory
os.environ.setdefault("LOG_DIR", str(Path(tempfile.gettempdir()) / "mediagen-gateway-test-logs"))

from core.models import SessionUser
from core.session_store import InMemorySessionStore


# === Fake remote services ===

class FakeUpstream:
    """
    Scripted aiohttp app standing in for a remote HTTP service.

    Replies are queued per path; the last one repeats. Every request is
    recorded with lower-cased header names.
    """

    def __init__(self):
        self.base_url = ""
        self.requests: List[Dict[str, Any]] = []
        self._replies: Dict[str, List[Tuple]] = {}
        self.app = web.Application()
        self.app.router.add_route("*", "/{tail:.*}", self._handle)

    def reply(
        self,
        path: str,
        status: int = 200,
        data: Any = None,
        body: bytes = b"",
        content_type: str = "application/json",
        headers: Optional[Dict[str, str]] = None,
    ) -> "FakeUpstream":
        self._replies.setdefault(path, []).append((status, data, body, content_type, headers or {}))
        return self

    def requests_to(self, path: str) -> List[Dict[str, Any]]:
        return [r for r in self.requests if r["path"] == path]

    def json_body(self, index: int = -1) -> Any:
        return json.loads(self.requests[index]["body"])

    async def _handle(self, request: web.Request) -> web.Response:
        raw = await request.read()
        self.requests.append({
            "method": request.method,
            "path": request.path,
            "query": dict(request.query),
            "headers": {k.lower(): v for k, v in request.headers.items()},
            "body": raw,
        })

        queue = self._replies.get(request.path)
        if not queue:
            return web.json_response({"error": f"no reply scripted for {request.path}"}, status=404)
        status, data, body, content_type, headers = queue.pop(0) if len(queue) > 1 else queue[0]
        if data is not None:
            return web.json_response(data, status=status, headers=headers)
        return web.Response(status=status, body=body, content_type=content_type, headers=headers)


@pytest_asyncio.fixture
async def fake_upstream():
    """A running FakeUpstream; base_url has no trailing slash."""
    upstream = FakeUpstream()
    async with TestServer(upstream.app) as server:
        upstream.base_url = str(server.make_url("/")).rstrip("/")
        yield upstream


@pytest_asyncio.fixture
async def dead_url():
    """URL of a server that has already shut down (connection refused)."""
    server = TestServer(web.Application())
    await server.start_server()
    url = str(server.make_url("/")).rstrip("/")
    await server.close()
    return url


# === Session / profile fixtures ===

@pytest.fixture
def session_user():
    return SessionUser(
        id="user-1",
        username="alice",
        personal_auth_token="personal-token-abc123",
        captcha_api_key="individual-key",
    )


@pytest.fixture
def session(session_user):
    return InMemorySessionStore(user=session_user)


@pytest.fixture
def profiles():
    """Profile store double; every capability succeeds with nothing to report."""
    store = MagicMock()
    store.fetch_personal_token = AsyncMock(return_value=None)
    store.fetch_entitlement = AsyncMock(return_value=None)
    store.fetch_pooled_captcha_key = AsyncMock(return_value="pooled-key")
    store.request_generation_slot = AsyncMock(return_value=None)
    store.record_server_usage = AsyncMock(return_value=None)
    return store


@pytest.fixture
def captcha_client():
    client = MagicMock()
    client.solve = AsyncMock(return_value="solved-captcha-token")
    return client


# === Video combine fixtures ===

class FakeUpload:
    """Minimal stand-in for an uploaded file."""

    def __init__(self, filename: str, content: bytes):
        self.filename = filename
        self._stream = io.BytesIO(content)

    async def read(self, size: int = -1) -> bytes:
        return self._stream.read(size)


class FakeEncoder:
    """
    Encoder double: "concatenates" by joining input bytes.

    Records the input paths it saw and whether they existed at the time.
    """

    def __init__(self, available: bool = True, error: Optional[Exception] = None, write_output: bool = True):
        self.available = available
        self.error = error
        self.write_output = write_output
        self.calls: List[List[Path]] = []
        self.inputs_existed: List[bool] = []

    async def is_available(self) -> bool:
        return self.available

    async def concat(self, inputs, output) -> None:
        self.calls.append([Path(p) for p in inputs])
        self.inputs_existed.append(all(Path(p).exists() for p in inputs))
        if self.error is not None:
            raise self.error
        if self.write_output:
            Path(output).write_bytes(b"".join(Path(p).read_bytes() for p in inputs))


@pytest.fixture
def fake_encoder():
    return FakeEncoder()


@pytest.fixture
def make_uploads():
    def _make(count: int, size: int = 16) -> List[FakeUpload]:
        return [FakeUpload(f"clip{i}.mp4", bytes([65 + i % 26]) * size) for i in range(count)]
    return _make


@pytest.fixture
def make_encoder():
    return FakeEncoder
