"""
Endpoint selection.

Decides which gateway server handles a request:

- packaged/desktop build: always the loopback server
- browser on a loopback host: the user's override if it is not loopback,
  otherwise loopback
- browser elsewhere: the user's override, otherwise the default remote server

Parallel siblings in a non-loopback context each draw uniformly, with
replacement, from the remote members of the pool. No coordination between
siblings; a degraded member only costs the draws that land on it.
"""

import logging
import random
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .models import BackendEndpoint, Environment, LOOPBACK_HOSTS, ServiceKind, is_loopback_url
from .session_store import SessionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientContext:
    """Where the calling client runs."""
    packaged: bool = False
    page_host: str = "localhost"
    app_origin: str = "http://localhost:8080"

    @property
    def on_loopback_host(self) -> bool:
        return self.page_host in LOOPBACK_HOSTS


class EndpointPool:
    """Process-wide endpoint set, fixed after startup."""

    def __init__(self, urls: Iterable[str]):
        seen = set()
        members = []
        for url in urls:
            endpoint = BackendEndpoint.from_url(url)
            if endpoint.url in seen:
                continue
            seen.add(endpoint.url)
            members.append(endpoint)
        self._members = tuple(members)

    @property
    def members(self) -> tuple:
        return self._members

    def remote(self) -> List[BackendEndpoint]:
        return [e for e in self._members if e.environment == Environment.REMOTE]

    def __contains__(self, url: str) -> bool:
        return any(e.url == url.rstrip("/") for e in self._members)

    def __len__(self) -> int:
        return len(self._members)


class EndpointSelector:
    """Resolves the server URL for a dispatch; evaluated once per request."""

    def __init__(
        self,
        pool: EndpointPool,
        session: SessionStore,
        context: ClientContext,
        loopback_url: str = "http://localhost:3001",
        default_remote_url: str = "https://s1.mediagen-gateway.net",
        rng: Optional[random.Random] = None,
    ):
        self.pool = pool
        self.session = session
        self.context = context
        self.loopback_url = loopback_url.rstrip("/")
        self.default_remote_url = default_remote_url.rstrip("/")
        self._rng = rng or random.Random()

    def select(self, service_kind: ServiceKind, environment: Optional[ClientContext] = None) -> str:
        """Server URL for one request of `service_kind`."""
        context = environment or self.context

        if context.packaged:
            return self.loopback_url

        override = self._override()
        if context.on_loopback_host:
            if not override or override == self.loopback_url:
                return self.loopback_url
            return override

        if override:
            return override
        return self.default_remote_url

    def is_loopback_context(self, environment: Optional[ClientContext] = None) -> bool:
        context = environment or self.context
        if context.packaged:
            return True
        return is_loopback_url(self._override())

    def sample_siblings(self, count: int, environment: Optional[ClientContext] = None) -> List[Optional[str]]:
        """
        One server URL per sibling request.

        None entries mean "no pool available"; the dispatcher then falls
        back to select().
        """
        if count <= 0:
            return []

        if self.is_loopback_context(environment):
            logger.info(f"[Loopback] Using loopback server for all {count} sibling requests")
            return [self.loopback_url] * count

        remote = self.pool.remote()
        if not remote:
            return [None] * count

        picks = [self._rng.choice(remote).url for _ in range(count)]
        logger.info(f"[Multi-Server] Distributing {count} requests across {len(remote)} servers")
        return picks

    def _override(self) -> Optional[str]:
        selected = self.session.get_selected_endpoint()
        return selected.rstrip("/") if selected else None
