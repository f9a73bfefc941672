"""
CAPTCHA Solver - Anti-Captcha Integration

Obtains reCAPTCHA tokens the provider requires on generation calls, and
decides whose solver key pays for them:

- restricted service: the caller's own key only, never the pooled key
- entitled callers (active, unexpired, not opted out): the pooled key
- everyone else: the caller's own key

A missing key or a failed solve yields None; the request then goes out
without a token and the provider decides.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Optional

import aiohttp

from .errors import CaptchaUnavailable, GatewayError
from .models import (
    CaptchaChallenge,
    Entitlement,
    KeySource,
    RESTRICTED_SERVICE,
    ServiceKind,
    SessionUser,
)
from .profile_store import ProfileStore
from .session_store import SessionStore

logger = logging.getLogger(__name__)


def choose_key_source(
    entitlement_active: bool,
    entitlement_expiry: Optional[datetime],
    opt_out: bool,
    now: Optional[datetime] = None,
) -> KeySource:
    """Pooled key only for an active, unexpired, non-opted-out entitlement."""
    if not entitlement_active or entitlement_expiry is None:
        return KeySource.INDIVIDUAL
    now = now or datetime.now(timezone.utc)
    if entitlement_expiry <= now:
        return KeySource.INDIVIDUAL
    if opt_out:
        return KeySource.INDIVIDUAL
    return KeySource.POOLED


class AntiCaptchaClient:
    """
    Anti-Captcha createTask/getTaskResult client for reCAPTCHA v3 Enterprise.

    Usage:
        client = AntiCaptchaClient(site_key="6Lc...")
        token = await client.solve(api_key, project_id="...")
    """

    def __init__(
        self,
        site_key: str,
        page_url: str = "https://labs.google/fx/tools/flow",
        page_action: str = "FLOW_GENERATION",
        api_url: str = "https://api.anti-captcha.com",
        timeout: int = 120,
        poll_interval: float = 3.0,
        min_score: float = 0.7,
    ):
        self.site_key = site_key
        self.page_url = page_url.rstrip("/")
        self.page_action = page_action
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.min_score = min_score

    def page_url_for(self, project_id: Optional[str]) -> str:
        """Challenge page URL; the project id must match the request body."""
        if project_id:
            return f"{self.page_url}/project/{project_id}"
        return self.page_url

    async def solve(self, api_key: str, project_id: Optional[str] = None) -> Optional[str]:
        """
        Solve one reCAPTCHA v3 challenge.

        Returns:
            The gRecaptchaResponse token or None if failed
        """
        if not api_key:
            logger.warning("Anti-Captcha API key not configured")
            return None
        if not self.site_key:
            logger.warning("reCAPTCHA site key not configured")
            return None

        start_time = time.time()
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout + 30)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                payload = {
                    "clientKey": api_key,
                    "task": {
                        "type": "RecaptchaV3TaskProxyless",
                        "websiteURL": self.page_url_for(project_id),
                        "websiteKey": self.site_key,
                        "minScore": self.min_score,
                        "pageAction": self.page_action,
                        "isEnterprise": True,
                    },
                }

                async with session.post(f"{self.api_url}/createTask", json=payload) as resp:
                    data = await resp.json(content_type=None)

                if data.get("errorId") != 0:
                    logger.error(f"[Anti-Captcha] Create task failed: {data.get('errorCode')} {data.get('errorDescription')}")
                    return None

                task_id = data["taskId"]
                logger.info(f"[Anti-Captcha] Task created: {task_id}")

                polls = max(1, int(self.timeout / self.poll_interval)) if self.poll_interval > 0 else 60
                for _ in range(polls):
                    await asyncio.sleep(self.poll_interval)

                    async with session.post(
                        f"{self.api_url}/getTaskResult",
                        json={"clientKey": api_key, "taskId": task_id},
                    ) as resp:
                        result = await resp.json(content_type=None)

                    if result.get("errorId") != 0:
                        logger.error(f"[Anti-Captcha] Get result failed: {result.get('errorCode')} {result.get('errorDescription')}")
                        return None

                    status = result.get("status")
                    if status == "ready":
                        token = (result.get("solution") or {}).get("gRecaptchaResponse")
                        logger.info(f"[Anti-Captcha] Solved in {time.time() - start_time:.1f}s")
                        return token or None
                    if status != "processing":
                        logger.error(f"[Anti-Captcha] Unexpected status: {status}")
                        return None

                logger.error("[Anti-Captcha] Timeout waiting for solution")
                return None

        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, KeyError) as e:
            logger.error(f"[Anti-Captcha] Error solving CAPTCHA: {e}")
            return None


class CaptchaSolverAdapter:
    """Picks the solver key for a request and returns a single-use token."""

    def __init__(
        self,
        session: SessionStore,
        client: AntiCaptchaClient,
        profiles: Optional[ProfileStore] = None,
        default_project_id: Optional[str] = None,
    ):
        self.session = session
        self.client = client
        self.profiles = profiles
        self.default_project_id = default_project_id

    async def solve(self, service_kind: ServiceKind, project_id: Optional[str] = None) -> Optional[str]:
        try:
            challenge = await self.solve_challenge(service_kind, project_id)
        except CaptchaUnavailable as e:
            logger.error(f"{e.message}; request will proceed unchallenged")
            return None
        return challenge.solved_token

    async def solve_challenge(
        self, service_kind: ServiceKind, project_id: Optional[str] = None
    ) -> CaptchaChallenge:
        """Solve one challenge or raise CaptchaUnavailable."""
        user = self.session.get_current_user()
        if user is None:
            raise CaptchaUnavailable("Captcha solve skipped: no current user")

        if service_kind == RESTRICTED_SERVICE:
            api_key = self._individual_key(user)
            if not api_key:
                raise CaptchaUnavailable(f"{service_kind.value} requires a personal Anti-Captcha API key")
        else:
            api_key = await self._key_for_tier(user)
            if not api_key:
                raise CaptchaUnavailable("Anti-Captcha enabled but no API key configured")

        final_project_id = project_id or self.default_project_id
        token = await self.client.solve(api_key.strip(), final_project_id)
        if not token:
            raise CaptchaUnavailable("Anti-Captcha returned no token")

        logger.info(f"reCAPTCHA token obtained, length: {len(token)}")
        return CaptchaChallenge(api_key_used=api_key.strip(), solved_token=token, project_id=final_project_id)

    @staticmethod
    def _individual_key(user: SessionUser) -> Optional[str]:
        key = user.captcha_api_key or ""
        return key if key.strip() else None

    async def _key_for_tier(self, user: SessionUser) -> Optional[str]:
        entitlement = await self._entitlement(user)
        source = KeySource.INDIVIDUAL
        if entitlement is not None:
            source = choose_key_source(
                entitlement.is_active,
                entitlement.expires_at,
                entitlement.opted_out,
            )

        if source == KeySource.POOLED:
            pooled = await self._pooled_key()
            if pooled:
                logger.info("Using pooled captcha key (entitled caller)")
                return pooled
            logger.warning("Pooled key unavailable, falling back to individual key")

        return self._individual_key(user)

    async def _entitlement(self, user: SessionUser) -> Optional[Entitlement]:
        cached = self.session.get_cached_entitlement(user.id)
        if cached is not None:
            return cached
        if self.profiles is None:
            return None
        try:
            entitlement = await self.profiles.fetch_entitlement(user.id)
        except GatewayError as e:
            logger.warning(f"Entitlement lookup failed: {e}")
            return None
        if entitlement is not None:
            self.session.set_cached_entitlement(user.id, entitlement)
        return entitlement

    async def _pooled_key(self) -> Optional[str]:
        cached = self.session.get_cached_pooled_key()
        if cached:
            return cached
        if self.profiles is None:
            return None
        logger.warning("Pooled key not in cache, fetching...")
        try:
            key = await self.profiles.fetch_pooled_captcha_key()
        except GatewayError as e:
            logger.warning(f"Pooled key fetch failed: {e}")
            return None
        if key:
            self.session.set_cached_pooled_key(key)
        return key
