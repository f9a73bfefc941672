"""
Request Dispatcher

Composes and executes one provider action through a gateway server:

1. solve and inject a reCAPTCHA token where the action needs one
2. ask the slot coordinator for a generation slot (detached, advisory)
3. resolve the bearer credential
4. POST to the selected server and classify the answer

Classification is the only retry signal this layer gives: content-policy
blocks are terminal, every other non-2xx is tagged retriable and left to
the caller.
"""

import asyncio
import json
import logging
import time
from typing import Any, Dict, Optional, Tuple

import aiohttp

from .background import spawn_detached
from .captcha_solver import CaptchaSolverAdapter
from .credentials import CredentialResolver
from .diagnostics import DiagnosticLog
from .endpoints import ClientContext, EndpointSelector
from .errors import (
    ContentPolicyBlocked,
    GatewayError,
    TransportError,
    UpstreamError,
    UpstreamProtocolViolation,
    is_safety_message,
)
from .models import (
    CAPTCHA_SERVICES,
    Credential,
    DispatchResult,
    GenerationRequest,
    RequestKind,
    ServiceKind,
    is_loopback_url,
)
from .profile_store import ProfileStore
from .slots import SlotReservationClient

logger = logging.getLogger(__name__)


def needs_captcha(service_kind: ServiceKind, request_kind: RequestKind) -> bool:
    """Generation and health-check calls of the captcha-capable services."""
    return (
        request_kind in (RequestKind.GENERATE, RequestKind.HEALTH_CHECK)
        and service_kind in CAPTCHA_SERVICES
    )


def extract_project_id(payload: Dict[str, Any]) -> Optional[str]:
    """Project id from the top-level client context or the first sub-request."""
    context = payload.get("clientContext")
    if isinstance(context, dict) and context.get("projectId"):
        return context["projectId"]
    requests = payload.get("requests")
    if isinstance(requests, list) and requests and isinstance(requests[0], dict):
        sub_context = requests[0].get("clientContext")
        if isinstance(sub_context, dict) and sub_context.get("projectId"):
            return sub_context["projectId"]
    return None


def inject_captcha_token(payload: Dict[str, Any], token: str) -> None:
    """The provider reads the token from the top-level clientContext only."""
    context = payload.get("clientContext")
    if not isinstance(context, dict):
        context = {}
        payload["clientContext"] = context
    context["recaptchaToken"] = token
    if not context.get("sessionId"):
        context["sessionId"] = f";{int(time.time() * 1000)}"


def error_message_from(data: Any, status: int) -> str:
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        if data.get("message"):
            return str(data["message"])
    return f"API call failed ({status})"


def classify_response(status: int, text: str) -> Dict[str, Any]:
    """Parse a provider answer or raise the matching GatewayError."""
    try:
        data = json.loads(text)
    except ValueError:
        raise UpstreamProtocolViolation(
            f"Proxy returned non-JSON ({status}): {text[:100]}",
            raw_body=text,
        )

    if 200 <= status < 300:
        return data

    message = error_message_from(data, status)
    if status == 400 or is_safety_message(message):
        logger.warning(f"Non-retriable error ({status}). Prompt issue.")
        raise ContentPolicyBlocked(message, status_code=status, details=data)
    raise UpstreamError(message, status_code=status, details=data)


class RequestDispatcher:
    """Executes GenerationRequests against the selected gateway server."""

    def __init__(
        self,
        credentials: CredentialResolver,
        captcha: CaptchaSolverAdapter,
        selector: EndpointSelector,
        slots: SlotReservationClient,
        diagnostics: Optional[DiagnosticLog] = None,
        usage: Optional[ProfileStore] = None,
        timeout: int = 300,
    ):
        self.credentials = credentials
        self.captcha = captcha
        self.selector = selector
        self.slots = slots
        self.diagnostics = diagnostics or DiagnosticLog()
        self.usage = usage
        self.timeout = timeout

    @property
    def context(self) -> ClientContext:
        return self.selector.context

    async def dispatch(
        self,
        path: str,
        service_kind: ServiceKind,
        payload: Dict[str, Any],
        request_kind: RequestKind = RequestKind.GENERATE,
        credential: Optional[str] = None,
        endpoint_override: Optional[str] = None,
    ) -> DispatchResult:
        service_kind = ServiceKind(service_kind)
        request_kind = RequestKind(request_kind)
        is_status_check = request_kind == RequestKind.STATUS

        endpoint = endpoint_override.rstrip("/") if endpoint_override else self.selector.select(service_kind)
        request = GenerationRequest(
            path=path,
            service_kind=service_kind,
            request_kind=request_kind,
            payload=payload,
            target_endpoint=endpoint,
        )
        if not is_status_check:
            logger.info(f"Starting process for: {request.label} on {endpoint}")

        if needs_captcha(service_kind, request_kind):
            await self._attach_captcha(request)

        if request_kind.is_generation_class:
            self.slots.reserve_detached(endpoint)

        resolved = await self.credentials.resolve(credential)
        request.auth_token = resolved.token

        try:
            result = await self._execute(request, resolved)
        except GatewayError as e:
            if credential is None and not is_status_check and not isinstance(e, ContentPolicyBlocked):
                self.diagnostics.record(
                    model=request.label,
                    prompt=f"Failed using {resolved.source.value} token",
                    error=e.message,
                )
            raise

        if not is_status_check:
            logger.info(f"Success using {resolved.source.value} token {resolved.masked} on {endpoint}")
            self._record_usage(endpoint)
        return result

    async def _attach_captcha(self, request: GenerationRequest) -> None:
        project_id = extract_project_id(request.payload)
        token = await self.captcha.solve(request.service_kind, project_id)
        if token:
            inject_captcha_token(request.payload, token)
            logger.info("Injected reCAPTCHA token into request body")
        else:
            logger.error("Failed to get reCAPTCHA token - request will proceed without token")

    def build_url(self, request: GenerationRequest) -> Tuple[str, Optional[str]]:
        """
        Return (url, base_url).

        Absolute for packaged clients or remote servers; for a browser
        talking to the loopback server, a same-origin path against the app
        origin.
        """
        full_path = f"/api/{request.service_kind.value}{request.path}"
        if self.context.packaged or not is_loopback_url(request.target_endpoint):
            return f"{request.target_endpoint}{full_path}", None
        return full_path, self.context.app_origin

    def _headers(self, credential: Credential) -> Dict[str, str]:
        user = self.credentials.session.get_current_user()
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {credential.token}",
            "x-user-username": user.username if user else "unknown",
        }

    async def _execute(self, request: GenerationRequest, credential: Credential) -> DispatchResult:
        url, base_url = self.build_url(request)
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(base_url=base_url, timeout=timeout) as session:
                async with session.post(url, json=request.payload, headers=self._headers(credential)) as resp:
                    status = resp.status
                    text = await resp.text(errors="replace")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"Network error calling {request.target_endpoint}: {e or type(e).__name__}") from e

        data = classify_response(status, text)
        return DispatchResult(
            data=data,
            credential=credential,
            endpoint_url=request.target_endpoint,
            status_code=status,
        )

    def _record_usage(self, endpoint: str) -> None:
        if self.usage is None or self.context.packaged:
            return
        user = self.credentials.session.get_current_user()
        if user is None:
            return
        spawn_detached(self.usage.record_server_usage(user.id, endpoint), name=f"usage:{endpoint}")


def create_dispatcher(session, context: Optional[ClientContext] = None, cfg=None) -> RequestDispatcher:
    """Wire a dispatcher from application config."""
    from api.config import config as app_config
    from .captcha_solver import AntiCaptchaClient
    from .endpoints import EndpointPool
    from .profile_store import RestProfileStore

    cfg = cfg or app_config
    context = context or ClientContext(app_origin=cfg.APP_ORIGIN)
    profiles = RestProfileStore(cfg.PROFILE_STORE_URL, cfg.PROFILE_STORE_KEY) if cfg.PROFILE_STORE_URL else None

    solver_client = AntiCaptchaClient(
        site_key=cfg.RECAPTCHA_SITE_KEY,
        page_url=cfg.CAPTCHA_PAGE_URL,
        page_action=cfg.RECAPTCHA_PAGE_ACTION,
        api_url=cfg.ANTICAPTCHA_API_URL,
        timeout=cfg.CAPTCHA_TIMEOUT_SECONDS,
        poll_interval=cfg.CAPTCHA_POLL_INTERVAL_SECONDS,
    )
    selector = EndpointSelector(
        pool=EndpointPool(cfg.PROXY_SERVER_URLS),
        session=session,
        context=context,
        loopback_url=cfg.LOCAL_SERVER_URL,
        default_remote_url=cfg.DEFAULT_REMOTE_SERVER,
    )
    return RequestDispatcher(
        credentials=CredentialResolver(session, profiles),
        captcha=CaptchaSolverAdapter(session, solver_client, profiles, cfg.CAPTCHA_PROJECT_ID),
        selector=selector,
        slots=SlotReservationClient(profiles, cfg.SLOT_COOLDOWN_SECONDS),
        usage=profiles,
        timeout=cfg.UPSTREAM_TIMEOUT_SECONDS,
    )
