"""
Client-side core of the media generation gateway.

Modules:
- credentials: bearer token resolution (explicit, session, profile store)
- captcha_solver: Anti-Captcha reCAPTCHA v3 solving and key tier choice
- endpoints: gateway server selection and sibling sampling
- slots: advisory generation slot reservation
- dispatcher: composes and executes one provider action
- generation: restricted image model requests and parallel siblings
- errors: error taxonomy shared with the API server
"""

from .captcha_solver import AntiCaptchaClient, CaptchaSolverAdapter, choose_key_source
from .credentials import CredentialResolver
from .diagnostics import DiagnosticLog
from .dispatcher import RequestDispatcher, create_dispatcher
from .endpoints import ClientContext, EndpointPool, EndpointSelector
from .errors import (
    AuthMissing,
    ContentPolicyBlocked,
    GatewayError,
    TransportError,
    UpstreamError,
    UpstreamProtocolViolation,
)
from .generation import build_image_request, extract_image_urls, generate_image, generate_parallel
from .models import (
    Credential,
    CredentialSource,
    DispatchResult,
    ImageGenerationOptions,
    KeySource,
    RequestKind,
    ServiceKind,
    SessionUser,
)
from .profile_store import RestProfileStore
from .session_store import InMemorySessionStore
from .slots import SlotReservationClient

__all__ = [
    "AntiCaptchaClient",
    "CaptchaSolverAdapter",
    "choose_key_source",
    "CredentialResolver",
    "DiagnosticLog",
    "RequestDispatcher",
    "create_dispatcher",
    "ClientContext",
    "EndpointPool",
    "EndpointSelector",
    "AuthMissing",
    "ContentPolicyBlocked",
    "GatewayError",
    "TransportError",
    "UpstreamError",
    "UpstreamProtocolViolation",
    "build_image_request",
    "extract_image_urls",
    "generate_image",
    "generate_parallel",
    "Credential",
    "CredentialSource",
    "DispatchResult",
    "ImageGenerationOptions",
    "KeySource",
    "RequestKind",
    "ServiceKind",
    "SessionUser",
    "RestProfileStore",
    "InMemorySessionStore",
    "SlotReservationClient",
]
