#!/usr/bin/env python3
"""
Unified Data Models for the Media Generation Gateway

All shared data models are defined here to ensure consistency across the codebase.
"""

from typing import List, Optional, Dict, Any
from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime, timezone
from urllib.parse import urlparse


LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "::1"}


# ============== Enums ==============

class ServiceKind(str, Enum):
    """Provider services reachable through the gateway."""
    VEO = "veo"
    IMAGEN = "imagen"
    # Restricted model: captcha solving must use the caller's own key
    NANOBANANA = "nanobanana"


class RequestKind(str, Enum):
    """Sub-kind of a provider action."""
    GENERATE = "generate"
    RECIPE = "recipe"
    UPLOAD = "upload"
    STATUS = "status"
    HEALTH_CHECK = "health_check"

    @property
    def is_generation_class(self) -> bool:
        """Generation-class requests take part in slot reservation."""
        return self in (RequestKind.GENERATE, RequestKind.RECIPE, RequestKind.HEALTH_CHECK)


class CredentialSource(str, Enum):
    SPECIFIC = "Specific"
    PERSONAL = "Personal"


class Environment(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


class KeySource(str, Enum):
    """Which captcha-solver key a request may spend."""
    INDIVIDUAL = "individual"
    POOLED = "pooled"


# Services whose generation and health-check actions need a challenge token
CAPTCHA_SERVICES = (ServiceKind.VEO, ServiceKind.NANOBANANA)
RESTRICTED_SERVICE = ServiceKind.NANOBANANA


# ============== Data Classes ==============

@dataclass(frozen=True)
class Credential:
    """Bearer token plus where it came from."""
    token: str
    source: CredentialSource

    @property
    def masked(self) -> str:
        return f"...{self.token[-6:]}"


@dataclass(frozen=True)
class CaptchaChallenge:
    """A solved challenge. Consumed by exactly one request."""
    api_key_used: str
    solved_token: str
    project_id: Optional[str] = None


@dataclass(frozen=True)
class BackendEndpoint:
    """One gateway server in the endpoint pool."""
    url: str
    environment: Environment

    @classmethod
    def from_url(cls, url: str) -> "BackendEndpoint":
        url = url.rstrip("/")
        env = Environment.LOCAL if is_loopback_url(url) else Environment.REMOTE
        return cls(url=url, environment=env)


@dataclass
class GenerationRequest:
    """One outbound action. Discarded once the response is handled."""
    path: str
    service_kind: ServiceKind
    request_kind: RequestKind
    payload: Dict[str, Any]
    auth_token: Optional[str] = None
    target_endpoint: Optional[str] = None

    @property
    def label(self) -> str:
        return f"{self.service_kind.value.upper()} {self.request_kind.value.upper()}"


@dataclass
class Entitlement:
    """Elevated-tier registration for a caller."""
    status: str
    expires_at: Optional[datetime] = None
    # None means "not set", which counts as allowed
    allow_pooled_key: Optional[bool] = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def opted_out(self) -> bool:
        return self.allow_pooled_key is False

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Entitlement":
        return cls(
            status=str(row.get("status") or ""),
            expires_at=parse_timestamp(row.get("expires_at")),
            allow_pooled_key=row.get("allow_master_token"),
        )


@dataclass
class SessionUser:
    """Caller profile as cached in the local session."""
    id: str
    username: str = "unknown"
    personal_auth_token: Optional[str] = None
    captcha_api_key: Optional[str] = None


@dataclass
class DispatchResult:
    """Successful provider response."""
    data: Dict[str, Any]
    credential: Credential
    endpoint_url: str
    status_code: int = 200


@dataclass
class ImageGenerationOptions:
    """Options for the restricted image model."""
    aspect_ratio: str = "landscape"
    sample_count: int = 1
    seed: Optional[int] = None
    reference_media_ids: List[str] = field(default_factory=list)
    image_size: Optional[str] = None
    auth_token: Optional[str] = None


# ============== Helpers ==============

def is_loopback_url(url: Optional[str]) -> bool:
    if not url:
        return False
    host = urlparse(url).hostname or ""
    return host in LOOPBACK_HOSTS


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (with or without offset) as aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
