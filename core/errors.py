"""
Error taxonomy for the gateway.

Every error a caller can see derives from GatewayError, carries the HTTP
status it maps to and renders the JSON envelope returned to clients.
"""

from typing import Any, Dict, Optional


class GatewayError(RuntimeError):
    """Base class for errors surfaced to gateway callers."""

    status_code: int = 500
    retriable: bool = False

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        suggestion: Optional[str] = None,
        details: Any = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.suggestion = suggestion
        self.details = details

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message}
        if self.suggestion:
            payload["suggestion"] = self.suggestion
        if self.details is not None:
            payload["details"] = self.details
        return payload


class AuthMissing(GatewayError):
    """No usable credential from any source."""

    status_code = 401


class CaptchaUnavailable(GatewayError):
    """A challenge token could not be obtained. Never fatal to a dispatch."""

    status_code = 503


class ContentPolicyBlocked(GatewayError):
    """Provider rejected the prompt (HTTP 400 or a safety signal)."""

    status_code = 400
    retriable = False


class UpstreamError(GatewayError):
    """Provider returned a non-2xx status; the caller may retry."""

    retriable = True


class UpstreamProtocolViolation(GatewayError):
    """Provider answered with a body that is not JSON."""

    status_code = 502

    def __init__(self, message: str, raw_body: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.raw_body = raw_body
        if self.details is None:
            self.details = raw_body


class TransportError(GatewayError):
    """Network-level failure talking to a remote service."""

    status_code = 502
    retriable = True


class ServiceUnavailable(GatewayError):
    """Deployment problem (e.g. encoder missing), not a user error."""

    status_code = 503


class CombineValidationError(GatewayError):
    """Bad combine request (too few / too many files)."""

    status_code = 400


class PayloadTooLarge(GatewayError):
    """An uploaded file exceeds the per-file size cap."""

    status_code = 413


class CombineError(GatewayError):
    """Encoder ran but did not produce a usable output."""

    status_code = 500


def is_safety_message(message: str) -> bool:
    """True when a provider message signals a content-policy block."""
    lowered = (message or "").lower()
    return "safety" in lowered or "blocked" in lowered
