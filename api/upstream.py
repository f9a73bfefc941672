"""
Provider forwarder.

Maps gateway actions to provider sub-paths and forwards the JSON body with
the caller's bearer token and the Origin/Referer the provider expects from
its own web client.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import aiohttp

from core.dispatcher import extract_project_id
from core.errors import TransportError

logger = logging.getLogger(__name__)


# (service, action) -> provider sub-path relative to the API base
PROVIDER_ROUTES: Dict[Tuple[str, str], str] = {
    ("veo", "generate-t2v"): "/video:batchAsyncGenerateVideoText",
    ("veo", "generate-i2v"): "/video:batchAsyncGenerateVideoStartImage",
    ("veo", "status"): "/video:batchCheckAsyncVideoGenerationStatus",
    ("veo", "upload"): ":uploadUserImage",
    ("imagen", "generate"): "/whisk:generateImage",
    ("imagen", "run-recipe"): "/whisk:runImageRecipe",
    ("imagen", "upload"): ":uploadUserImage",
    ("nanobanana", "generate"): "/projects/{projectId}/flowMedia:batchGenerateImages",
    ("nanobanana", "upload"): ":uploadUserImage",
}


class UnknownRoute(LookupError):
    pass


def lookup_route(service: str, action: str) -> str:
    """Provider sub-path template for an action, or UnknownRoute."""
    template = PROVIDER_ROUTES.get((service, action))
    if template is None:
        raise UnknownRoute(f"Unknown action: {service}/{action}")
    return template


def resolve_route(service: str, action: str, body: Dict[str, Any]) -> str:
    """Provider sub-path for an action; fills {projectId} from the body."""
    template = lookup_route(service, action)
    if "{projectId}" not in template:
        return template

    project_id = extract_project_id(body) if isinstance(body, dict) else None
    if not project_id:
        raise ValueError("clientContext.projectId is required for this action")
    return template.replace("{projectId}", project_id)


@dataclass
class UpstreamResponse:
    status: int
    data: Any
    raw_text: str
    is_json: bool


class ProviderClient:
    """
    Forwards one action to the provider.

    Usage:
        client = ProviderClient(base_url=config.PROVIDER_API_BASE)
        resp = await client.forward("/whisk:generateImage", body, token)
    """

    def __init__(self, base_url: str, origin: str = "https://labs.google", timeout: int = 300):
        self.base_url = base_url.rstrip("/")
        self.origin = origin.rstrip("/")
        self.timeout = timeout

    def headers(self, auth_token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {auth_token}",
            "Content-Type": "application/json",
            "Origin": self.origin,
            "Referer": f"{self.origin}/",
        }

    async def forward(self, sub_path: str, body: Any, auth_token: str) -> UpstreamResponse:
        url = f"{self.base_url}{sub_path}"
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, data=json.dumps(body), headers=self.headers(auth_token)) as resp:
                    text = await resp.text(errors="replace")
                    status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"Provider unreachable: {e or type(e).__name__}") from e

        try:
            data = json.loads(text)
            return UpstreamResponse(status=status, data=data, raw_text=text, is_json=True)
        except ValueError:
            logger.error(f"Upstream API response is not valid JSON. Status: {status}")
            logger.error(f"   Body: {text[:500]}")
            return UpstreamResponse(status=status, data=None, raw_text=text, is_json=False)


def describe_success(service: str, action: str, data: Any) -> Optional[str]:
    """Short summary of a successful response for the log."""
    if not isinstance(data, dict):
        return None
    if "operations" in data:
        ops = data.get("operations") or []
        if action == "status" and ops:
            first = ops[0] or {}
            return f"Operation status: {first.get('status')} done={first.get('done')}"
        return f"Operations: {len(ops)}"
    if "imagePanels" in data:
        panels = data.get("imagePanels") or []
        images = len((panels[0] or {}).get("generatedImages") or []) if panels else 0
        return f"Generated {len(panels)} panel(s) with {images} image(s)"
    if "media" in data:
        return f"Generated {len(data.get('media') or [])} image(s)"
    if action == "upload":
        media_id = data.get("mediaId")
        generation = data.get("mediaGenerationId")
        if isinstance(generation, dict):
            media_id = generation.get("mediaGenerationId") or media_id
        elif isinstance(generation, str):
            media_id = generation
        return f"MediaId: {media_id}"
    return None
