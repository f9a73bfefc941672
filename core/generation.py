"""
Restricted image model: request building and parallel sibling generation.

Siblings are independent dispatches. Each one gets its own server from
EndpointSelector.sample_siblings, launches are staggered, and results come
back indexed by sibling position, not by completion order.
"""

import asyncio
import logging
import random
import time
import uuid
from typing import Any, Dict, List, Optional, Union

from .dispatcher import RequestDispatcher
from .endpoints import EndpointSelector
from .models import DispatchResult, ImageGenerationOptions, RequestKind, ServiceKind

logger = logging.getLogger(__name__)

IMAGE_MODEL_NAME = "GEM_PIX_2"
MAX_SEED = 2147483647

ASPECT_RATIOS = {
    "landscape": "IMAGE_ASPECT_RATIO_LANDSCAPE",
    "portrait": "IMAGE_ASPECT_RATIO_PORTRAIT",
    "square": "IMAGE_ASPECT_RATIO_SQUARE",
}

# "16:9" style ratios used by the other image services
RATIO_ALIASES = {"16:9": "landscape", "9:16": "portrait", "1:1": "square"}


def aspect_ratio_enum(aspect_ratio: str) -> str:
    name = RATIO_ALIASES.get(aspect_ratio, aspect_ratio)
    return ASPECT_RATIOS.get(name, ASPECT_RATIOS["landscape"])


def build_image_request(prompt: str, options: ImageGenerationOptions) -> Dict[str, Any]:
    """
    Build a generation body for the restricted image model.

    One sub-request per sample; all share the session and project id. The
    top-level clientContext is where the dispatcher puts the captcha token.
    """
    session_id = f";{int(time.time() * 1000)}"
    project_id = str(uuid.uuid4())
    image_inputs = [
        {"name": media_id, "imageInputType": "IMAGE_INPUT_TYPE_REFERENCE"}
        for media_id in options.reference_media_ids
    ]

    requests = []
    for _ in range(max(1, options.sample_count)):
        sub_request: Dict[str, Any] = {
            "clientContext": {
                "sessionId": session_id,
                "projectId": project_id,
                "tool": "PINHOLE",
            },
            "seed": options.seed if options.seed is not None else random.randint(0, MAX_SEED),
            "imageModelName": IMAGE_MODEL_NAME,
            "imageAspectRatio": aspect_ratio_enum(options.aspect_ratio),
            "prompt": prompt,
            "imageInputs": list(image_inputs),
        }
        if options.image_size:
            sub_request["imageSize"] = options.image_size
        requests.append(sub_request)

    return {
        "clientContext": {"recaptchaToken": "", "sessionId": session_id},
        "requests": requests,
    }


def extract_image_urls(data: Dict[str, Any]) -> List[str]:
    """Signed media URLs from a generation response."""
    urls = []
    for item in data.get("media") or []:
        url = ((item.get("image") or {}).get("generatedImage") or {}).get("fifeUrl")
        if url:
            urls.append(url)
    return urls


async def generate_image(
    dispatcher: RequestDispatcher,
    prompt: str,
    options: ImageGenerationOptions,
    server_url: Optional[str] = None,
    health_check: bool = False,
) -> DispatchResult:
    body = build_image_request(prompt, options)
    kind = RequestKind.HEALTH_CHECK if health_check else RequestKind.GENERATE
    return await dispatcher.dispatch(
        "/generate",
        ServiceKind.NANOBANANA,
        body,
        request_kind=kind,
        credential=options.auth_token,
        endpoint_override=server_url,
    )


async def generate_parallel(
    dispatcher: RequestDispatcher,
    selector: EndpointSelector,
    prompt: str,
    options: ImageGenerationOptions,
    count: int,
    stagger_seconds: float = 0.5,
) -> List[Union[DispatchResult, BaseException]]:
    """
    Launch `count` sibling generations.

    Returns one entry per sibling, in sibling order: the DispatchResult or
    the exception that sibling raised. One failing sibling does not affect
    the others.
    """
    servers = selector.sample_siblings(count)

    async def _sibling(index: int, server_url: Optional[str]) -> DispatchResult:
        if index and stagger_seconds > 0:
            await asyncio.sleep(index * stagger_seconds)
        return await generate_image(dispatcher, prompt, options, server_url=server_url)

    results = await asyncio.gather(
        *(_sibling(i, url) for i, url in enumerate(servers)),
        return_exceptions=True,
    )

    failed = sum(1 for r in results if isinstance(r, BaseException))
    logger.info(f"Parallel generation finished: {count - failed}/{count} succeeded")
    return list(results)
