"""
Media Generation Gateway - FastAPI Backend
Forwards provider actions, relays media downloads and combines video clips.
"""

import json
import time
from datetime import datetime
from typing import List, Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, UploadFile, File, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

from api.config import config
from api.logging_config import logger, log_request, log_upstream_call, summarize_payload
from api.media_relay import MediaRelay
from api.upstream import ProviderClient, UnknownRoute, describe_success, lookup_route, resolve_route
from api.video_combiner import FFmpegEncoder, VideoCombiner
from core.background import drain
from core.dispatcher import error_message_from
from core.errors import GatewayError


# === Lifespan Management ===

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    logger.info("Starting Media Generation Gateway...")
    logger.info(f"Upstream API base: {config.PROVIDER_API_BASE}")
    missing = config.validate()
    if missing:
        logger.warning(f"Configuration incomplete: {', '.join(missing)}")

    yield

    logger.info("Shutting down Media Generation Gateway...")
    await drain()


app = FastAPI(
    title="Media Generation Gateway",
    description="Provider gateway for video and image generation with media relay and video combining",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if config.DEBUG else None,
    redoc_url="/redoc" if config.DEBUG else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=config.CORS_ALLOW_CREDENTIALS,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "x-user-username", "Range"],
    expose_headers=["Content-Length", "Content-Range", "Accept-Ranges", "Content-Disposition"],
)

security = HTTPBearer(auto_error=False)


# === Request Logging Middleware ===

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests with the caller's username."""
    start_time = time.perf_counter()
    response = await call_next(request)
    duration = (time.perf_counter() - start_time) * 1000
    log_request(
        request.method,
        request.url.path,
        request.headers.get("x-user-username"),
        response.status_code,
        duration,
    )
    return response


# === Dependencies ===

def get_provider_client() -> ProviderClient:
    return ProviderClient(
        base_url=config.PROVIDER_API_BASE,
        origin=config.PROVIDER_ORIGIN,
        timeout=config.UPSTREAM_TIMEOUT_SECONDS,
    )


def get_media_relay() -> MediaRelay:
    return MediaRelay(read_timeout=config.UPSTREAM_TIMEOUT_SECONDS)


def get_video_combiner() -> VideoCombiner:
    return VideoCombiner(
        encoder=FFmpegEncoder(config.FFMPEG_PATH, timeout=config.FFMPEG_TIMEOUT_SECONDS),
        temp_dir=config.TEMP_DIR,
        max_file_bytes=config.max_upload_bytes,
        min_files=config.COMBINE_MIN_FILES,
        max_files=config.COMBINE_MAX_FILES,
    )


# === API Endpoints ===

class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str


@app.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(
        status="ok",
        timestamp=datetime.now().isoformat(),
        version=app.version,
    )


# Registered before the generic /api/{service}/{action} route
@app.post("/api/video/combine")
async def combine_videos(
    request: Request,
    videos: Optional[List[UploadFile]] = File(None),
    combiner: VideoCombiner = Depends(get_video_combiner),
):
    """Concatenate 2-10 uploaded clips into one MP4."""
    files = videos or []
    username = request.headers.get("x-user-username", "unknown")
    logger.info(f"[{username}] Combine request with {len(files)} video files")

    video = await combiner.combine(files)

    filename = f"combined-video-{int(time.time() * 1000)}.mp4"
    return Response(
        content=video,
        media_type="video/mp4",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/api/{service}/download-video")
async def download_video(
    service: str,
    request: Request,
    url: Optional[str] = None,
    relay: MediaRelay = Depends(get_media_relay),
):
    """Stream a remote media object back to the browser (CORS bypass)."""
    if not url:
        return JSONResponse(status_code=400, content={"error": "Video URL is required"})

    username = request.headers.get("x-user-username", "unknown")
    logger.info(f"[{username}] {service.upper()} media download: {url[:100]}...")
    return await relay.relay(url, range_header=request.headers.get("range"))


@app.post("/api/{service}/{action}")
async def forward_provider_action(
    service: str,
    action: str,
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    client: ProviderClient = Depends(get_provider_client),
):
    """Forward one generation/status/upload action to the provider."""
    try:
        lookup_route(service, action)
    except UnknownRoute as e:
        return JSONResponse(status_code=404, content={"error": str(e)})

    if credentials is None or not credentials.credentials:
        return JSONResponse(status_code=401, content={"error": "No auth token provided"})

    try:
        body = await request.json()
    except ValueError:
        return JSONResponse(status_code=400, content={"error": "Request body must be valid JSON"})

    try:
        sub_path = resolve_route(service, action, body)
    except ValueError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})

    username = request.headers.get("x-user-username", "unknown")
    logger.info(f"[{username}] {service.upper()} {action} request: {json.dumps(summarize_payload(body))[:2000]}")

    upstream = await client.forward(sub_path, body, credentials.credentials)

    if not upstream.is_json:
        log_upstream_call(service, action, upstream.status, username, error="non-JSON response")
        return JSONResponse(
            status_code=502,
            content={
                "error": "Bad Gateway",
                "message": "Upstream API returned non-JSON response",
                "details": upstream.raw_text[:2000],
            },
        )

    if 200 <= upstream.status < 300:
        log_upstream_call(service, action, upstream.status, username)
        summary = describe_success(service, action, upstream.data)
        if summary:
            logger.info(f"[{username}] {summary}")
    else:
        log_upstream_call(
            service, action, upstream.status, username,
            error=error_message_from(upstream.data, upstream.status),
        )

    return JSONResponse(status_code=upstream.status, content=upstream.data)


# === Error Handlers ===

@app.exception_handler(GatewayError)
async def gateway_exception_handler(request: Request, exc: GatewayError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed ({exc.status_code}): {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected ({exc.status_code}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )


# Run with: uvicorn api.main:app --reload --port 3001
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=config.HOST, port=config.PORT)
