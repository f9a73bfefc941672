#!/usr/bin/env python3
"""
Media Generation Gateway - Main Entry Point

Usage:
    # Run API server
    python main.py server

    # Validate configuration and probe FFmpeg
    python main.py check

    # Generate images on the gateway servers (client side)
    python main.py generate --prompt "a lighthouse at dusk" --count 4 --token ya29...
"""

import sys
import json
import asyncio
import argparse
import logging

from dotenv import load_dotenv

# Configuration is read from the environment at import time
load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def check_environment() -> bool:
    """Print configuration problems and whether FFmpeg can be started."""
    from api.config import config
    from api.video_combiner import FFmpegEncoder

    missing = config.validate()
    if missing:
        print("❌ Configuration problems:")
        for item in missing:
            print(f"  - {item}")
    else:
        print("✅ Configuration looks complete")

    encoder = FFmpegEncoder(config.FFMPEG_PATH, timeout=config.FFMPEG_TIMEOUT_SECONDS)
    if asyncio.run(encoder.is_available()):
        print(f"✅ FFmpeg available at {config.FFMPEG_PATH}")
    else:
        print(f"❌ FFmpeg not available at {config.FFMPEG_PATH} (video combine will answer 503)")
        return False

    return not missing


def run_server(host: str = "0.0.0.0", port: int = 3001, reload: bool = False):
    """Run the FastAPI server."""
    import uvicorn

    print(f"🚀 Starting server on {host}:{port}")
    uvicorn.run(
        "api.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info"
    )


async def run_generation(args) -> int:
    """Launch sibling image generations through the dispatcher."""
    from api.config import config
    from core import (
        ClientContext,
        ImageGenerationOptions,
        InMemorySessionStore,
        SessionUser,
        create_dispatcher,
        extract_image_urls,
        generate_parallel,
    )
    from core.background import drain

    user = SessionUser(
        id=args.user_id,
        username=args.username,
        personal_auth_token=args.token,
        captcha_api_key=args.captcha_key,
    )
    session = InMemorySessionStore(user=user, selected_endpoint=args.server)
    context = ClientContext(packaged=args.packaged, page_host=args.page_host, app_origin=config.APP_ORIGIN)
    dispatcher = create_dispatcher(session, context)

    options = ImageGenerationOptions(
        aspect_ratio=args.aspect_ratio,
        sample_count=args.samples,
        seed=args.seed,
    )
    results = await generate_parallel(
        dispatcher,
        dispatcher.selector,
        args.prompt,
        options,
        count=args.count,
        stagger_seconds=config.SIBLING_STAGGER_SECONDS,
    )
    await drain()

    failures = 0
    for index, result in enumerate(results):
        if isinstance(result, BaseException):
            failures += 1
            print(f"[{index}] ❌ {result}")
        else:
            urls = extract_image_urls(result.data)
            print(f"[{index}] ✅ {result.endpoint_url}: {json.dumps(urls)}")
    return 1 if failures == len(results) else 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Media Generation Gateway - provider gateway for video and image generation"
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Server command
    server_parser = subparsers.add_parser('server', help='Run API server')
    server_parser.add_argument('--host', default=None, help='Host to bind to')
    server_parser.add_argument('--port', type=int, default=None, help='Port to bind to')
    server_parser.add_argument('--reload', action='store_true', help='Enable auto-reload')

    # Check command
    subparsers.add_parser('check', help='Validate configuration and probe FFmpeg')

    # Generate command
    gen_parser = subparsers.add_parser('generate', help='Generate images through the gateway servers')
    gen_parser.add_argument('--prompt', required=True, help='Image prompt')
    gen_parser.add_argument('--count', type=int, default=1, help='Number of parallel requests')
    gen_parser.add_argument('--samples', type=int, default=1, help='Images per request')
    gen_parser.add_argument('--aspect-ratio', default='landscape', help='landscape, portrait or square')
    gen_parser.add_argument('--seed', type=int, default=None, help='Fixed seed')
    gen_parser.add_argument('--token', default=None, help='Personal provider token')
    gen_parser.add_argument('--captcha-key', default=None, help='Individual Anti-Captcha key')
    gen_parser.add_argument('--user-id', default='cli', help='Profile id in the profile store')
    gen_parser.add_argument('--username', default='cli', help='Username sent to the server')
    gen_parser.add_argument('--server', default=None, help='Pin a gateway server URL')
    gen_parser.add_argument('--page-host', default='cli.local', help='Host the client claims to run on')
    gen_parser.add_argument('--packaged', action='store_true', help='Behave like the desktop build')

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    if args.command == 'server':
        from api.config import config
        run_server(args.host or config.HOST, args.port or config.PORT, args.reload)

    elif args.command == 'check':
        if not check_environment():
            sys.exit(1)

    elif args.command == 'generate':
        sys.exit(asyncio.run(run_generation(args)))


if __name__ == "__main__":
    main()
