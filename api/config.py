"""
Unified Configuration Module for the Media Generation Gateway

All configuration settings are centralized here.
Import from this module: from api.config import config
"""

import os
import tempfile
import shutil
from typing import List, Optional
from dataclasses import dataclass, field


def _csv(value: str) -> List[str]:
    return [item.strip().rstrip("/") for item in value.split(",") if item.strip()]


@dataclass
class AppConfig:
    """Unified application configuration."""

    # === Server Settings ===
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "3001"))
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"

    # === CORS Settings ===
    CORS_ORIGINS: List[str] = field(default_factory=lambda: _csv(
        os.getenv("CORS_ORIGINS", "http://localhost:8080,http://localhost:3001")
    ))
    CORS_ALLOW_CREDENTIALS: bool = True

    # === Upstream Provider ===
    PROVIDER_API_BASE: str = os.getenv("PROVIDER_API_BASE", "https://aisandbox-pa.googleapis.com/v1")
    # Origin/Referer the provider expects from its own web client
    PROVIDER_ORIGIN: str = os.getenv("PROVIDER_ORIGIN", "https://labs.google")
    UPSTREAM_TIMEOUT_SECONDS: int = int(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "300"))

    # === Endpoint Routing (client side) ===
    LOCAL_SERVER_URL: str = os.getenv("LOCAL_SERVER_URL", "http://localhost:3001")
    APP_ORIGIN: str = os.getenv("APP_ORIGIN", "http://localhost:8080")
    DEFAULT_REMOTE_SERVER: str = os.getenv("DEFAULT_REMOTE_SERVER", "https://s1.mediagen-gateway.net")
    PROXY_SERVER_URLS: List[str] = field(default_factory=lambda: _csv(os.getenv(
        "PROXY_SERVER_URLS",
        "https://s1.mediagen-gateway.net,https://s2.mediagen-gateway.net,"
        "https://s3.mediagen-gateway.net,https://s4.mediagen-gateway.net",
    )))
    SLOT_COOLDOWN_SECONDS: int = int(os.getenv("SLOT_COOLDOWN_SECONDS", "10"))
    SIBLING_STAGGER_SECONDS: float = float(os.getenv("SIBLING_STAGGER_SECONDS", "0.5"))

    # === CAPTCHA Solving (Anti-Captcha) ===
    ANTICAPTCHA_API_URL: str = os.getenv("ANTICAPTCHA_API_URL", "https://api.anti-captcha.com")
    RECAPTCHA_SITE_KEY: str = os.getenv("RECAPTCHA_SITE_KEY", "")
    RECAPTCHA_PAGE_ACTION: str = os.getenv("RECAPTCHA_PAGE_ACTION", "FLOW_GENERATION")
    CAPTCHA_PAGE_URL: str = os.getenv("CAPTCHA_PAGE_URL", "https://labs.google/fx/tools/flow")
    CAPTCHA_TIMEOUT_SECONDS: int = int(os.getenv("CAPTCHA_TIMEOUT_SECONDS", "120"))
    CAPTCHA_POLL_INTERVAL_SECONDS: float = float(os.getenv("CAPTCHA_POLL_INTERVAL_SECONDS", "3"))
    CAPTCHA_PROJECT_ID: Optional[str] = os.getenv("CAPTCHA_PROJECT_ID") or None

    # === Profile Store (credential lookup, entitlements, slots, usage) ===
    PROFILE_STORE_URL: str = os.getenv("PROFILE_STORE_URL", "")
    PROFILE_STORE_KEY: Optional[str] = os.getenv("PROFILE_STORE_KEY")

    # === Video Combiner ===
    FFMPEG_PATH: str = os.getenv("FFMPEG_PATH") or shutil.which("ffmpeg") or "ffmpeg"
    FFMPEG_TIMEOUT_SECONDS: int = int(os.getenv("FFMPEG_TIMEOUT_SECONDS", "900"))
    TEMP_DIR: str = os.getenv("TEMP_DIR", tempfile.gettempdir())
    MAX_UPLOAD_SIZE_MB: int = int(os.getenv("MAX_UPLOAD_SIZE_MB", "500"))
    COMBINE_MIN_FILES: int = int(os.getenv("COMBINE_MIN_FILES", "2"))
    COMBINE_MAX_FILES: int = int(os.getenv("COMBINE_MAX_FILES", "10"))

    # === Logging ===
    LOG_DIR: str = os.getenv("LOG_DIR", "./logs")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    @property
    def max_upload_bytes(self) -> int:
        return self.MAX_UPLOAD_SIZE_MB * 1024 * 1024

    def validate(self) -> List[str]:
        """Validate configuration and return list of missing required settings."""
        missing = []

        if not self.PROVIDER_API_BASE.startswith(("http://", "https://")):
            missing.append("PROVIDER_API_BASE (must be an http(s) URL)")

        # Captcha solving silently degrades without a site key
        if not self.RECAPTCHA_SITE_KEY:
            missing.append("RECAPTCHA_SITE_KEY")

        # Token refetch, entitlements and slots all go through the profile store
        if not self.PROFILE_STORE_URL:
            missing.append("PROFILE_STORE_URL")

        if self.COMBINE_MIN_FILES < 2 or self.COMBINE_MAX_FILES < self.COMBINE_MIN_FILES:
            missing.append("COMBINE_MIN_FILES/COMBINE_MAX_FILES (need 2 <= min <= max)")

        return missing


# Global config instance
config = AppConfig()
