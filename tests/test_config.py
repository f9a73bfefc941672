"""
Tests for configuration and the diagnostic log.
"""

from api.config import AppConfig
from core.diagnostics import DiagnosticLog


class TestAppConfig:

    def test_defaults(self):
        cfg = AppConfig()

        assert cfg.PORT > 0
        assert cfg.COMBINE_MIN_FILES == 2
        assert cfg.COMBINE_MAX_FILES == 10
        assert cfg.max_upload_bytes == cfg.MAX_UPLOAD_SIZE_MB * 1024 * 1024
        assert all(not url.endswith("/") for url in cfg.PROXY_SERVER_URLS)

    def test_validate_reports_problems(self):
        cfg = AppConfig()
        cfg.PROVIDER_API_BASE = "ftp://nope"
        cfg.RECAPTCHA_SITE_KEY = ""
        cfg.PROFILE_STORE_URL = ""
        cfg.COMBINE_MAX_FILES = 1

        missing = cfg.validate()

        assert any(item.startswith("PROVIDER_API_BASE") for item in missing)
        assert "RECAPTCHA_SITE_KEY" in missing
        assert "PROFILE_STORE_URL" in missing
        assert any(item.startswith("COMBINE_MIN_FILES") for item in missing)

    def test_validate_clean(self):
        cfg = AppConfig()
        cfg.PROVIDER_API_BASE = "https://provider.example.net/v1"
        cfg.RECAPTCHA_SITE_KEY = "site-key"
        cfg.PROFILE_STORE_URL = "https://profiles.example.net"
        cfg.COMBINE_MIN_FILES = 2
        cfg.COMBINE_MAX_FILES = 10

        assert cfg.validate() == []


class TestDiagnosticLog:

    def test_bounded(self):
        log = DiagnosticLog(max_entries=2)

        for i in range(3):
            log.record(model="VEO GENERATE", prompt="Failed using Personal token", error=f"err {i}")

        assert len(log) == 2
        assert [e.error for e in log.entries()] == ["err 1", "err 2"]
        entry = log.entries()[0].to_dict()
        assert entry["status"] == "Error"
        assert entry["output"] == "err 1"

    def test_clear(self):
        log = DiagnosticLog()
        log.record("m", "p", "e")
        log.clear()
        assert log.entries() == []
