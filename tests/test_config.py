"""Tests for configuration, launch profiles and logging setup."""

import io
import logging

import pytest
from pydantic import ValidationError

from openconsole.auth.views import AuthTimeouts
from openconsole.browser.events import _get_timeout
from openconsole.browser.profile import LaunchConfig, ViewportSize
from openconsole.config import CONFIG, DEFAULT_DEBUG_PORT, load_openconsole_config
from openconsole.logging_config import setup_logging


class TestLaunchConfig:
    """Tests for launch options and fingerprints."""

    def test_fingerprint_is_deterministic(self):
        first = LaunchConfig(headless=True, no_sandbox=False, args=["--b", "--a"])
        second = LaunchConfig(headless=True, no_sandbox=False, args=["--a", "--b"])

        assert first.fingerprint() == second.fingerprint()
        assert first.fingerprint().startswith("chromium-")

    def test_fingerprint_ignores_page_options(self):
        base = LaunchConfig(no_sandbox=False)
        tuned = LaunchConfig(
            no_sandbox=False,
            default_timeout=1,
            navigation_timeout=2,
            viewport=ViewportSize(width=800, height=600),
            user_agent="console-agent",
        )

        assert base.fingerprint() == tuned.fingerprint()

    def test_fingerprint_tracks_launch_options(self):
        assert LaunchConfig(headless=True).fingerprint() != LaunchConfig(headless=False).fingerprint()

    def test_sandbox_args(self):
        assert LaunchConfig(no_sandbox=True).get_args()[:2] == ["--no-sandbox", "--disable-setuid-sandbox"]
        assert "--no-sandbox" not in LaunchConfig(no_sandbox=False).get_args()

    def test_extra_args_are_not_duplicated(self):
        config = LaunchConfig(no_sandbox=True, args=["--no-sandbox", "--mute-audio"])

        assert config.get_args().count("--no-sandbox") == 1
        assert config.get_args()[-1] == "--mute-audio"

    def test_launch_kwargs(self):
        config = LaunchConfig(headless=False, no_sandbox=False, executable_path="/usr/bin/chromium")

        assert config.launch_kwargs() == {"headless": False, "args": [], "executable_path": "/usr/bin/chromium"}

    def test_unsupported_engine(self):
        with pytest.raises(ValidationError):
            LaunchConfig(browser_type="firefox")
        assert issubclass(ValidationError, ValueError)

    def test_page_options(self):
        options = LaunchConfig(viewport={"width": 1280, "height": 720}, ignoreHTTPSErrors=True).page_options()

        assert options.new_page_kwargs() == {
            "viewport": {"width": 1280, "height": 720},
            "ignore_https_errors": True,
        }


class TestConfig:
    """Tests for environment-backed settings."""

    def test_properties_follow_environment(self, monkeypatch):
        monkeypatch.setenv("OPENCONSOLE_DEBUG_PORT", "9333")
        monkeypatch.setenv("OPENCONSOLE_POPUP_TIMEOUT_MS", "250")
        assert CONFIG.DEBUG_PORT == 9333
        assert CONFIG.POPUP_TIMEOUT_MS == 250

        monkeypatch.delenv("OPENCONSOLE_DEBUG_PORT")
        assert CONFIG.DEBUG_PORT == DEFAULT_DEBUG_PORT

    def test_invalid_numbers_fall_back(self, monkeypatch):
        monkeypatch.setenv("OPENCONSOLE_DEBUG_PORT", "not-a-port")
        monkeypatch.setenv("OPENCONSOLE_DATA_TIMEOUT_MS", "-5")

        assert CONFIG.DEBUG_PORT == DEFAULT_DEBUG_PORT
        assert CONFIG.DATA_TIMEOUT_MS == 10000

    def test_extraction_url_prefers_legacy_name(self, monkeypatch):
        monkeypatch.setenv("OPENCONSOLE_EXTRACTION_URL", "https://b.example.com")
        monkeypatch.setenv("SSL_VPN_CONSOLE_URL", "https://a.example.com")

        assert CONFIG.EXTRACTION_URL == "https://a.example.com"

    def test_load_openconsole_config(self, monkeypatch):
        monkeypatch.setenv("OPENCONSOLE_DEBUG_HOST", "10.0.0.5")
        monkeypatch.setenv("OPENCONSOLE_HEADLESS", "false")

        config = load_openconsole_config()

        assert config["debug_host"] == "10.0.0.5"
        assert config["headless"] is False
        assert config["second_factor_timeout_ms"] == 300000

    def test_auth_timeouts_from_config(self, monkeypatch):
        monkeypatch.setenv("OPENCONSOLE_SECOND_FACTOR_TIMEOUT_MS", "1500")

        assert AuthTimeouts.from_config().second_factor_ms == 1500


class TestLogging:
    """Tests for logging setup."""

    def test_writes_in_package_format(self):
        stream = io.StringIO()

        logger = setup_logging(stream=stream, log_level="debug", force_setup=True)
        logging.getLogger("openconsole.browser.pool").debug("pool ready")

        assert logger.level == logging.DEBUG
        assert " - openconsole.browser.pool - DEBUG - pool ready" in stream.getvalue()

    def test_disabled_by_environment(self, monkeypatch):
        monkeypatch.setenv("OPENCONSOLE_SETUP_LOGGING", "false")
        logger = logging.getLogger("openconsole")
        before = list(logger.handlers)

        setup_logging(stream=io.StringIO())

        assert logger.handlers == before

    def test_unknown_level_defaults_to_info(self):
        logger = setup_logging(stream=io.StringIO(), log_level="chatty", force_setup=True)

        assert logger.level == logging.INFO


def test_event_timeout_from_environment(monkeypatch):
    monkeypatch.setenv("TIMEOUT_ConsoleEvent", "2.5")
    assert _get_timeout("TIMEOUT_ConsoleEvent", 10.0) == 2.5

    monkeypatch.setenv("TIMEOUT_ConsoleEvent", "soon")
    assert _get_timeout("TIMEOUT_ConsoleEvent", 10.0) == 10.0

    monkeypatch.setenv("TIMEOUT_ConsoleEvent", "-1")
    assert _get_timeout("TIMEOUT_ConsoleEvent", 10.0) == 10.0
