"""Configuration system for openconsole.

Two layers, mirroring each other:

- ``EnvConfig`` is a pydantic-settings model that also reads a local ``.env``.
- ``Config`` (exposed as the ``CONFIG`` singleton) re-reads ``os.environ`` on
  every property access, so tests and long-lived processes always see the
  current environment.
"""

import logging
import os
from functools import cache
from pathlib import Path
from typing import Any

import psutil
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_DEBUG_PORT = 9222
DEFAULT_DEBUG_HOST = 'localhost'
DEFAULT_POPUP_TIMEOUT_MS = 5000
DEFAULT_DATA_TIMEOUT_MS = 10000
DEFAULT_NAVIGATION_TIMEOUT_MS = 30000
DEFAULT_SECOND_FACTOR_TIMEOUT_MS = 300000


@cache
def is_running_in_docker() -> bool:
    """Detect if we are running in a docker container.

    Used to decide whether Chromium needs its sandbox disabled.
    """
    try:
        if Path('/.dockerenv').exists():
            return True
        cgroup_path = Path('/proc/1/cgroup')
        if cgroup_path.exists() and 'docker' in cgroup_path.read_text().lower():
            return True
    except OSError:
        pass

    try:
        # init proc (PID 1) that looks like python/uv/app means a container entrypoint
        init_cmd = ' '.join(psutil.Process(1).cmdline())
        if ('py' in init_cmd) or ('uv' in init_cmd) or ('app' in init_cmd):
            return True
    except (psutil.Error, OSError):
        pass

    try:
        # fewer than 10 running procs is almost certainly a container
        if len(psutil.pids()) < 10:
            return True
    except (psutil.Error, OSError):
        pass

    return False


def _env_bool(name: str, default: str = 'false') -> bool:
    return os.getenv(name, default).lower()[:1] in 'ty1'


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        parsed = int(float(value))
    except (TypeError, ValueError):
        logger.warning(f'Ignoring invalid value for {name}: {value!r}')
        return default
    return parsed if parsed >= 0 else default


class EnvConfig(BaseSettings):
    """Environment variable configuration using pydantic-settings."""

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=True,
        extra='allow',
    )

    # Logging
    OPENCONSOLE_LOGGING_LEVEL: str = Field(default='info')
    OPENCONSOLE_SETUP_LOGGING: bool = Field(default=True)

    # Browser connection
    OPENCONSOLE_DEBUG_PORT: int = Field(default=DEFAULT_DEBUG_PORT)
    OPENCONSOLE_DEBUG_HOST: str = Field(default=DEFAULT_DEBUG_HOST)
    OPENCONSOLE_HEADLESS: bool | None = Field(default=None)
    OPENCONSOLE_EXECUTABLE_PATH: str | None = Field(default=None)

    # Step timeouts (milliseconds)
    OPENCONSOLE_POPUP_TIMEOUT_MS: int = Field(default=DEFAULT_POPUP_TIMEOUT_MS)
    OPENCONSOLE_DATA_TIMEOUT_MS: int = Field(default=DEFAULT_DATA_TIMEOUT_MS)
    OPENCONSOLE_NAVIGATION_TIMEOUT_MS: int = Field(default=DEFAULT_NAVIGATION_TIMEOUT_MS)
    OPENCONSOLE_SECOND_FACTOR_TIMEOUT_MS: int = Field(default=DEFAULT_SECOND_FACTOR_TIMEOUT_MS)

    # Extraction sub-flow
    SSL_VPN_CONSOLE_URL: str | None = Field(default=None)
    OPENCONSOLE_EXTRACTION_URL: str | None = Field(default=None)

    # Runtime hints
    IN_DOCKER: bool | None = Field(default=None)


class Config:
    """Configuration class backed by the process environment.

    Re-reads environment variables on every access for flexibility.
    """

    _instance: 'Config | None' = None

    def __new__(cls) -> 'Config':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def LOGGING_LEVEL(self) -> str:
        return os.getenv('OPENCONSOLE_LOGGING_LEVEL', 'info').lower()

    @property
    def SETUP_LOGGING(self) -> bool:
        return _env_bool('OPENCONSOLE_SETUP_LOGGING', 'true')

    @property
    def DEBUG_PORT(self) -> int:
        return _env_int('OPENCONSOLE_DEBUG_PORT', DEFAULT_DEBUG_PORT)

    @property
    def DEBUG_HOST(self) -> str:
        return os.getenv('OPENCONSOLE_DEBUG_HOST', DEFAULT_DEBUG_HOST)

    @property
    def HEADLESS(self) -> bool:
        return _env_bool('OPENCONSOLE_HEADLESS', 'true')

    @property
    def EXECUTABLE_PATH(self) -> str | None:
        return os.getenv('OPENCONSOLE_EXECUTABLE_PATH') or None

    @property
    def POPUP_TIMEOUT_MS(self) -> int:
        return _env_int('OPENCONSOLE_POPUP_TIMEOUT_MS', DEFAULT_POPUP_TIMEOUT_MS)

    @property
    def DATA_TIMEOUT_MS(self) -> int:
        return _env_int('OPENCONSOLE_DATA_TIMEOUT_MS', DEFAULT_DATA_TIMEOUT_MS)

    @property
    def NAVIGATION_TIMEOUT_MS(self) -> int:
        return _env_int('OPENCONSOLE_NAVIGATION_TIMEOUT_MS', DEFAULT_NAVIGATION_TIMEOUT_MS)

    @property
    def SECOND_FACTOR_TIMEOUT_MS(self) -> int:
        return _env_int('OPENCONSOLE_SECOND_FACTOR_TIMEOUT_MS', DEFAULT_SECOND_FACTOR_TIMEOUT_MS)

    @property
    def EXTRACTION_URL(self) -> str | None:
        """URL of the extraction page, used to return there after a detail modal."""
        return os.getenv('SSL_VPN_CONSOLE_URL') or os.getenv('OPENCONSOLE_EXTRACTION_URL') or None

    # Runtime hints
    @property
    def IN_DOCKER(self) -> bool:
        return _env_bool('IN_DOCKER') or is_running_in_docker()


# Create singleton instance
CONFIG = Config()


def load_openconsole_config() -> dict[str, Any]:
    """Load connection and timeout defaults, including values from a local ``.env``."""
    env_config = EnvConfig()
    headless = env_config.OPENCONSOLE_HEADLESS
    if headless is None:
        headless = CONFIG.HEADLESS
    return {
        'debug_port': env_config.OPENCONSOLE_DEBUG_PORT,
        'debug_host': env_config.OPENCONSOLE_DEBUG_HOST,
        'headless': headless,
        'executable_path': env_config.OPENCONSOLE_EXECUTABLE_PATH,
        'popup_timeout_ms': env_config.OPENCONSOLE_POPUP_TIMEOUT_MS,
        'data_timeout_ms': env_config.OPENCONSOLE_DATA_TIMEOUT_MS,
        'navigation_timeout_ms': env_config.OPENCONSOLE_NAVIGATION_TIMEOUT_MS,
        'second_factor_timeout_ms': env_config.OPENCONSOLE_SECOND_FACTOR_TIMEOUT_MS,
        'extraction_url': env_config.SSL_VPN_CONSOLE_URL or env_config.OPENCONSOLE_EXTRACTION_URL,
        'in_docker': env_config.IN_DOCKER if env_config.IN_DOCKER is not None else is_running_in_docker(),
    }
