"""Authentication view models: credentials, states, selectors and timeouts."""

import json
from enum import Enum
from pathlib import Path

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from openconsole.config import CONFIG, DEFAULT_NAVIGATION_TIMEOUT_MS, DEFAULT_SECOND_FACTOR_TIMEOUT_MS


class CredentialBundle(BaseModel):
    """Login credentials and target URLs for one console account.

    Immutable. ``password`` and ``second_factor_code`` are secrets and render
    masked in reprs and logs.
    """

    model_config = ConfigDict(
        frozen=True,
        extra='ignore',
        validate_by_name=True,
        validate_by_alias=True,
    )

    auth_url: str = Field(validation_alias=AliasChoices('auth_url', 'authUrl'))
    console_url: str | None = Field(default=None, validation_alias=AliasChoices('console_url', 'consoleUrl'))
    extraction_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices('extraction_url', 'ssl_vpn_console_url', 'sslVpnConsoleUrl'),
    )
    login_alias: str = Field(validation_alias=AliasChoices('login_alias', 'loginAlias'))
    username: str
    password: SecretStr
    second_factor_code: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices('second_factor_code', 'sms_code', 'smsCode'),
    )

    @property
    def has_second_factor_code(self) -> bool:
        return bool(self.second_factor_code and self.second_factor_code.get_secret_value())

    def without_second_factor_code(self) -> 'CredentialBundle':
        """Copy with the code removed, forcing the manual second factor path."""
        return self.model_copy(update={'second_factor_code': None})

    @classmethod
    def from_env(cls) -> 'CredentialBundle':
        """Read ``OPENCONSOLE_*`` variables (and a local ``.env``)."""
        settings = CredentialSettings()
        return cls(
            auth_url=settings.auth_url,
            console_url=settings.console_url,
            extraction_url=settings.extraction_url or CONFIG.EXTRACTION_URL,
            login_alias=settings.login_alias,
            username=settings.username,
            password=settings.password,
            second_factor_code=settings.second_factor_code,
        )

    @classmethod
    def from_file(cls, path: str | Path) -> 'CredentialBundle':
        """Load credentials from a JSON file. Both snake_case and camelCase keys are accepted."""
        data = json.loads(Path(path).read_text(encoding='utf-8'))
        return cls.model_validate(data)


class CredentialSettings(BaseSettings):
    """Credential fields read from the environment."""

    model_config = SettingsConfigDict(
        env_prefix='OPENCONSOLE_',
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore',
    )

    auth_url: str
    console_url: str | None = None
    extraction_url: str | None = None
    login_alias: str
    username: str
    password: SecretStr
    second_factor_code: SecretStr | None = None


class AuthState(str, Enum):
    START = 'start'
    NAVIGATED_TO_LOGIN = 'navigated_to_login'
    CREDENTIALS_SUBMITTED = 'credentials_submitted'
    SECOND_FACTOR_TRIGGERED = 'second_factor_triggered'
    SECOND_FACTOR_AUTOMATED = 'second_factor_automated'
    SECOND_FACTOR_MANUAL_WAIT = 'second_factor_manual_wait'
    SECOND_FACTOR_SUBMITTED = 'second_factor_submitted'
    VERIFIED = 'verified'
    FAILED = 'failed'


class AuthSelectors(BaseModel):
    """CSS selectors of the login page controls."""

    login_alias: str = '#loginAlias'
    username: str = '#username'
    password: str = '#passwordPlain'
    submit: str = '#loginForm > button'
    second_factor_trigger: str = '#app > div.popup > div.panel.certi > div.content > div:nth-child(3) > div.btn-wrap > a'
    second_factor_input: str = '#loginForm > div > input[type=text]'
    second_factor_submit: str = '#loginForm > a'


class AuthTimeouts(BaseModel):
    """Per-step bounds in milliseconds."""

    element_ms: float = Field(default=30000, ge=0)
    navigation_ms: float = Field(default=DEFAULT_NAVIGATION_TIMEOUT_MS, ge=0)
    second_factor_ms: float = Field(default=DEFAULT_SECOND_FACTOR_TIMEOUT_MS, ge=0)
    verification_ms: float = Field(default=60000, ge=0)
    poll_interval_ms: float = Field(default=100, gt=0)
    # the manual code counts as entered once it is longer than this
    min_code_length: int = Field(default=5, ge=0)

    @classmethod
    def from_config(cls) -> 'AuthTimeouts':
        return cls(
            navigation_ms=CONFIG.NAVIGATION_TIMEOUT_MS,
            second_factor_ms=CONFIG.SECOND_FACTOR_TIMEOUT_MS,
        )


DEFAULT_VERIFICATION_FRAGMENTS = ('console', 'dashboard')
