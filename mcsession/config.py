"""Configuration system for mcsession using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. pyproject.toml [tool.mcsession] section (project-level)
3. ./mcsession.toml (project-level, explicit)
4. ~/.config/mcsession/config.toml (user-level, overrides project)
5. Environment variables (highest priority)

Environment variables use MCSESSION_ prefix with nested delimiter __.
Example: MCSESSION_AUTH__EXPIRY_BUFFER_SECONDS, MCSESSION_VAULT__BACKEND
"""

from __future__ import annotations

import os
import sys

from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

if TYPE_CHECKING:
    from pydantic.fields import FieldInfo


#: Fixed loopback redirect registered for every tenant's installed package.
DEFAULT_REDIRECT_URI = "https://127.0.0.1:8443/callback"

#: Seconds subtracted from ``expires_in`` when a token is acquired.
DEFAULT_EXPIRY_BUFFER_SECONDS = 300

#: Service name used for every OS credential store entry.
DEFAULT_VAULT_SERVICE_NAME = "MC-API-Helper"


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    project_toml = Path("mcsession.toml")
    if project_toml.exists():
        files.append(project_toml)

    if sys.platform == "win32":
        user_config = Path(os.environ.get("APPDATA", "~")) / "mcsession" / "config.toml"
    else:
        user_config = Path("~/.config/mcsession/config.toml")
    user_config = user_config.expanduser()
    if user_config.exists():
        files.append(user_config)

    env_config = os.environ.get("MCSESSION_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config)
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files.

    Unreadable or invalid files are skipped.
    """
    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            data = tomllib.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError):
            continue

        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get("mcsession", {})

        merged = _deep_merge(merged, data)

    return merged


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


class TomlFilesSettingsSource(PydanticBaseSettingsSource):
    """Settings source for the merged TOML configuration files."""

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        # Values are supplied wholesale by __call__
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        return _load_toml_config()


# Field names that contain sensitive data and must be redacted in output.
_SENSITIVE_FIELDS: set[str] = {
    "callback_keyfile_password",
}

_REDACTED = "********"


class AuthSettings(BaseSettings):
    """Token exchange and login flow settings.

    Environment prefix: MCSESSION_AUTH__
    Example: MCSESSION_AUTH__LOGIN_TIMEOUT_SECONDS=600

    TOML section: [tool.mcsession.auth]
    """

    model_config = SettingsConfigDict(
        env_prefix="MCSESSION_AUTH__",
        extra="ignore",
    )

    redirect_uri: str = Field(
        default=DEFAULT_REDIRECT_URI,
        description="Loopback redirect URI registered with every tenant",
    )
    expiry_buffer_seconds: int = Field(
        default=DEFAULT_EXPIRY_BUFFER_SECONDS,
        ge=0,
        description="Seconds before nominal expiry at which a token is considered stale",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for token endpoint requests",
    )
    identity_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for the userinfo request",
    )
    login_timeout_seconds: float = Field(
        default=300.0,
        ge=10.0,
        description="Maximum seconds to wait for the authorization redirect",
    )
    callback_certfile: str | None = Field(
        default=None,
        description="TLS certificate for the loopback callback server",
    )
    callback_keyfile: str | None = Field(
        default=None,
        description="TLS private key for the loopback callback server",
    )
    callback_keyfile_password: str | None = Field(
        default=None,
        description="Password protecting the callback private key",
    )

    @field_validator("redirect_uri")
    @classmethod
    def _validate_redirect_uri(cls, v: str) -> str:
        """Require an absolute http(s) redirect URI."""
        if not v.startswith(("http://", "https://")):
            msg = f"redirect_uri must be an http(s) URL, got {v!r}"
            raise ValueError(msg)
        return v


class VaultSettings(BaseSettings):
    """Secret vault settings.

    Environment prefix: MCSESSION_VAULT__
    Example: MCSESSION_VAULT__BACKEND=memory
    """

    model_config = SettingsConfigDict(
        env_prefix="MCSESSION_VAULT__",
        extra="ignore",
    )

    backend: Literal["memory", "keyring"] = Field(
        default="keyring",
        description="Secret storage backend: keyring (OS credential store) or memory",
    )
    service_name: str = Field(
        default=DEFAULT_VAULT_SERVICE_NAME,
        min_length=1,
        description="Service name for OS credential store entries",
    )


class LogSettings(BaseSettings):
    """Logging settings.

    Environment prefix: MCSESSION_LOG__
    Example: MCSESSION_LOG__LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="MCSESSION_LOG__",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    format: str = "%(name)s - %(levelname)s - %(message)s"


class McSessionSettings(BaseSettings):
    """Main settings aggregating all configuration sections.

    Environment prefix: MCSESSION_

    Configuration sources (in order of precedence):
    1. Built-in defaults
    2. pyproject.toml [tool.mcsession] section
    3. ./mcsession.toml (project-level)
    4. ~/.config/mcsession/config.toml (user-level, overrides project)
    5. Environment variables (highest priority)
    """

    model_config = SettingsConfigDict(
        env_prefix="MCSESSION_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    auth: AuthSettings = Field(default_factory=AuthSettings)
    vault: VaultSettings = Field(default_factory=VaultSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Rank TOML files below environment variables, above defaults."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlFilesSettingsSource(settings_cls),
            file_secret_settings,
        )

    def show(self) -> str:
        """Format settings as a readable table."""
        lines = ["mcsession Configuration", "=" * 60, ""]

        show_sections = [
            ("Authentication", "auth"),
            ("Secret Vault", "vault"),
            ("Logging", "log"),
        ]

        all_data = self.model_dump(
            exclude={attr: _SENSITIVE_FIELDS for _, attr in show_sections},
        )

        for display_name, attr_name in show_sections:
            section_data = all_data.get(attr_name, {})
            lines.append(f"\n{display_name}")
            lines.append("-" * 40)
            for field_name, field_value in section_data.items():
                value_str = str(field_value)
                if len(value_str) > 50:
                    value_str = value_str[:47] + "..."
                lines.append(f"  {field_name:26} = {value_str}")
            section_cls = type(getattr(self, attr_name))
            lines.extend(
                f"  {rn:26} = {_REDACTED}"
                for rn in sorted(_SENSITIVE_FIELDS & section_cls.model_fields.keys())
            )

        return "\n".join(lines)


@lru_cache(maxsize=1)
def get_settings() -> McSessionSettings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return McSessionSettings()


def clear_settings() -> None:
    """Clear the cached settings to force reload."""
    get_settings.cache_clear()


def reload_settings() -> McSessionSettings:
    """Reload settings from all sources."""
    clear_settings()
    return get_settings()
