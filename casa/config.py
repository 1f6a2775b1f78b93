"""Configuration management for the CASA admin portal."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Optional

import yaml


_DELIVERY_METHODS = {"smtp", "memory", "log"}


def _env_flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class MailSettings:
    """Outbound email configuration."""

    delivery_method: str = "log"
    host: Optional[str] = None
    port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = True
    use_ssl: bool = False
    from_address: str = "no-reply@casa.local"

    @staticmethod
    def from_dict(data: Dict[str, object]) -> "MailSettings":
        """Create a :class:`MailSettings` from raw dictionary data."""
        method = str(data.get("delivery_method", "log")).strip().lower()
        if method not in _DELIVERY_METHODS:
            raise ValueError(
                f"Unknown mail delivery method '{method}'; expected one of {', '.join(sorted(_DELIVERY_METHODS))}"
            )

        return MailSettings(
            delivery_method=method,
            host=str(data["host"]) if data.get("host") else None,
            port=int(data.get("port", 587)),
            username=str(data["username"]) if data.get("username") else None,
            password=str(data["password"]) if data.get("password") is not None else None,
            use_tls=bool(data.get("use_tls", True)),
            use_ssl=bool(data.get("use_ssl", False)),
            from_address=str(data.get("from_address", "no-reply@casa.local")),
        )


@dataclass(frozen=True)
class Settings:
    """Top-level settings for the web application and CLI."""

    database_path: Path
    session_secret: Optional[str] = None
    secure_cookies: bool = False
    base_url: str = "http://localhost:8000"
    mail: MailSettings = field(default_factory=MailSettings)

    @staticmethod
    def from_dict(data: Dict[str, object], base_path: Path | None = None) -> "Settings":
        raw_db_path = data.get("database_path")
        if raw_db_path:
            candidate = Path(str(raw_db_path)).expanduser()
            if not candidate.is_absolute() and base_path is not None:
                candidate = base_path / candidate
            database_path = candidate.resolve(strict=False)
        else:
            database_path = resolve_database_path(None)

        mail_raw = data.get("mail") or {}
        if not isinstance(mail_raw, dict):
            raise ValueError("The 'mail' configuration entry must be a mapping")

        secret = data.get("session_secret")
        return Settings(
            database_path=database_path,
            session_secret=str(secret) if secret else None,
            secure_cookies=bool(data.get("secure_cookies", False)),
            base_url=str(data.get("base_url", "http://localhost:8000")).rstrip("/"),
            mail=MailSettings.from_dict(mail_raw),
        )


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "casa.sqlite3").resolve(strict=False)


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the configuration file."""
    if env_value:
        candidate = Path(env_value).expanduser().resolve(strict=False)
    else:
        candidate = (Path(__file__).resolve().parent.parent / "config" / "casa.yaml").resolve(strict=False)
    return candidate


def _apply_env_overrides(settings: Settings) -> Settings:
    mail = settings.mail
    mail_overrides: Dict[str, object] = {}

    delivery = os.getenv("CASA_MAIL_DELIVERY")
    if delivery:
        mail_overrides["delivery_method"] = delivery.strip().lower()
    if os.getenv("CASA_SMTP_HOST"):
        mail_overrides["host"] = os.environ["CASA_SMTP_HOST"].strip()
    if os.getenv("CASA_SMTP_PORT"):
        mail_overrides["port"] = int(os.environ["CASA_SMTP_PORT"])
    if os.getenv("CASA_SMTP_USERNAME"):
        mail_overrides["username"] = os.environ["CASA_SMTP_USERNAME"]
    if os.getenv("CASA_SMTP_PASSWORD") is not None:
        mail_overrides["password"] = os.environ["CASA_SMTP_PASSWORD"]
    if os.getenv("CASA_MAIL_FROM"):
        mail_overrides["from_address"] = os.environ["CASA_MAIL_FROM"].strip()

    if delivery and mail_overrides["delivery_method"] not in _DELIVERY_METHODS:
        raise ValueError(f"Unknown mail delivery method '{delivery}'")
    if mail_overrides:
        mail = replace(mail, **mail_overrides)

    overrides: Dict[str, object] = {"mail": mail}
    if os.getenv("CASA_DB_PATH"):
        overrides["database_path"] = resolve_database_path(os.environ["CASA_DB_PATH"])
    if os.getenv("CASA_SESSION_SECRET"):
        overrides["session_secret"] = os.environ["CASA_SESSION_SECRET"]
    if os.getenv("CASA_SESSION_SECURE") is not None:
        overrides["secure_cookies"] = _env_flag(os.getenv("CASA_SESSION_SECURE"))
    if os.getenv("CASA_BASE_URL"):
        overrides["base_url"] = os.environ["CASA_BASE_URL"].strip().rstrip("/")

    return replace(settings, **overrides)


def load_settings(config_path: Path | None = None) -> Settings:
    """Load settings from the YAML file (when present) and the environment."""

    path = config_path or resolve_config_path(os.getenv("CASA_CONFIG_PATH"))
    if path.exists():
        with path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")
        settings = Settings.from_dict(raw, base_path=path.parent)
    else:
        settings = Settings(database_path=resolve_database_path(None))

    return _apply_env_overrides(settings)


__all__ = [
    "MailSettings",
    "Settings",
    "load_settings",
    "resolve_config_path",
    "resolve_database_path",
]
