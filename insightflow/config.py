"""
Process configuration from environment variables (``.env`` supported).

Paths:
  INSIGHTFLOW_DATA_DIR    private state: accounts, settings, secrets (default ~/.insightflow)
  INSIGHTFLOW_SHARED_DIR  container shared with the widget process: cache and
                          credentials projection (default <data dir>/shared)
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

SUPPORTED_LOCALES = ("en", "de")
SECRET_BACKENDS = ("file", "secret_manager", "memory")


def _env(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _float_env(name: str, default: float) -> float:
    raw = _env(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


@dataclass(frozen=True)
class InsightFlowConfig:
    data_dir: Path
    shared_dir: Path
    locale: str = "en"
    secret_backend: str = "file"
    master_key: Optional[str] = None
    discord_webhook_url: Optional[str] = None
    http_timeout: float = 30.0
    realtime_interval: float = 10.0
    google_project_id: Optional[str] = None

    @property
    def cache_dir(self) -> Path:
        return self.shared_dir / "AnalyticsCache"

    @property
    def accounts_path(self) -> Path:
        return self.data_dir / "accounts.json"

    @property
    def settings_path(self) -> Path:
        return self.data_dir / "notification_settings.json"

    @property
    def secrets_path(self) -> Path:
        return self.data_dir / "secrets.enc"

    @property
    def triggers_path(self) -> Path:
        return self.data_dir / "scheduled_notifications.json"

    @staticmethod
    def from_env() -> "InsightFlowConfig":
        load_dotenv()

        data_dir = Path(_env("INSIGHTFLOW_DATA_DIR") or Path.home() / ".insightflow").expanduser()
        shared_raw = _env("INSIGHTFLOW_SHARED_DIR")
        shared_dir = Path(shared_raw).expanduser() if shared_raw else data_dir / "shared"

        locale = _env("INSIGHTFLOW_LOCALE", "en").lower()
        if locale not in SUPPORTED_LOCALES:
            raise ValueError(f"INSIGHTFLOW_LOCALE must be one of {', '.join(SUPPORTED_LOCALES)}, got {locale!r}")

        secret_backend = _env("INSIGHTFLOW_SECRET_BACKEND", "file").lower()
        if secret_backend not in SECRET_BACKENDS:
            raise ValueError(
                f"INSIGHTFLOW_SECRET_BACKEND must be one of {', '.join(SECRET_BACKENDS)}, got {secret_backend!r}"
            )

        return InsightFlowConfig(
            data_dir=data_dir,
            shared_dir=shared_dir,
            locale=locale,
            secret_backend=secret_backend,
            master_key=_env("INSIGHTFLOW_MASTER_KEY") or None,
            discord_webhook_url=_env("DISCORD_WEBHOOK_URL") or None,
            http_timeout=_float_env("INSIGHTFLOW_HTTP_TIMEOUT", 30.0),
            realtime_interval=_float_env("INSIGHTFLOW_REALTIME_INTERVAL", 10.0),
            google_project_id=_env("GOOGLE_PROJECT_ID") or _env("GOOGLE_CLOUD_PROJECT") or None,
        )


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=(level or _env("LOG_LEVEL", "INFO")).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
