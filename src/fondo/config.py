"""Application configuration objects and helpers."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    """Interpret environment variable values as booleans."""

    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}") from exc


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc


class BaseConfig:
    """Base configuration shared across environments."""

    APP_NAME = "Fondo"
    DB_FILENAME = "fondo.db"
    ENV_PREFIX = "FONDO_"
    # applied to every new SQLite connection
    SQLITE_PRAGMAS = {"journal_mode": "wal", "foreign_keys": "on"}

    # Savings policy defaults; each can be overridden with FONDO_<NAME>.
    POLICY_DEFAULTS = {
        "MIN_MONTHLY_CONTRIBUTION": "15000",
        "WITHDRAWAL_FEE_PERCENT": "2",
        "MAX_WITHDRAWALS_PER_MONTH": "2",
        "FINE_AMOUNT": "10000",
        "MIN_DEPOSIT_AMOUNT": "1000",
        "MIN_WITHDRAWAL_AMOUNT": "5000",
    }

    def __init__(self) -> None:
        self.DATA_DIR = self._resolve_data_dir()
        self.DEV_MODE = _env_bool("FONDO_DEV_MODE", default=True)
        self.DATABASE_URL = os.getenv("FONDO_DATABASE_URL", self._build_sqlite_url())
        self.TIMEZONE = os.getenv("FONDO_TIMEZONE", "UTC")
        self.STORE_TIMEOUT = _env_float("FONDO_STORE_TIMEOUT", 15.0)
        self.STORE_RETRIES = _env_int("FONDO_STORE_RETRIES", 3)
        self.STORE_BACKOFF = _env_float("FONDO_STORE_BACKOFF", 0.05)
        self.MAX_APPLY_RETRIES = _env_int("FONDO_MAX_APPLY_RETRIES", 5)
        self.VERIFY_BEFORE_WRITE = _env_bool("FONDO_VERIFY_BEFORE_WRITE", default=False)
        self.POLICY = {
            name: os.getenv(f"{self.ENV_PREFIX}{name}", default)
            for name, default in self.POLICY_DEFAULTS.items()
        }
        if self.STORE_TIMEOUT <= 0:
            raise ValueError("FONDO_STORE_TIMEOUT must be positive.")
        if self.MAX_APPLY_RETRIES < 0 or self.STORE_RETRIES < 0:
            raise ValueError("Retry counts cannot be negative.")

    def _resolve_data_dir(self) -> Path:
        """Return the directory where the SQLite file and logs live."""

        data_root = os.getenv("FONDO_DATA_DIR", "instance")
        path = Path(data_root).expanduser().resolve()
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _build_sqlite_url(self) -> str:
        """Construct the default SQLite URL inside the data directory."""

        db_path = self.DATA_DIR / self.DB_FILENAME
        return f"sqlite:///{db_path}"

    def sqlalchemy_engine_options(self) -> dict[str, Any]:
        """Expose engine kwargs for SQLModel to consume."""

        engine_options: dict[str, Any] = {}
        if self.DATABASE_URL.startswith("sqlite"):
            # busy timeout: writers wait this long for the file lock, then fail
            engine_options["connect_args"] = {
                "check_same_thread": False,
                "timeout": self.STORE_TIMEOUT,
            }
        else:
            engine_options["pool_timeout"] = self.STORE_TIMEOUT
            engine_options["pool_pre_ping"] = True
        return engine_options


class DevConfig(BaseConfig):
    """Development configuration using local SQLite."""

    DEBUG = True
    TESTING = False
