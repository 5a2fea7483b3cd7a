"""
Configuration module for the scan classifier.

Two sources feed the daemon:

- environment variables (optionally from a ``.env`` file) for process-level
  settings such as API keys, timeouts and retry counts, loaded by `Settings`;
- a YAML file (``daemon.yml`` by default) describing the FTP drop box and the
  tenants, loaded by `DaemonConfig.load`.

Both raise ``ValueError`` for missing or invalid values so the entry point can
treat every configuration problem the same way.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Literal

import openai
import yaml

from .storage.base import GoogleDriveConfig, NextcloudConfig, StorageConfig

DEFAULT_CATEGORIES: dict[str, str] = {
    "bizfactory": "A document that is related to my work at Biz Factory GmbH",
    "ids": "A scan of an ID card, passport, or similar card",
    "klausuren": "A scan of an exam or similar",
    "schule": "A document that is related to my school education",
    "sparkasse": "A document that is related to my bank account at Sparkasse",
    "deka": "A document that is related to my investment at Deka",
    "db": "A document that is related to Deutsche Bahn",
    "taxes": "A document that is related to taxes",
    "comdirect": "A document that is related to my bank account at Comdirect",
    "th-koeln": "A document that is related to my studies at Technische Hochschule Köln",
    "tk": "A document that is related to my health insurance at TK (Techniker Krankenkasse)",
    "gov": "A document that is issued by a government or other official institution",
    "hildebrandtstraße": "A document that is related to the apartment at Hildebrandtstraße 8",
    "check24": "A document that is related to my work at Check24",
    "insurance": "A document that is related to insurance",
    "misc": "A document that does not fit into any of the above categories",
    "rheinbahn": "A document that is related to Rheinbahn",
    "hs-bochum": "A document that is related to my studies at Hochschule Bochum",
}


class Settings:
    """
    A container for all process settings, loaded from environment variables.

    Optional settings fall back to defaults; missing required settings raise
    ``ValueError``.
    """

    # --- LLM Provider Configuration ---
    LLM_PROVIDER: Literal["openai", "ollama"]
    OLLAMA_BASE_URL: str | None
    OPENAI_API_KEY: str | None
    CLASSIFY_MODEL: str
    CLASSIFY_FALLBACK_MODEL: str
    REQUEST_TIMEOUT: int

    # --- Files ---
    CONFIG_FILE: str
    TOKEN_DB: str
    GOOGLE_CLIENT_SECRETS: str

    # --- Secrets that may override the YAML file ---
    TELEGRAM_TOKEN: str | None
    FTP_PASSWORD: str | None

    # --- Watch loop ---
    POLL_INTERVAL: int
    MAX_ATTEMPTS: int
    RETRY_DELAY: int
    SETTLE_DELAY: int
    FTP_TIMEOUT: int

    # --- OCR / classification ---
    OCR_LANGUAGE: str
    OCR_BINARY: str
    OCR_TIMEOUT: int
    MAX_CLASSIFY_CHARS: int

    # --- Storage ---
    STORAGE_ROOT: str

    # --- Logging ---
    LOG_LEVEL: str
    LOG_FORMAT: Literal["console", "json"]

    def __init__(self):
        """
        Loads settings from environment variables and performs validation.
        """
        self.LLM_PROVIDER = os.getenv("LLM_PROVIDER", "openai")
        if self.LLM_PROVIDER not in ("openai", "ollama"):
            raise ValueError("LLM_PROVIDER must be 'openai' or 'ollama'")

        if self.LLM_PROVIDER == "ollama":
            self.OLLAMA_BASE_URL = os.getenv(
                "OLLAMA_BASE_URL", "http://localhost:11434/v1/"
            )
            self.OPENAI_API_KEY = None  # Not used for Ollama
            self.CLASSIFY_MODEL = os.getenv("CLASSIFY_MODEL", "gemma3:27b")
        else:
            self.OLLAMA_BASE_URL = None
            self.OPENAI_API_KEY = self._get_required_env("OPENAI_API_KEY")
            self.CLASSIFY_MODEL = os.getenv("CLASSIFY_MODEL", "gpt-4o")
        self.CLASSIFY_FALLBACK_MODEL = os.getenv("CLASSIFY_FALLBACK_MODEL", "")
        self.REQUEST_TIMEOUT = int(os.getenv("REQUEST_TIMEOUT", 180))

        self.CONFIG_FILE = os.getenv("CONFIG_FILE", "daemon.yml")
        self.TOKEN_DB = os.getenv("TOKEN_DB", "tokens.db")
        self.GOOGLE_CLIENT_SECRETS = os.getenv("GOOGLE_CLIENT_SECRETS", "creds.json")

        self.TELEGRAM_TOKEN = os.getenv("TELEGRAM_TOKEN") or None
        self.FTP_PASSWORD = os.getenv("FTP_PASSWORD") or None

        self.POLL_INTERVAL = int(os.getenv("POLL_INTERVAL", 5))
        self.MAX_ATTEMPTS = int(os.getenv("MAX_ATTEMPTS", 5))
        if self.MAX_ATTEMPTS < 1:
            raise ValueError("MAX_ATTEMPTS must be >= 1")
        self.RETRY_DELAY = int(os.getenv("RETRY_DELAY", 5))
        self.SETTLE_DELAY = int(os.getenv("SETTLE_DELAY", 10))
        self.FTP_TIMEOUT = int(os.getenv("FTP_TIMEOUT", 5))

        self.OCR_LANGUAGE = os.getenv("OCR_LANGUAGE", "deu")
        self.OCR_BINARY = os.getenv("OCR_BINARY", "ocrmypdf")
        self.OCR_TIMEOUT = int(os.getenv("OCR_TIMEOUT", 600))
        self.MAX_CLASSIFY_CHARS = int(os.getenv("MAX_CLASSIFY_CHARS", 2000))

        self.STORAGE_ROOT = os.getenv("STORAGE_ROOT", "Documents/scans").strip("/")

        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.LOG_FORMAT = os.getenv("LOG_FORMAT", "console")
        if self.LOG_FORMAT not in ("console", "json"):
            raise ValueError("LOG_FORMAT must be 'console' or 'json'")

    def _get_required_env(self, var_name: str) -> str:
        """
        Gets a required environment variable, raising an error if it's not set.
        """
        value = os.getenv(var_name)
        if value is None:
            raise ValueError(f"Required environment variable '{var_name}' is not set.")
        return value


def setup_libraries(settings: Settings) -> None:
    """
    Configures third-party libraries based on the application settings.
    """
    if settings.LLM_PROVIDER == "ollama":
        openai.base_url = settings.OLLAMA_BASE_URL
        openai.api_key = "dummy"
    else:
        openai.api_key = settings.OPENAI_API_KEY


@dataclass(frozen=True)
class FtpConfig:
    host: str
    username: str
    password: str
    path: str
    port: int = 21


@dataclass(frozen=True)
class Tenant:
    """
    One owner of a folder in the FTP drop box.

    ``storage`` lists every provider section found in the configuration; the
    storage dispatcher insists on exactly one.
    """

    name: str
    telegram: str | None = None
    storage: tuple[StorageConfig, ...] = ()


@dataclass(frozen=True)
class DaemonConfig:
    ftp: FtpConfig
    telegram_token: str | None = None
    tenants: dict[str, Tenant] = field(default_factory=dict)
    categories: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_CATEGORIES))

    def tenant(self, name: str) -> Tenant:
        """Return the configured tenant, or an unconfigured one for unknown folders."""
        return self.tenants.get(name) or Tenant(name=name)

    @classmethod
    def load(cls, path: str, settings: Settings | None = None) -> DaemonConfig:
        """
        Read the daemon YAML file.

        Secrets present in ``settings`` (from the environment) take precedence
        over the file.
        """
        try:
            with open(path, encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
        except OSError as e:
            raise ValueError(f"Unable to read config file '{path}': {e}") from e
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in config file '{path}': {e}") from e
        if not isinstance(raw, dict):
            raise ValueError(f"Config file '{path}' must contain a mapping.")
        return cls.from_dict(raw, settings)

    @classmethod
    def from_dict(cls, raw: dict, settings: Settings | None = None) -> DaemonConfig:
        ftp_raw = _section(raw, "ftp")
        if settings is not None and settings.FTP_PASSWORD:
            ftp_raw = {**ftp_raw, "password": settings.FTP_PASSWORD}
        ftp = FtpConfig(
            host=_required(ftp_raw, "host", "ftp"),
            username=_required(ftp_raw, "username", "ftp"),
            password=_required(ftp_raw, "password", "ftp"),
            path=_required(ftp_raw, "path", "ftp"),
            port=int(ftp_raw.get("port", 21)),
        )

        telegram_token = raw.get("telegram_token")
        if settings is not None and settings.TELEGRAM_TOKEN:
            telegram_token = settings.TELEGRAM_TOKEN

        categories = raw.get("categories") or DEFAULT_CATEGORIES
        if not isinstance(categories, dict):
            raise ValueError("'categories' must map category names to descriptions.")

        tenants = {}
        for name, tenant_raw in (_section(raw, "users")).items():
            tenants[str(name)] = _parse_tenant(str(name), tenant_raw or {})

        return cls(
            ftp=ftp,
            telegram_token=str(telegram_token) if telegram_token else None,
            tenants=tenants,
            categories={str(k): str(v) for k, v in categories.items()},
        )


def _section(raw: dict, key: str) -> dict:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        raise ValueError(f"'{key}' must be a mapping.")
    return value


def _required(raw: dict, key: str, section: str) -> str:
    value = raw.get(key)
    if value is None or str(value).strip() == "":
        raise ValueError(f"{section}.{key} not set")
    return str(value)


def _parse_tenant(name: str, raw: dict) -> Tenant:
    if not isinstance(raw, dict):
        raise ValueError(f"users.{name} must be a mapping.")
    section = f"users.{name}"

    storage: list[StorageConfig] = []
    if "nextcloud" in raw:
        nextcloud = _section(raw, "nextcloud")
        storage.append(
            NextcloudConfig(
                url=_required(nextcloud, "url", f"{section}.nextcloud").rstrip("/"),
                username=_required(nextcloud, "username", f"{section}.nextcloud"),
                password=_required(nextcloud, "password", f"{section}.nextcloud"),
            )
        )
    if "google_drive" in raw:
        google_drive = _section(raw, "google_drive")
        storage.append(
            GoogleDriveConfig(
                email=_required(google_drive, "email", f"{section}.google_drive")
            )
        )

    telegram = raw.get("telegram")
    return Tenant(
        name=name,
        telegram=str(telegram) if telegram else None,
        storage=tuple(storage),
    )
