"""
Storage Dispatcher
==================

Chooses the tenant's storage backend and files a classified scan under
``<STORAGE_ROOT>/<category>/<date>_<filename>``.

A tenant must have exactly one backend configured; anything else is a
`StorageConfigError` raised before any network traffic. Backend errors are
passed through unchanged and nothing is retried here.
"""

from __future__ import annotations

import datetime as dt
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Callable

import structlog

from .base import (
    GoogleDriveConfig,
    NextcloudConfig,
    StorageConfig,
    StorageConfigError,
    UploadResult,
    destination_path,
)
from .google_drive import GoogleDriveStorage, load_client_secrets
from .nextcloud import NextcloudStorage
from .token_store import TokenStore

if TYPE_CHECKING:
    from ..classifier import Classification
    from ..config import Settings, Tenant

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StoredFile:
    provider: str
    remote_path: str
    result: UploadResult

    @property
    def locator(self) -> str:
        return self.result.locator


def select_backend(tenant: Tenant) -> StorageConfig:
    """Return the tenant's single storage configuration."""
    if not tenant.storage:
        raise StorageConfigError(f"No cloud storage provider set for '{tenant.name}'")
    if len(tenant.storage) > 1:
        names = ", ".join(type(config).__name__ for config in tenant.storage)
        raise StorageConfigError(
            f"More than one cloud storage provider set for '{tenant.name}': {names}"
        )
    return tenant.storage[0]


class StorageDispatcher:
    def __init__(
        self,
        settings: Settings,
        token_store: TokenStore | None = None,
        today: Callable[[], dt.date] = dt.date.today,
    ):
        self.settings = settings
        self.token_store = token_store or TokenStore(settings.TOKEN_DB)
        self.today = today

    def _backend(self, config: StorageConfig):
        if isinstance(config, NextcloudConfig):
            return NextcloudStorage(config, timeout=self.settings.REQUEST_TIMEOUT)
        if isinstance(config, GoogleDriveConfig):
            return GoogleDriveStorage(
                config,
                self.token_store,
                load_client_secrets(self.settings.GOOGLE_CLIENT_SECRETS),
                timeout=self.settings.REQUEST_TIMEOUT,
            )
        raise StorageConfigError(f"Unsupported storage configuration: {config!r}")

    def upload(self, tenant: Tenant, classification: Classification, local_path: Path) -> StoredFile:
        """Store ``local_path`` for ``tenant`` and return where it ended up."""
        config = select_backend(tenant)
        remote_path = destination_path(self.settings.STORAGE_ROOT, classification, self.today())
        backend = self._backend(config)
        try:
            data = Path(local_path).read_bytes()
            mime_type = mimetypes.guess_type(classification.filename)[0] or "application/octet-stream"
            result = backend.store(remote_path, data, mime_type)
        finally:
            backend.close()

        log.info(
            "Stored file",
            tenant=tenant.name,
            provider=backend.provider_name,
            remote_path=remote_path,
            locator=result.locator,
        )
        return StoredFile(provider=backend.provider_name, remote_path=remote_path, result=result)
