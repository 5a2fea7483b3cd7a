"""
Storage backend primitives.

The set of supported providers is closed: a tenant is configured with a
`NextcloudConfig` or a `GoogleDriveConfig`. `StorageConfig` is the union of
the two and is what the dispatcher switches on.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from ..classifier import Classification


class StorageError(Exception):
    """An upload to a storage backend failed."""


class StorageConfigError(StorageError):
    """The tenant's storage configuration is unusable; retrying will not help."""


@dataclass(frozen=True)
class NextcloudConfig:
    url: str
    username: str
    password: str


@dataclass(frozen=True)
class GoogleDriveConfig:
    email: str


StorageConfig = Union[NextcloudConfig, GoogleDriveConfig]


@dataclass(frozen=True)
class UploadResult:
    """
    Where a stored file can be found.

    ``locator`` is always a URL a human can open; ``file_id`` and
    ``fingerprint`` are whatever identifier and content hash the backend
    reported, or empty strings.
    """

    locator: str
    file_id: str = ""
    fingerprint: str = ""


def destination_path(
    root: str, classification: Classification, upload_date: dt.date
) -> str:
    """
    Return ``<root>/<category>/<YYYY-MM-DD>_<filename>``.

    The category is used verbatim as a folder name.
    """
    file_name = f"{upload_date.isoformat()}_{classification.filename}"
    root = root.strip("/")
    prefix = f"{root}/" if root else ""
    return f"{prefix}{classification.category}/{file_name}"
