"""
Storage backends.

`dispatcher.StorageDispatcher` is the entry point used by the pipeline; the
modules below it implement one provider each.
"""

from .base import (
    GoogleDriveConfig,
    NextcloudConfig,
    StorageConfig,
    StorageConfigError,
    StorageError,
    UploadResult,
    destination_path,
)

__all__ = [
    "GoogleDriveConfig",
    "NextcloudConfig",
    "StorageConfig",
    "StorageConfigError",
    "StorageError",
    "UploadResult",
    "destination_path",
]
