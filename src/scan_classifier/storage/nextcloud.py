"""
Nextcloud storage backend.

Files are written with a WebDAV ``PUT`` below
``{url}/remote.php/dav/files/{username}/``. Missing parent collections are
created with ``MKCOL`` first.
"""

from __future__ import annotations

import re
from urllib.parse import quote

import requests
import structlog

from .base import NextcloudConfig, StorageError, UploadResult

log = structlog.get_logger(__name__)

FILE_ID_RE = re.compile(r"^0*(\d+)")


class NextcloudStorage:
    provider_name = "Nextcloud"

    def __init__(self, config: NextcloudConfig, timeout: float = 60, session: requests.Session | None = None):
        self.config = config
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.auth = (config.username, config.password)

    def close(self) -> None:
        self._session.close()

    def _dav_url(self, remote_path: str) -> str:
        base = f"{self.config.url}/remote.php/dav/files/{quote(self.config.username)}"
        return f"{base}/{quote(remote_path.strip('/'))}"

    def _ensure_collections(self, remote_path: str) -> None:
        segments = remote_path.strip("/").split("/")[:-1]
        for i in range(1, len(segments) + 1):
            collection = "/".join(segments[:i])
            try:
                response = self._session.request(
                    "MKCOL", self._dav_url(collection), timeout=self.timeout
                )
            except requests.exceptions.RequestException as e:
                raise StorageError(f"Error creating Nextcloud folder '{collection}': {e}") from e
            # 405: the collection already exists
            if response.status_code not in (201, 405):
                raise StorageError(
                    f"Error creating Nextcloud folder '{collection}': "
                    f"{response.status_code} {response.reason}, {response.text}"
                )

    def store(self, remote_path: str, data: bytes, mime_type: str = "application/octet-stream") -> UploadResult:
        """Upload ``data`` to ``remote_path`` and return its share link."""
        self._ensure_collections(remote_path)

        log.debug("Uploading file to Nextcloud", remote_path=remote_path)
        try:
            response = self._session.put(
                self._dav_url(remote_path),
                data=data,
                headers={"Content-Type": mime_type},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise StorageError(f"Error uploading file to Nextcloud: {e}") from e

        if response.status_code not in (201, 204):
            raise StorageError(
                f"Error uploading file to Nextcloud: {response.status_code} "
                f"{response.reason}, {response.text}"
            )

        file_id = response.headers.get("OC-FileId", "")
        etag = response.headers.get("OC-ETag") or response.headers.get("ETag", "")
        log.info("Uploaded file to Nextcloud", remote_path=remote_path, file_id=file_id)

        match = FILE_ID_RE.match(file_id)
        if match:
            locator = f"{self.config.url}/f/{match.group(1)}"
        else:
            locator = self._dav_url(remote_path)
        return UploadResult(locator=locator, file_id=file_id, fingerprint=etag.strip('"'))
