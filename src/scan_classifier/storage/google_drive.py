"""
Google Drive storage backend.

Uploads run on behalf of the tenant's Google account:

1. the refresh token stored for the account e-mail is exchanged for an access
   token using the OAuth client from the client secrets file;
2. every folder of the destination path is looked up below the Drive root and
   created when missing;
3. the file is sent with a multipart upload and its ``webViewLink`` returned.
"""

from __future__ import annotations

import json
import uuid
from pathlib import Path

import requests
import structlog

from .base import GoogleDriveConfig, StorageConfigError, StorageError, UploadResult
from .token_store import TokenStore

log = structlog.get_logger(__name__)

DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"
DRIVE_FILES_URL = "https://www.googleapis.com/drive/v3/files"
DRIVE_UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3/files"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"


def load_client_secrets(path: str | Path) -> dict:
    """
    Read an OAuth client secrets file as downloaded from the Google console.

    Both ``installed`` and ``web`` client types are accepted.
    """
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise StorageConfigError(f"Unable to read client secret file '{path}': {e}") from e
    client = raw.get("installed") or raw.get("web") or {}
    if not client.get("client_id") or not client.get("client_secret"):
        raise StorageConfigError(f"Client secret file '{path}' has no client_id/client_secret")
    return client


def _quote_query(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class GoogleDriveStorage:
    provider_name = "Google Drive"

    def __init__(
        self,
        config: GoogleDriveConfig,
        token_store: TokenStore,
        client_secrets: dict,
        timeout: float = 60,
        session: requests.Session | None = None,
    ):
        self.config = config
        self.token_store = token_store
        self.client_secrets = client_secrets
        self.timeout = timeout
        self._session = session or requests.Session()

    def close(self) -> None:
        self._session.close()

    def _request(self, method: str, url: str, what: str, **kwargs) -> dict:
        try:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise StorageError(f"Unable to {what}: {e}") from e
        if not response.ok:
            raise StorageError(f"Unable to {what}: {response.status_code} {response.text}")
        try:
            return response.json()
        except ValueError as e:
            raise StorageError(f"Unable to {what}: invalid JSON response") from e

    def _authorize(self) -> None:
        token = self.token_store.get(self.config.email)
        if token is None:
            raise StorageConfigError(
                f"No Google Drive token stored for '{self.config.email}'"
            )
        payload = self._request(
            "POST",
            self.client_secrets.get("token_uri") or DEFAULT_TOKEN_URI,
            "retrieve access token",
            data={
                "client_id": self.client_secrets["client_id"],
                "client_secret": self.client_secrets["client_secret"],
                "refresh_token": token.refresh_token,
                "grant_type": "refresh_token",
            },
        )
        access_token = payload.get("access_token")
        if not access_token:
            raise StorageError("Unable to retrieve access token: no access_token in response")
        self._session.headers["Authorization"] = f"Bearer {access_token}"

    def _folder_id(self, name: str, parent_id: str) -> str:
        """Return the ID of folder ``name`` below ``parent_id``, creating it if needed."""
        query = (
            f"mimeType='{FOLDER_MIME_TYPE}' and name='{_quote_query(name)}' "
            f"and '{parent_id}' in parents and trashed=false"
        )
        listing = self._request(
            "GET",
            DRIVE_FILES_URL,
            "list files",
            params={"q": query, "fields": "files(id, name)", "spaces": "drive"},
        )
        files = listing.get("files") or []
        if files:
            return files[0]["id"]

        created = self._request(
            "POST",
            DRIVE_FILES_URL,
            "create folder",
            params={"fields": "id"},
            json={"name": name, "mimeType": FOLDER_MIME_TYPE, "parents": [parent_id]},
        )
        log.info("Created Google Drive folder", name=name, folder_id=created.get("id"))
        return created["id"]

    def store(self, remote_path: str, data: bytes, mime_type: str = "application/octet-stream") -> UploadResult:
        self._authorize()

        *folders, file_name = remote_path.strip("/").split("/")
        parent_id = "root"
        for folder in folders:
            parent_id = self._folder_id(folder, parent_id)

        boundary = f"scan-classifier-{uuid.uuid4().hex}"
        metadata = json.dumps({"name": file_name, "parents": [parent_id]})
        body = b"".join(
            [
                f"--{boundary}\r\nContent-Type: application/json; charset=UTF-8\r\n\r\n".encode(),
                metadata.encode("utf-8"),
                f"\r\n--{boundary}\r\nContent-Type: {mime_type}\r\n\r\n".encode(),
                data,
                f"\r\n--{boundary}--\r\n".encode(),
            ]
        )
        uploaded = self._request(
            "POST",
            DRIVE_UPLOAD_URL,
            "upload file",
            params={"uploadType": "multipart", "fields": "id,webViewLink,md5Checksum"},
            data=body,
            headers={"Content-Type": f"multipart/related; boundary={boundary}"},
        )
        file_id = uploaded.get("id", "")
        locator = uploaded.get("webViewLink") or f"https://drive.google.com/file/d/{file_id}/view"
        log.info("Uploaded file to Google Drive", remote_path=remote_path, file_id=file_id)
        return UploadResult(
            locator=locator,
            file_id=file_id,
            fingerprint=uploaded.get("md5Checksum", ""),
        )
