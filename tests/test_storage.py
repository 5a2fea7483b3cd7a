import datetime as dt
import json

import pytest
from requests_mock import ANY

from scan_classifier.classifier import Classification
from scan_classifier.config import Tenant
from scan_classifier.storage import (
    GoogleDriveConfig,
    NextcloudConfig,
    StorageConfigError,
    StorageError,
    destination_path,
)
from scan_classifier.storage.dispatcher import StorageDispatcher, select_backend
from scan_classifier.storage.google_drive import (
    DEFAULT_TOKEN_URI,
    DRIVE_FILES_URL,
    DRIVE_UPLOAD_URL,
    load_client_secrets,
)
from scan_classifier.storage.token_store import StoredToken, TokenStore

CLOUD_URL = "https://cloud.example.com"
DAV_ROOT = f"{CLOUD_URL}/remote.php/dav/files/alice"
UPLOAD_DATE = dt.date(2024, 3, 1)

CLASSIFICATION = Classification(
    title="Einkommensteuerbescheid 2023",
    category="taxes",
    explanation="Tax assessment",
    filename="steuerbescheid_2023.pdf",
)

NEXTCLOUD = NextcloudConfig(url=CLOUD_URL, username="alice", password="secret")
GOOGLE_DRIVE = GoogleDriveConfig(email="alice@example.com")


@pytest.fixture
def scan(tmp_path):
    path = tmp_path / "scan1.pdf"
    path.write_bytes(b"%PDF-1.4 scan")
    return path


@pytest.fixture
def token_store(settings):
    return TokenStore(settings.TOKEN_DB)


@pytest.fixture
def dispatcher(settings, token_store):
    return StorageDispatcher(settings, token_store, today=lambda: UPLOAD_DATE)


def test_destination_path():
    assert (
        destination_path("/Documents/scans/", CLASSIFICATION, UPLOAD_DATE)
        == "Documents/scans/taxes/2024-03-01_steuerbescheid_2023.pdf"
    )
    assert destination_path("", CLASSIFICATION, UPLOAD_DATE) == "taxes/2024-03-01_steuerbescheid_2023.pdf"


def test_select_backend_requires_exactly_one():
    assert select_backend(Tenant("alice", storage=(NEXTCLOUD,))) is NEXTCLOUD

    with pytest.raises(StorageConfigError, match="No cloud storage provider set for 'alice'"):
        select_backend(Tenant("alice"))
    with pytest.raises(StorageConfigError, match="More than one cloud storage provider"):
        select_backend(Tenant("alice", storage=(NEXTCLOUD, GOOGLE_DRIVE)))


def test_upload_with_ambiguous_storage_makes_no_requests(dispatcher, scan, requests_mock):
    tenant = Tenant("alice", storage=(NEXTCLOUD, GOOGLE_DRIVE))

    with pytest.raises(StorageConfigError):
        dispatcher.upload(tenant, CLASSIFICATION, scan)

    assert requests_mock.call_count == 0


def test_nextcloud_upload(dispatcher, scan, requests_mock):
    requests_mock.register_uri("MKCOL", f"{DAV_ROOT}/Documents", status_code=405)
    requests_mock.register_uri("MKCOL", f"{DAV_ROOT}/Documents/scans", status_code=405)
    requests_mock.register_uri("MKCOL", f"{DAV_ROOT}/Documents/scans/taxes", status_code=201)
    put = requests_mock.put(
        f"{DAV_ROOT}/Documents/scans/taxes/2024-03-01_steuerbescheid_2023.pdf",
        status_code=201,
        headers={"OC-FileId": "00000123ocabc", "OC-ETag": '"etag-1"'},
    )

    stored = dispatcher.upload(Tenant("alice", storage=(NEXTCLOUD,)), CLASSIFICATION, scan)

    assert stored.provider == "Nextcloud"
    assert stored.remote_path == "Documents/scans/taxes/2024-03-01_steuerbescheid_2023.pdf"
    assert stored.locator == "https://cloud.example.com/f/123"
    assert stored.result.fingerprint == "etag-1"
    assert put.last_request.body == b"%PDF-1.4 scan"
    assert put.last_request.headers["Content-Type"] == "application/pdf"
    assert put.last_request.headers["Authorization"].startswith("Basic ")


def test_nextcloud_upload_failure(dispatcher, scan, requests_mock):
    requests_mock.register_uri("MKCOL", ANY, status_code=405)
    requests_mock.put(
        f"{DAV_ROOT}/Documents/scans/taxes/2024-03-01_steuerbescheid_2023.pdf",
        status_code=500,
        reason="Internal Server Error",
    )

    with pytest.raises(StorageError, match="500 Internal Server Error"):
        dispatcher.upload(Tenant("alice", storage=(NEXTCLOUD,)), CLASSIFICATION, scan)


def test_nextcloud_folder_creation_failure(dispatcher, scan, requests_mock):
    requests_mock.register_uri("MKCOL", ANY, status_code=403)

    with pytest.raises(StorageError, match="Error creating Nextcloud folder 'Documents'"):
        dispatcher.upload(Tenant("alice", storage=(NEXTCLOUD,)), CLASSIFICATION, scan)

    assert requests_mock.call_count == 1


def test_token_store_upserts(token_store):
    assert token_store.get("alice@example.com") is None

    token_store.save("alice@example.com", "refresh-1")
    token_store.save("alice@example.com", "refresh-2")

    assert token_store.get("alice@example.com") == StoredToken("refresh-2", "Bearer")


def test_load_client_secrets(tmp_path):
    path = tmp_path / "creds.json"
    path.write_text(json.dumps({"web": {"client_id": "id", "client_secret": "secret"}}))

    assert load_client_secrets(path)["client_id"] == "id"

    path.write_text(json.dumps({"installed": {"client_id": "id"}}))
    with pytest.raises(StorageConfigError, match="no client_id/client_secret"):
        load_client_secrets(path)
    with pytest.raises(StorageConfigError, match="Unable to read client secret file"):
        load_client_secrets(tmp_path / "missing.json")


@pytest.fixture
def client_secrets(settings, tmp_path):
    path = tmp_path / "creds.json"
    path.write_text(json.dumps({"installed": {"client_id": "id", "client_secret": "secret"}}))
    settings.GOOGLE_CLIENT_SECRETS = str(path)
    return path


def test_google_drive_upload(dispatcher, token_store, client_secrets, scan, requests_mock):
    token_store.save("alice@example.com", "refresh-1")
    token = requests_mock.post(DEFAULT_TOKEN_URI, json={"access_token": "access-1"})
    listing = requests_mock.get(
        DRIVE_FILES_URL,
        [
            {"json": {"files": [{"id": "documents-id", "name": "Documents"}]}},
            {"json": {"files": [{"id": "scans-id", "name": "scans"}]}},
            {"json": {"files": []}},
        ],
    )
    create = requests_mock.post(DRIVE_FILES_URL, json={"id": "taxes-id"})
    upload = requests_mock.post(
        DRIVE_UPLOAD_URL,
        json={"id": "file-1", "webViewLink": "https://drive.google.com/file/d/file-1/view", "md5Checksum": "abc"},
    )

    stored = dispatcher.upload(Tenant("alice", storage=(GOOGLE_DRIVE,)), CLASSIFICATION, scan)

    assert stored.provider == "Google Drive"
    assert stored.locator == "https://drive.google.com/file/d/file-1/view"
    assert stored.result.file_id == "file-1"
    assert "refresh_token=refresh-1" in token.last_request.text
    assert listing.call_count == 3
    assert create.last_request.json() == {
        "name": "taxes",
        "mimeType": "application/vnd.google-apps.folder",
        "parents": ["scans-id"],
    }
    assert upload.last_request.headers["Authorization"] == "Bearer access-1"
    assert b'"parents": ["taxes-id"]' in upload.last_request.body
    assert b'"name": "2024-03-01_steuerbescheid_2023.pdf"' in upload.last_request.body
    assert b"%PDF-1.4 scan" in upload.last_request.body


def test_google_drive_without_token(dispatcher, client_secrets, scan, requests_mock):
    with pytest.raises(StorageConfigError, match="No Google Drive token stored for 'alice@example.com'"):
        dispatcher.upload(Tenant("alice", storage=(GOOGLE_DRIVE,)), CLASSIFICATION, scan)

    assert requests_mock.call_count == 0


def test_google_drive_token_refresh_failure(dispatcher, token_store, client_secrets, scan, requests_mock):
    token_store.save("alice@example.com", "revoked")
    requests_mock.post(DEFAULT_TOKEN_URI, status_code=400, json={"error": "invalid_grant"})

    with pytest.raises(StorageError, match="Unable to retrieve access token: 400"):
        dispatcher.upload(Tenant("alice", storage=(GOOGLE_DRIVE,)), CLASSIFICATION, scan)
