"""
Google Drive implementation of the object store.

Folders are Drive folder ids; objects are files inside them, looked up by name
(ignoring trashed files). Authentication uses a service account whose JSON key
is supplied through settings. Every HTTP call carries its own timeout,
independent of the coordinator's lock timeout.
"""

from __future__ import annotations

import io
import json
from typing import Any, Iterator, List, Optional

import httplib2
from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseDownload, MediaIoBaseUpload

from signup_store.config import Settings
from signup_store.errors import RemoteStoreError
from signup_store.utils.logging import get_logger

log = get_logger(__name__)

DRIVE_SCOPES = ("https://www.googleapis.com/auth/drive",)
CSV_MIMETYPE = "text/csv"
DOWNLOAD_CHUNK_SIZE = 256 * 1024

# Transport (DNS, socket) and credential refresh failures surface as these
# rather than as HttpError.
DRIVE_ERRORS = (HttpError, httplib2.HttpLib2Error, GoogleAuthError)


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class GoogleDriveObjectStore:
    """
    Drive v3 object store.

    Parameters
    ----------
    service : Any
        A built `drive` v3 service resource (see `from_settings`).
    mimetype : str
        Content type sent with uploads.
    """

    def __init__(self, service: Any, mimetype: str = CSV_MIMETYPE) -> None:
        self._service = service
        self.mimetype = mimetype

    @classmethod
    def from_settings(cls, settings: Settings) -> "GoogleDriveObjectStore":
        if not settings.google_service_account:
            raise RemoteStoreError("GOOGLE_SERVICE_ACCOUNT is required for the drive backend")
        try:
            info = json.loads(settings.google_service_account)
        except json.JSONDecodeError as exc:
            raise RemoteStoreError(f"GOOGLE_SERVICE_ACCOUNT is not valid JSON: {exc}") from exc

        credentials = service_account.Credentials.from_service_account_info(
            info, scopes=list(DRIVE_SCOPES)
        )
        http = AuthorizedHttp(
            credentials, http=httplib2.Http(timeout=settings.remote_timeout_seconds)
        )
        service = build("drive", "v3", http=http, cache_discovery=False)
        return cls(service)

    def _execute(self, request: Any, action: str) -> Any:
        try:
            return request.execute()
        except DRIVE_ERRORS as exc:
            raise RemoteStoreError(f"Drive {action} failed: {exc}") from exc

    def list(self, folder: str, name: str) -> List[str]:
        query = (
            f"'{_escape(folder)}' in parents and name = '{_escape(name)}' and trashed = false"
        )
        response = self._execute(
            self._service.files().list(q=query, fields="files(id)", spaces="drive"),
            "list",
        )
        return [item["id"] for item in response.get("files", [])]

    def get(self, object_id: str) -> Iterator[bytes]:
        request = self._service.files().get_media(fileId=object_id)
        buffer = io.BytesIO()
        downloader = MediaIoBaseDownload(buffer, request, chunksize=DOWNLOAD_CHUNK_SIZE)
        done = False
        while not done:
            try:
                _, done = downloader.next_chunk()
            except DRIVE_ERRORS as exc:
                raise RemoteStoreError(f"Drive download failed: {exc}") from exc
            chunk = buffer.getvalue()
            if chunk:
                yield chunk
            buffer.seek(0)
            buffer.truncate()

    def _media(self, data: bytes) -> MediaIoBaseUpload:
        return MediaIoBaseUpload(io.BytesIO(data), mimetype=self.mimetype, resumable=False)

    def create(self, folder: str, name: str, data: bytes) -> str:
        created = self._execute(
            self._service.files().create(
                body={"name": name, "parents": [folder]},
                media_body=self._media(data),
                fields="id, size",
            ),
            "create",
        )
        log.info(
            "[DRIVE] created file",
            extra={"file_id": created.get("id"), "size": created.get("size")},
        )
        return created["id"]

    def update(self, object_id: str, data: bytes) -> None:
        updated: Optional[dict] = self._execute(
            self._service.files().update(
                fileId=object_id, media_body=self._media(data), fields="id, size"
            ),
            "update",
        )
        log.info(
            "[DRIVE] updated file",
            extra={"file_id": object_id, "size": (updated or {}).get("size")},
        )


__all__ = ["GoogleDriveObjectStore", "DRIVE_ERRORS", "DRIVE_SCOPES"]
