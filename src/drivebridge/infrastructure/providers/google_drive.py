"""Google Drive provider handle."""

from __future__ import annotations

import json
from uuid import uuid4

import httpx

from drivebridge.domain.entities import FileRef, SourceFile
from drivebridge.domain.ports import ProviderHandle
from drivebridge.infrastructure.providers.http_handle import HttpProviderHandle

GOOGLE_DRIVE_API_URL = "https://www.googleapis.com/drive/v3"
GOOGLE_DRIVE_UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3"

# Workspace documents have no binary content and must be exported.
_EXPORT_MIME_TYPES = {
    "application/vnd.google-apps.document": "application/pdf",
    "application/vnd.google-apps.form": "application/pdf",
    "application/vnd.google-apps.spreadsheet": (
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    ),
    "application/vnd.google-apps.presentation": (
        "application/vnd.openxmlformats-officedocument.presentationml.presentation"
    ),
    "application/vnd.google-apps.drawing": "image/png",
}


class GoogleDriveHandle(HttpProviderHandle, ProviderHandle):
    """Download and upload files through the Drive v3 REST API."""

    provider_name = "Google Drive"

    def __init__(
        self,
        access_token: str,
        api_url: str = GOOGLE_DRIVE_API_URL,
        upload_url: str = GOOGLE_DRIVE_UPLOAD_URL,
        timeout_seconds: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(
            access_token=access_token,
            timeout_seconds=timeout_seconds,
            transport=transport,
        )
        self._api_url = api_url.rstrip("/")
        self._upload_url = upload_url.rstrip("/")

    async def download(self, file: SourceFile) -> bytes:
        file_url = f"{self._api_url}/files/{file.id}"
        metadata = await self._request_json(
            "GET",
            file_url,
            params={"fields": "id,name,mimeType,size"},
        )
        export_mime_type = _EXPORT_MIME_TYPES.get(str(metadata.get("mimeType", "")))
        if export_mime_type is not None:
            response = await self._request(
                "GET",
                f"{file_url}/export",
                params={"mimeType": export_mime_type},
            )
        else:
            response = await self._request("GET", file_url, params={"alt": "media"})
        return response.content

    async def upload(self, data: bytes, name: str, path: str) -> FileRef:
        metadata: dict[str, object] = {"name": name}
        if path and path != "root":
            metadata["parents"] = [path]

        boundary = f"drivebridge-{uuid4().hex}"
        body = b"".join(
            [
                f"--{boundary}\r\n".encode(),
                b"Content-Type: application/json; charset=UTF-8\r\n\r\n",
                json.dumps(metadata).encode(),
                f"\r\n--{boundary}\r\n".encode(),
                b"Content-Type: application/octet-stream\r\n\r\n",
                data,
                f"\r\n--{boundary}--".encode(),
            ]
        )
        payload = await self._request_json(
            "POST",
            f"{self._upload_url}/files",
            params={"uploadType": "multipart", "fields": "id,name,size"},
            headers={"Content-Type": f"multipart/related; boundary={boundary}"},
            content=body,
        )
        size = payload.get("size")
        return FileRef(
            id=str(payload.get("id", "")),
            name=str(payload.get("name", name)),
            size=len(data) if size is None else int(size),
        )


__all__ = ["GOOGLE_DRIVE_API_URL", "GOOGLE_DRIVE_UPLOAD_URL", "GoogleDriveHandle"]
