"""OneDrive provider handle."""

from __future__ import annotations

import re
from urllib.parse import quote

import httpx

from drivebridge.domain.entities import FileRef, SourceFile
from drivebridge.domain.errors import TransferIOError
from drivebridge.domain.ports import ProviderHandle
from drivebridge.infrastructure.providers.http_handle import HttpProviderHandle

MICROSOFT_GRAPH_API_URL = "https://graph.microsoft.com/v1.0"

_INVALID_NAME_CHARACTERS = re.compile(r'[<>:"/\\|?*]')


def clean_onedrive_name(name: str) -> str:
    """Replace characters OneDrive rejects in item names."""

    cleaned = _INVALID_NAME_CHARACTERS.sub("_", name).strip()
    return cleaned or "untitled"


class OneDriveHandle(HttpProviderHandle, ProviderHandle):
    """Download and upload files through Microsoft Graph."""

    provider_name = "OneDrive"

    def __init__(
        self,
        access_token: str,
        api_url: str = MICROSOFT_GRAPH_API_URL,
        timeout_seconds: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(
            access_token=access_token,
            timeout_seconds=timeout_seconds,
            transport=transport,
        )
        self._api_url = api_url.rstrip("/")

    async def download(self, file: SourceFile) -> bytes:
        item = await self._request_json(
            "GET",
            f"{self._api_url}/me/drive/items/{quote(file.id, safe='')}",
        )
        download_url = item.get("@microsoft.graph.downloadUrl")
        if not isinstance(download_url, str) or not download_url:
            raise TransferIOError(f"OneDrive item '{file.id}' has no download URL.")
        # pre-authenticated URL, no bearer token
        response = await self._request("GET", download_url, authenticated=False)
        return response.content

    async def upload(self, data: bytes, name: str, path: str) -> FileRef:
        clean_name = clean_onedrive_name(name)
        parent = "root" if not path or path == "root" else f"items/{quote(path, safe='')}"
        payload = await self._request_json(
            "PUT",
            f"{self._api_url}/me/drive/{parent}:/{quote(clean_name)}:/content",
            params={"@microsoft.graph.conflictBehavior": "replace"},
            headers={"Content-Type": "application/octet-stream"},
            content=data,
        )
        size = payload.get("size")
        return FileRef(
            id=str(payload.get("id", "")),
            name=str(payload.get("name", clean_name)),
            size=len(data) if size is None else int(size),
        )


__all__ = ["MICROSOFT_GRAPH_API_URL", "OneDriveHandle", "clean_onedrive_name"]
