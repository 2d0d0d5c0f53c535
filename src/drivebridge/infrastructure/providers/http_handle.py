"""Shared HTTP plumbing for provider handles."""

from __future__ import annotations

from typing import Any, cast

import httpx

from drivebridge.domain.errors import ConnectionExpiredError, TransferIOError


class HttpProviderHandle:
    """Issue authenticated provider calls and translate failures."""

    provider_name = "provider"

    def __init__(
        self,
        access_token: str,
        timeout_seconds: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._access_token = access_token
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    async def _request(
        self,
        method: str,
        url: str,
        *,
        authenticated: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        headers = dict(cast(dict[str, str], kwargs.pop("headers", None) or {}))
        if authenticated:
            headers["Authorization"] = f"Bearer {self._access_token}"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_seconds,
                transport=self._transport,
                follow_redirects=True,
            ) as http_client:
                response = await http_client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise TransferIOError(f"{self.provider_name} {method} {url} failed: {exc}") from exc
        self._ensure_success(response)
        return response

    async def _request_json(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        response = await self._request(method, url, **kwargs)
        try:
            payload = response.json()
        except ValueError as exc:
            raise TransferIOError(
                f"{self.provider_name} {method} {url} returned invalid JSON."
            ) from exc
        if not isinstance(payload, dict):
            raise TransferIOError(f"{self.provider_name} {method} {url} returned no object.")
        return payload

    def _ensure_success(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        detail = self._detail_from_response(response)
        message = (
            f"{self.provider_name} {response.request.method} {response.request.url} failed: "
            f"{response.status_code} {detail}"
        )
        if response.status_code == 401:
            raise ConnectionExpiredError(message)
        raise TransferIOError(message)

    def _detail_from_response(self, response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            text = response.text.strip()
            return text or "<no response body>"

        if isinstance(payload, dict):
            error = payload.get("error")
            if isinstance(error, dict) and isinstance(error.get("message"), str):
                return str(error["message"])
            if isinstance(error, str):
                return error
        return str(payload)


__all__ = ["HttpProviderHandle"]
