"""HTTP client for the external wallet ledger."""

from __future__ import annotations

import logging

import httpx

from drivebridge.domain.errors import WalletLedgerError
from drivebridge.domain.ports import WalletLedger

logger = logging.getLogger(__name__)

_DECLINED_STATUS_CODES = frozenset({400, 402})


class HttpWalletLedger(WalletLedger):
    """Debit user wallets through `POST {base_url}/wallet/debit`."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 10.0,
        api_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        normalized = base_url.strip().rstrip("/")
        if not normalized:
            raise ValueError("base_url cannot be empty.")
        self._base_url = normalized
        self._timeout_seconds = timeout_seconds
        self._api_token = api_token
        self._transport = transport

    async def debit(self, user_id: str, amount_cents: int, description: str) -> bool:
        """Return `False` when the ledger declines for insufficient funds."""

        if amount_cents <= 0:
            return True

        url = f"{self._base_url}/wallet/debit"
        headers: dict[str, str] = {}
        if self._api_token is not None:
            headers["Authorization"] = f"Bearer {self._api_token}"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_seconds,
                transport=self._transport,
            ) as http_client:
                response = await http_client.post(
                    url,
                    json={
                        "userId": user_id,
                        "amountCents": amount_cents,
                        "description": description,
                    },
                    headers=headers,
                )
        except httpx.HTTPError as exc:
            raise WalletLedgerError(f"POST {url} failed: {exc}") from exc

        if response.is_success:
            return True
        if response.status_code in _DECLINED_STATUS_CODES:
            logger.info(
                "Wallet debit of %s cents declined for user '%s': %s",
                amount_cents,
                user_id,
                response.text.strip() or response.status_code,
            )
            return False
        raise WalletLedgerError(
            f"POST {url} failed: {response.status_code} {response.text.strip()}"
        )


__all__ = ["HttpWalletLedger"]
