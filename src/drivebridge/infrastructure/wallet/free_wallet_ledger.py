"""Wallet ledger for deployments that do not charge for transfers."""

from __future__ import annotations

from drivebridge.domain.ports import WalletLedger


class FreeWalletLedger(WalletLedger):
    """Accept every debit without recording anything."""

    async def debit(self, user_id: str, amount_cents: int, description: str) -> bool:
        _ = (user_id, amount_cents, description)
        return True


__all__ = ["FreeWalletLedger"]
