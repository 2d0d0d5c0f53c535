"""Wallet ledger implementations."""

from drivebridge.infrastructure.wallet.free_wallet_ledger import FreeWalletLedger
from drivebridge.infrastructure.wallet.http_wallet_ledger import HttpWalletLedger

__all__ = ["FreeWalletLedger", "HttpWalletLedger"]
