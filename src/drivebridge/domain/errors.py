"""Domain exceptions for transfer job operations."""


class TransferJobError(Exception):
    """Base class for transfer job errors."""


class TransferJobValidationError(TransferJobError):
    """Raised when request validation fails."""


class TransferJobNotFoundError(TransferJobError):
    """Raised when a transfer job cannot be found."""


class DuplicateTransferJobError(TransferJobError):
    """Raised when a job id is already taken."""


class TransferJobConflictError(TransferJobError):
    """Raised when a write conflicts with the currently stored state."""


class TransferConnectionError(TransferJobError):
    """Raised when provider credentials cannot be used. Never retried."""


class ConnectionNotFoundError(TransferConnectionError):
    """Raised when a user has no stored connection for a service."""


class ConnectionExpiredError(TransferConnectionError):
    """Raised when stored credentials are expired or rejected by the provider."""


class UnsupportedProviderError(TransferConnectionError):
    """Raised when no provider handle factory is registered for a connection."""


class TransferIOError(TransferJobError):
    """Raised when a provider download or upload fails."""


class TransferJobStoreError(TransferJobError):
    """Raised when the job store cannot persist or load state."""


class WalletLedgerError(TransferJobError):
    """Raised when the wallet ledger cannot be reached."""


__all__ = [
    "ConnectionExpiredError",
    "ConnectionNotFoundError",
    "DuplicateTransferJobError",
    "TransferConnectionError",
    "TransferIOError",
    "TransferJobConflictError",
    "TransferJobError",
    "TransferJobNotFoundError",
    "TransferJobStoreError",
    "TransferJobValidationError",
    "UnsupportedProviderError",
    "WalletLedgerError",
]
