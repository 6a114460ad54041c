"""Error types raised by the key fetcher."""

from __future__ import annotations


class FetcherError(RuntimeError):
    """Base error."""


class ConfigError(FetcherError, ValueError):
    """Configuration could not be read or parsed."""

    def __init__(self, message: str, *, path: object | None = None) -> None:
        super().__init__(message)
        self.path = path


class ClientBuildError(FetcherError):
    """The identity client could not be constructed."""


class AuthenticationError(FetcherError):
    """Authentication against the identity server failed."""


class TransportError(FetcherError):
    """The identity server could not be reached."""


class AccountKeysError(FetcherError):
    """Public keys for a single account could not be retrieved."""

    def __init__(
        self,
        message: str,
        *,
        account_id: str,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.account_id = account_id
        self.status_code = status_code


class FileSyncError(FetcherError):
    """The authorized keys file could not be updated."""
