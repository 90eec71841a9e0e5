"""
Error taxonomy for the sync layer.

ValidationError      - structurally invalid input; never retried.
TransientFetchError  - upstream unreachable or failing; retried per policy.
MappingError         - one upstream record could not be normalized; the record
                       is dropped, the batch survives.
"""
from __future__ import annotations

from typing import Optional


class SyncError(Exception):
    """Base class for all sync-layer errors."""


class ValidationError(SyncError):
    """Raised for missing or structurally invalid input."""


class InvalidInputError(ValidationError):
    """Raised when a required argument (e.g. a team descriptor) is absent."""


class ProviderError(SyncError):
    """Upstream provider failure."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"[{provider}] {message}")


class TransientFetchError(ProviderError):
    """Network, timeout, rate-limit or 5xx failure. Safe to retry."""

    def __init__(self, provider: str, message: str, retry_after: Optional[float] = None) -> None:
        self.retry_after = retry_after
        super().__init__(provider, message)


class UnsupportedOperationError(ProviderError, ValidationError):
    """Provider does not serve the requested data domain."""


class FetchCancelledError(SyncError):
    """The in-flight fetch a caller was waiting on got cancelled."""


class MappingError(SyncError):
    """An upstream payload could not be normalized into a canonical entity."""

    def __init__(self, provider: str, record_id: Optional[str], reason: str) -> None:
        self.provider = provider
        self.record_id = record_id
        self.reason = reason
        super().__init__(f"[{provider}] cannot map record {record_id!r}: {reason}")
