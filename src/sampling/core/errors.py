"""Error taxonomy for the activation core.

The authoritative mutation (display, store, ledger) raises these to abort
before anything is written. ExternalSyncError and ConfigurationError are
caught at integration boundaries and turned into outcome records instead of
failing the caller's operation.
"""

from __future__ import annotations


class ActivationCoreError(Exception):
    """Base class for all activation core errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(ActivationCoreError):
    """Client-correctable input problem. Nothing has been mutated."""

    def __init__(
        self,
        message: str = "Missing or invalid fields",
        missing_fields: list[str] | None = None,
        invalid_fields: dict[str, str] | None = None,
    ) -> None:
        self.missing_fields = missing_fields or []
        self.invalid_fields = invalid_fields or {}
        super().__init__(message)

    @property
    def fields(self) -> list[str]:
        """All offending field names, missing first."""
        return self.missing_fields + [
            f for f in self.invalid_fields if f not in self.missing_fields
        ]


class NotFoundError(ActivationCoreError):
    """A referenced display, store or brand account does not exist."""


class ConflictError(ActivationCoreError):
    """The display is already activated against a live store."""

    def __init__(self, message: str, store_id: str | None = None) -> None:
        self.store_id = store_id
        super().__init__(message)


class LedgerError(ActivationCoreError):
    """A ledger write would violate a balance invariant."""


class ExternalSyncError(ActivationCoreError):
    """A CRM or notification call failed (network error or non-2xx)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class ConfigurationError(ActivationCoreError):
    """A required secret or integration credential is not configured."""


class DecryptionError(ActivationCoreError):
    """A stored credential blob was tampered with or encrypted under another key."""
