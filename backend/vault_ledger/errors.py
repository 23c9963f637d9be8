# Overview: Typed error taxonomy for vault ledger operations.

"""
Every failure a caller can observe from the vault services is one of these
classes. Routes translate them to JSON with ``to_dict()`` and ``status_code``;
nothing here formats user-facing text beyond a short developer message.

RETRY SEMANTICS:
- ConcurrentModification: safe to retry the whole operation once
- EmptySession / AlreadyFinalized: safe to re-read session state
- Everything else: caller error, never retried by the engine
"""

from __future__ import annotations

from typing import Any


class VaultError(Exception):
    """Base class for all vault ledger errors."""

    code = "VAULT_ERROR"
    status_code = 400

    def __init__(self, message: str | None = None, *, details: dict[str, Any] | None = None):
        self.message = message or self.__class__.__doc__ or self.code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# STOCK
# =============================================================================

class InsufficientStock(VaultError):
    """A withdrawal or override exceeds the quantity held for a face value."""

    code = "INSUFFICIENT_STOCK"
    status_code = 409

    def __init__(self, shortages: dict[int, int], message: str | None = None):
        self.shortages = dict(sorted(shortages.items(), reverse=True))
        if message is None:
            parts = ", ".join(f"{qty} x {face}" for face, qty in self.shortages.items())
            message = f"Insufficient stock: short {parts}"
        super().__init__(
            message,
            details={"shortages": {str(face): qty for face, qty in self.shortages.items()}},
        )


class InvalidDenomination(VaultError):
    """A denomination entry is malformed (bad face value, quantity or duplicate)."""

    code = "INVALID_DENOMINATION"


class InvalidCount(VaultError):
    """A submitted amount does not agree with its denomination breakdown."""

    code = "INVALID_COUNT"


class IncompleteCount(VaultError):
    """A zero count was submitted without every denomination being reviewed."""

    code = "INCOMPLETE_COUNT"


# =============================================================================
# AUDIT
# =============================================================================

class InvalidReason(VaultError):
    """An enumerated reason, source or destination is not recognised."""

    code = "INVALID_REASON"


class InvalidComment(VaultError):
    """Mandatory audit text is missing or too short."""

    code = "INVALID_COMMENT"


class AuditImmutableError(VaultError):
    """Reconciliation records are append-only."""

    code = "AUDIT_IMMUTABLE"
    status_code = 409


# =============================================================================
# COLLECTION SESSIONS
# =============================================================================

class DuplicateMachine(VaultError):
    """The machine already has an entry in this collection session."""

    code = "DUPLICATE_MACHINE"
    status_code = 409


class EntryNotFound(VaultError):
    """The machine has no entry in this collection session."""

    code = "ENTRY_NOT_FOUND"
    status_code = 404


class EmptySession(VaultError):
    """A collection session cannot be finalized without entries."""

    code = "EMPTY_SESSION"
    status_code = 409


class AlreadyFinalized(VaultError):
    """The collection session has already been finalized."""

    code = "ALREADY_FINALIZED"
    status_code = 409


# =============================================================================
# LIFECYCLE / LOOKUP
# =============================================================================

class InvalidStateTransition(VaultError):
    """The requested transition is not allowed from the current status."""

    code = "INVALID_STATE_TRANSITION"
    status_code = 409


class VaultNotFound(VaultError):
    """No vault exists for the given id or location."""

    code = "VAULT_NOT_FOUND"
    status_code = 404


class VaultAlreadyProvisioned(VaultError):
    """A vault already exists for this location."""

    code = "VAULT_ALREADY_PROVISIONED"
    status_code = 409


class ShiftNotFound(VaultError):
    """No cashier shift matches the request."""

    code = "SHIFT_NOT_FOUND"
    status_code = 404


class SessionNotFound(VaultError):
    """No collection session exists for the given id."""

    code = "SESSION_NOT_FOUND"
    status_code = 404


# =============================================================================
# CONCURRENCY
# =============================================================================

class ConcurrentModification(VaultError):
    """Lock contention or a conflicting write; retry the whole operation once."""

    code = "CONCURRENT_MODIFICATION"
    status_code = 409
