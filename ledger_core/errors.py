"""
Error Taxonomy

DESIGN DECISION: Every failure the engine can surface has its own type.
Callers decide what to show the user by catching a class, never by
parsing a message.

Three families:
1. Rejected input / invariant violations - raised synchronously, never retried
2. Transient infrastructure failures - StorageError and its subclasses
3. Non-fatal aggregate failures - logged as warnings, converged by recompute
"""


class LedgerError(Exception):
    """Base exception for the ledger engine."""
    pass


# =============================================================================
# INPUT AND INVARIANT VIOLATIONS
# =============================================================================

class InvalidArgumentError(LedgerError, ValueError):
    """Bad input, rejected before any I/O."""
    pass


class InvalidPhoneError(InvalidArgumentError):
    """Phone number has fewer than 10 digits after normalization."""
    pass


class NotFoundError(LedgerError):
    """Referenced entity does not exist."""
    pass


class LedgerMismatchError(LedgerError):
    """Recipient does not belong to the ledger named by the caller."""
    pass


class PhoneAlreadyRegisteredError(LedgerError):
    """Normalized phone is already claimed by a recipient or an admin."""
    pass


class AccessCodeUnavailableError(LedgerError):
    """Access code does not exist or has already been used."""
    pass


class AggregateUpdateFailedError(LedgerError):
    """
    A summary increment failed after the transaction was written.

    The transaction stands. The summary is stale until the next recompute.
    """
    pass


# =============================================================================
# STORAGE FAILURES
# =============================================================================

class StorageError(LedgerError):
    """Base exception for storage operations."""
    pass


class StoreUnavailableError(StorageError):
    """Storage backend could not be reached or rejected the call transiently."""
    pass


class StoreTimeoutError(StorageError):
    """A storage call did not finish within the configured timeout."""
    pass


class DocumentExistsError(StorageError):
    """Attempted to create a document that already exists."""
    pass


class TransactionConflictError(StorageError):
    """An atomic unit kept losing to concurrent writers and gave up."""
    pass
