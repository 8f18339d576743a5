"""Errors raised by the ledger and persistence gateways."""


class LedgerError(Exception):
    """Base class for all ledger errors."""


class NotFoundError(LedgerError, LookupError):
    """A referenced project, task or session does not exist."""


class InvalidRangeError(LedgerError, ValueError):
    """A session end is not strictly after its start."""


class ValidationFailedError(LedgerError, ValueError):
    """A required field is empty or a value is not acceptable."""


class PersistenceFailureError(LedgerError):
    """The persistence gateway could not read or write."""
