"""Error taxonomy for historical balance queries.

Components raise these exceptions; ``AccountBalanceService`` converts them
into ``QueryResult`` values so that no ledger failure reaches a caller as an
exception.
"""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class LedgerError(Exception):
    """Base class for failures of a single ledger query."""

    code = "ledger_error"
    retriable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "retriable": self.retriable,
        }


class StorageUnavailable(LedgerError):
    """The ledger store failed to answer a query."""

    code = "storage_unavailable"
    retriable = True


class MalformedPayload(LedgerError):
    """A stored aggregate failed structural decoding."""

    code = "malformed_payload"


class LedgerNotYetInitialized(LedgerError):
    """No balance snapshot exists at or before the requested timestamp."""

    code = "ledger_not_yet_initialized"
    retriable = True


@dataclass(frozen=True)
class QueryResult(Generic[T]):
    """Outcome of one public query: either a value or a LedgerError."""

    value: Optional[T] = None
    error: Optional[LedgerError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value
