"""Historical account balance queries for API layers.

Every public method returns a ``QueryResult``. Ledger failures are carried
in ``QueryResult.error``; they are never raised to the caller and never
retried here.
"""

from typing import Callable, List, Optional, TypeVar

import structlog

from .association_resolver import AssociationResolver
from .balance_merger import merge_balances
from .delta_accumulator import DeltaAccumulator
from .errors import LedgerError, QueryResult, StorageUnavailable
from .snapshot_locator import SnapshotLocator
from .store import LedgerStore, PostgresLedgerStore
from .models import Amount, Token

logger = structlog.get_logger()

T = TypeVar("T")


class AccountBalanceService:
    """Point-in-time balances and token association history of accounts.

    Holds no mutable state; one instance can serve concurrent queries.
    """

    def __init__(self, store: Optional[LedgerStore] = None):
        self.store = store if store is not None else PostgresLedgerStore()
        self.snapshot_locator = SnapshotLocator(self.store)
        self.delta_accumulator = DeltaAccumulator(self.store)
        self.association_resolver = AssociationResolver(self.store)
        self.logger = logger.bind(component="account_balance_service")

    def _run(self, operation: str, account_id: int, timestamp: int, query: Callable[[], T]) -> QueryResult[T]:
        self.logger.debug(operation, account_id=account_id, timestamp=timestamp)
        try:
            return QueryResult(value=query())
        except LedgerError as e:
            # StorageUnavailable is logged where the driver error is translated
            if not isinstance(e, StorageUnavailable):
                self.logger.warning(
                    "query_failed",
                    operation=operation,
                    account_id=account_id,
                    timestamp=timestamp,
                    code=e.code,
                    error=e.message,
                )
            return QueryResult(error=e)

    def _balance_at_block(self, account_id: int, block_end_timestamp: int) -> List[Amount]:
        # balance = balance at latest snapshot + change between snapshot and block end
        snapshot = self.snapshot_locator.locate(account_id, block_end_timestamp)
        change = self.delta_accumulator.accumulate(
            account_id, snapshot.consensus_timestamp, block_end_timestamp
        )
        return merge_balances(snapshot, change)

    def get_balance_at_block(self, account_id: int, block_end_timestamp: int) -> QueryResult[List[Amount]]:
        """Native amount followed by token amounts as of ``block_end_timestamp``."""
        return self._run(
            "get_balance_at_block",
            account_id,
            block_end_timestamp,
            lambda: self._balance_at_block(account_id, block_end_timestamp),
        )

    def get_dissociated_tokens(self, account_id: int, block_end_timestamp: int) -> QueryResult[List[Token]]:
        """Tokens the account is dissociated from as of ``block_end_timestamp``."""
        return self._run(
            "get_dissociated_tokens",
            account_id,
            block_end_timestamp,
            lambda: self.association_resolver.dissociated_tokens_as_of(account_id, block_end_timestamp),
        )

    def get_tokens_transferred_after(self, account_id: int, timestamp: int) -> QueryResult[List[Token]]:
        """Tokens moved to or from the account in the block after ``timestamp``."""
        return self._run(
            "get_tokens_transferred_after",
            account_id,
            timestamp,
            lambda: self.association_resolver.tokens_transferred_in_block_after(account_id, timestamp),
        )
