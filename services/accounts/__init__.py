"""Point-in-time account balance reconstruction.

A balance at time T is the account's state in the latest snapshot at or
before T plus the signed transfers after that snapshot up to T.

Components log through structlog. Unless the application configured
structlog first, events are handed to stdlib logging: debug events are
dropped and nothing is written to stdout until the application installs
handlers (see ``ledger_history.common.logging_setup.setup_logging``).
"""
import structlog

from ledger_history.common.logging_setup import configure_structlog

from .errors import (
    LedgerError,
    StorageUnavailable,
    MalformedPayload,
    LedgerNotYetInitialized,
    QueryResult,
)
from .models import (
    EntityId,
    Token,
    NativeAmount,
    TokenAmount,
    Block,
    AssociationRecord,
    BalanceSnapshot,
    BalanceChange,
)
from .store import LedgerStore, PostgresLedgerStore
from .snapshot_locator import SnapshotLocator
from .delta_accumulator import DeltaAccumulator
from .balance_merger import merge, merge_balances
from .association_resolver import AssociationResolver
from .service import AccountBalanceService

if not structlog.is_configured():
    configure_structlog()

__all__ = [
    # Errors
    'LedgerError',
    'StorageUnavailable',
    'MalformedPayload',
    'LedgerNotYetInitialized',
    'QueryResult',

    # Values
    'EntityId',
    'Token',
    'NativeAmount',
    'TokenAmount',
    'Block',
    'AssociationRecord',
    'BalanceSnapshot',
    'BalanceChange',

    # Store
    'LedgerStore',
    'PostgresLedgerStore',

    # Components
    'SnapshotLocator',
    'DeltaAccumulator',
    'merge',
    'merge_balances',
    'AssociationResolver',
    'AccountBalanceService',
]
