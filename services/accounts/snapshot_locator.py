"""Locate the balance snapshot that applies to a point in ledger time."""

import structlog

from .errors import LedgerNotYetInitialized
from .payload import decode_token_amounts
from .store import LedgerStore
from .models import BalanceSnapshot

logger = structlog.get_logger()


class SnapshotLocator:
    """Finds an account's state in the latest snapshot at or before a timestamp.

    Snapshots are taken for the whole ledger at once, so the applicable
    snapshot is the global maximum snapshot timestamp <= T. An account
    missing from that snapshot held nothing: native balance 0, no tokens.
    """

    def __init__(self, store: LedgerStore):
        self.store = store
        self.logger = logger.bind(component="snapshot_locator")

    def locate(self, account_id: int, timestamp: int) -> BalanceSnapshot:
        """Return the account's snapshot state applicable at ``timestamp``.

        Raises:
            LedgerNotYetInitialized: If no snapshot exists at or before timestamp
            MalformedPayload: If the snapshot's token balances fail to decode
            StorageUnavailable: If the store cannot answer
        """
        row = self.store.get_latest_snapshot_at_or_before(account_id, timestamp)
        if row is None:
            raise LedgerNotYetInitialized(
                f"No balance snapshot at or before timestamp {timestamp}"
            )

        token_amounts = decode_token_amounts(row.token_balances)
        snapshot = BalanceSnapshot(
            consensus_timestamp=row.consensus_timestamp,
            native=row.balance,
            tokens={amount.token_id.encoded_id: amount for amount in token_amounts},
        )

        self.logger.debug(
            "snapshot_located",
            account_id=account_id,
            timestamp=timestamp,
            snapshot_timestamp=snapshot.consensus_timestamp,
            token_count=len(snapshot.tokens),
        )
        return snapshot
