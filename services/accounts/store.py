"""Read-only access to the mirrored ledger tables.

The store only runs SQL and hands rows back; aggregates come back as JSON
text and are decoded by ``payload``. Driver failures are translated into
``StorageUnavailable`` here and logged once. Queries are never retried.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol

import psycopg
import structlog

from ledger_history.common import db
from .errors import StorageUnavailable
from .models import Block

logger = structlog.get_logger()

LATEST_SNAPSHOT_AT_OR_BEFORE = """
WITH abm AS (
    SELECT max(consensus_timestamp) AS max
    FROM account_balance_file
    WHERE consensus_timestamp <= %(timestamp)s
)
SELECT
    abm.max AS consensus_timestamp,
    coalesce(ab.balance, 0) AS balance,
    coalesce((
        SELECT json_agg(json_build_object(
            'token_id', tb.token_id,
            'decimals', t.decimals,
            'value', tb.balance
        ))::text
        FROM token_balance tb
        JOIN token t ON t.token_id = tb.token_id
        WHERE tb.consensus_timestamp = abm.max AND tb.account_id = %(account_id)s
    ), '[]') AS token_balances
FROM abm
LEFT JOIN account_balance ab
    ON ab.consensus_timestamp = abm.max AND ab.account_id = %(account_id)s
"""

BALANCE_CHANGE_BETWEEN = """
SELECT
    coalesce((
        SELECT sum(amount)::bigint
        FROM crypto_transfer
        WHERE consensus_timestamp > %(start)s
          AND consensus_timestamp <= %(end)s
          AND entity_id = %(account_id)s
    ), 0) AS value,
    coalesce((
        SELECT json_agg(change)::text
        FROM (
            SELECT json_build_object(
                'token_id', tt.token_id,
                'decimals', t.decimals,
                'value', sum(tt.amount)::bigint
            ) AS change
            FROM token_transfer tt
            JOIN token t ON t.token_id = tt.token_id
            WHERE tt.consensus_timestamp > %(start)s
              AND tt.consensus_timestamp <= %(end)s
              AND tt.account_id = %(account_id)s
            GROUP BY tt.account_id, tt.token_id, t.decimals
        ) token_change
    ), '[]') AS token_values
"""

ASSOCIATION_HISTORY_UP_TO = """
SELECT ta.token_id, t.decimals, ta.modified_timestamp, ta.associated
FROM token_account ta
JOIN token t ON t.token_id = ta.token_id
WHERE ta.account_id = %(account_id)s
  AND ta.modified_timestamp <= %(timestamp)s
ORDER BY ta.token_id, ta.modified_timestamp
"""

BLOCK_AFTER = """
SELECT consensus_start, consensus_end
FROM record_file
WHERE consensus_end > %(timestamp)s
ORDER BY consensus_end
LIMIT 1
"""

TOKENS_TRANSFERRED_BETWEEN = """
SELECT DISTINCT tt.token_id, t.decimals
FROM token_transfer tt
JOIN token t ON t.token_id = tt.token_id
WHERE tt.account_id = %(account_id)s
  AND tt.consensus_timestamp >= %(start)s
  AND tt.consensus_timestamp <= %(end)s
ORDER BY tt.token_id
"""


@dataclass(frozen=True)
class SnapshotRow:
    consensus_timestamp: int
    balance: int
    token_balances: Any


@dataclass(frozen=True)
class BalanceChangeRow:
    value: int
    token_values: Any


class LedgerStore(Protocol):
    """Read interface the balance services need from a ledger store."""

    def get_latest_snapshot_at_or_before(self, account_id: int, timestamp: int) -> Optional[SnapshotRow]:
        ...

    def sum_signed_transfers(self, account_id: int, start_exclusive: int, end_inclusive: int) -> BalanceChangeRow:
        ...

    def get_association_history(self, account_id: int, upto_timestamp: int) -> List[Mapping[str, Any]]:
        ...

    def get_block_after(self, timestamp: int) -> Optional[Block]:
        ...

    def get_tokens_transferred_between(
        self, account_id: int, start_inclusive: int, end_inclusive: int
    ) -> List[Mapping[str, Any]]:
        ...


class PostgresLedgerStore:
    """LedgerStore backed by the mirror node PostgreSQL schema."""

    def __init__(self):
        self.logger = logger.bind(component="ledger_store")

    def _fetch_one(self, name: str, query: str, params: Dict[str, int]) -> Optional[Dict[str, Any]]:
        try:
            return db.fetch_one(query, params)
        except psycopg.Error as e:
            self.logger.error("storage_unavailable", query=name, error=str(e))
            raise StorageUnavailable(f"Query {name} failed: {e}") from e

    def _fetch_all(self, name: str, query: str, params: Dict[str, int]) -> List[Dict[str, Any]]:
        try:
            return db.fetch_all(query, params)
        except psycopg.Error as e:
            self.logger.error("storage_unavailable", query=name, error=str(e))
            raise StorageUnavailable(f"Query {name} failed: {e}") from e

    def get_latest_snapshot_at_or_before(self, account_id: int, timestamp: int) -> Optional[SnapshotRow]:
        row = self._fetch_one(
            "latest_snapshot",
            LATEST_SNAPSHOT_AT_OR_BEFORE,
            {"account_id": account_id, "timestamp": timestamp},
        )
        if row is None or row["consensus_timestamp"] is None:
            return None

        return SnapshotRow(
            consensus_timestamp=row["consensus_timestamp"],
            balance=row["balance"],
            token_balances=row["token_balances"],
        )

    def sum_signed_transfers(self, account_id: int, start_exclusive: int, end_inclusive: int) -> BalanceChangeRow:
        row = self._fetch_one(
            "balance_change",
            BALANCE_CHANGE_BETWEEN,
            {"account_id": account_id, "start": start_exclusive, "end": end_inclusive},
        )
        if row is None:
            return BalanceChangeRow(value=0, token_values="[]")

        return BalanceChangeRow(value=row["value"], token_values=row["token_values"])

    def get_association_history(self, account_id: int, upto_timestamp: int) -> List[Dict[str, Any]]:
        return self._fetch_all(
            "association_history",
            ASSOCIATION_HISTORY_UP_TO,
            {"account_id": account_id, "timestamp": upto_timestamp},
        )

    def get_block_after(self, timestamp: int) -> Optional[Block]:
        row = self._fetch_one("block_after", BLOCK_AFTER, {"timestamp": timestamp})
        if row is None:
            return None

        return Block(consensus_start=row["consensus_start"], consensus_end=row["consensus_end"])

    def get_tokens_transferred_between(
        self, account_id: int, start_inclusive: int, end_inclusive: int
    ) -> List[Dict[str, Any]]:
        return self._fetch_all(
            "tokens_transferred",
            TOKENS_TRANSFERRED_BETWEEN,
            {"account_id": account_id, "start": start_inclusive, "end": end_inclusive},
        )
