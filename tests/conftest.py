import sys
import json
import pytest
from pathlib import Path
from unittest.mock import MagicMock, patch


# Ensure the project root (containing ledger_history and services) is importable.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from services.accounts.store import BalanceChangeRow, SnapshotRow
from services.accounts.models import Block


class InMemoryLedgerStore:
    """LedgerStore over plain lists, answering the way the SQL queries do.

    Token aggregates come back as JSON text, like the Postgres store.
    """

    def __init__(self):
        self.token_decimals = {}
        self.snapshot_files = []
        self.account_balances = {}  # (snapshot ts, account) -> native
        self.token_balances = {}  # (snapshot ts, account) -> {token: value}
        self.crypto_transfers = []  # (ts, account, amount)
        self.token_transfers = []  # (ts, account, token, amount)
        self.associations = []  # (account, token, ts, associated)
        self.blocks = []
        self.calls = []

    # Builders

    def add_token(self, token_id, decimals):
        self.token_decimals[token_id] = decimals
        return self

    def add_snapshot(self, timestamp, balances=None):
        """balances: {account: (native, {token_id: value})}"""
        self.snapshot_files.append(timestamp)
        for account, (native, tokens) in (balances or {}).items():
            self.account_balances[(timestamp, account)] = native
            self.token_balances[(timestamp, account)] = dict(tokens)
        return self

    def add_transfer(self, timestamp, account, amount, token_id=None):
        if token_id is None:
            self.crypto_transfers.append((timestamp, account, amount))
        else:
            self.token_transfers.append((timestamp, account, token_id, amount))
        return self

    def add_association(self, account, token_id, timestamp, associated):
        self.associations.append((account, token_id, timestamp, associated))
        return self

    def add_block(self, start, end):
        self.blocks.append(Block(start, end))
        return self

    # LedgerStore

    def get_latest_snapshot_at_or_before(self, account_id, timestamp):
        self.calls.append("get_latest_snapshot_at_or_before")
        candidates = [ts for ts in self.snapshot_files if ts <= timestamp]
        if not candidates:
            return None

        latest = max(candidates)
        tokens = self.token_balances.get((latest, account_id), {})
        return SnapshotRow(
            consensus_timestamp=latest,
            balance=self.account_balances.get((latest, account_id), 0),
            token_balances=json.dumps([
                {"token_id": token_id, "decimals": self.token_decimals[token_id], "value": value}
                for token_id, value in tokens.items()
            ]),
        )

    def sum_signed_transfers(self, account_id, start_exclusive, end_inclusive):
        self.calls.append("sum_signed_transfers")
        native = sum(
            amount for ts, account, amount in self.crypto_transfers
            if account == account_id and start_exclusive < ts <= end_inclusive
        )
        sums = {}
        for ts, account, token_id, amount in self.token_transfers:
            if account == account_id and start_exclusive < ts <= end_inclusive:
                sums[token_id] = sums.get(token_id, 0) + amount

        return BalanceChangeRow(
            value=native,
            token_values=json.dumps([
                {"token_id": token_id, "decimals": self.token_decimals[token_id], "value": value}
                for token_id, value in sums.items()
            ]),
        )

    def get_association_history(self, account_id, upto_timestamp):
        self.calls.append("get_association_history")
        rows = [
            {
                "token_id": token_id,
                "decimals": self.token_decimals[token_id],
                "modified_timestamp": ts,
                "associated": associated,
            }
            for account, token_id, ts, associated in self.associations
            if account == account_id and ts <= upto_timestamp
        ]
        return sorted(rows, key=lambda r: (r["token_id"], r["modified_timestamp"]))

    def get_block_after(self, timestamp):
        self.calls.append("get_block_after")
        later = [block for block in self.blocks if block.consensus_end > timestamp]
        return min(later, key=lambda b: b.consensus_end) if later else None

    def get_tokens_transferred_between(self, account_id, start_inclusive, end_inclusive):
        self.calls.append("get_tokens_transferred_between")
        token_ids = sorted({
            token_id for ts, account, token_id, _ in self.token_transfers
            if account == account_id and start_inclusive <= ts <= end_inclusive
        })
        return [{"token_id": t, "decimals": self.token_decimals[t]} for t in token_ids]


@pytest.fixture
def ledger():
    """Empty in-memory ledger store"""
    return InMemoryLedgerStore()


@pytest.fixture
def mock_db_pool():
    """Mock database connection pool"""
    with patch('ledger_history.common.db._pool') as mock_pool:
        mock_conn = MagicMock()
        mock_cursor = MagicMock()
        mock_cursor.__enter__ = MagicMock(return_value=mock_cursor)
        mock_cursor.__exit__ = MagicMock(return_value=None)
        mock_conn.cursor.return_value = mock_cursor
        mock_conn.__enter__ = MagicMock(return_value=mock_conn)
        mock_conn.__exit__ = MagicMock(return_value=None)
        mock_pool.connection.return_value = mock_conn
        yield mock_pool


@pytest.fixture
def temp_log_dir(tmp_path):
    """Create temporary log directory for tests"""
    log_dir = tmp_path / "logs"
    log_dir.mkdir()
    return log_dir
