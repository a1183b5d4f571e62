"""Tests for AccountBalanceService: balance reconstruction end to end."""

import threading
from unittest.mock import MagicMock

import pytest

from services.accounts.balance_merger import merge
from services.accounts.errors import (
    LedgerNotYetInitialized,
    MalformedPayload,
    StorageUnavailable,
)
from services.accounts.service import AccountBalanceService
from services.accounts.store import SnapshotRow
from services.accounts.models import EntityId, NativeAmount, Token

ACCOUNT = 1001
TOKEN_A = 5001
TOKEN_B = 5002


def _as_dict(amounts):
    """Native value plus {token num: (value, decimals)}"""
    native = amounts[0]
    assert isinstance(native, NativeAmount)
    return native.value, {a.token_id.num: (a.value, a.decimals) for a in amounts[1:]}


@pytest.fixture
def busy_ledger(ledger):
    ledger.add_token(TOKEN_A, 2).add_token(TOKEN_B, 0)
    ledger.add_snapshot(100, {ACCOUNT: (500, {TOKEN_A: 10})})
    ledger.add_transfer(120, ACCOUNT, 40)
    ledger.add_transfer(150, ACCOUNT, 5, token_id=TOKEN_A)
    ledger.add_transfer(180, ACCOUNT, -15)
    ledger.add_transfer(250, ACCOUNT, 3, token_id=TOKEN_B)
    ledger.add_transfer(260, ACCOUNT, -10, token_id=TOKEN_A)
    ledger.add_snapshot(400, {ACCOUNT: (525, {TOKEN_A: 5, TOKEN_B: 3})})
    ledger.add_transfer(450, ACCOUNT, 75)
    return ledger


class TestScenarios:
    """Documented reconstruction scenarios"""

    def test_native_transfer_after_snapshot(self, ledger):
        """Snapshot native=1000, +50 at t=150, query at 200"""
        ledger.add_snapshot(100, {ACCOUNT: (1000, {})})
        ledger.add_transfer(150, ACCOUNT, 50)

        result = AccountBalanceService(ledger).get_balance_at_block(ACCOUNT, 200)

        assert result.ok
        assert result.value == [NativeAmount(1050)]

    def test_token_deltas_after_snapshot(self, ledger):
        """Snapshot with token A, deltas to A and a new token B"""
        ledger.add_token(TOKEN_A, 2).add_token(TOKEN_B, 0)
        ledger.add_snapshot(100, {ACCOUNT: (500, {TOKEN_A: 10})})
        ledger.add_transfer(200, ACCOUNT, 5, token_id=TOKEN_A)
        ledger.add_transfer(300, ACCOUNT, 3, token_id=TOKEN_B)

        result = AccountBalanceService(ledger).get_balance_at_block(ACCOUNT, 300)

        assert _as_dict(result.value) == (500, {TOKEN_A: (15, 2), TOKEN_B: (3, 0)})

    def test_no_snapshot_before_target(self, ledger):
        """Querying before the first snapshot yields no partial result"""
        ledger.add_snapshot(100, {ACCOUNT: (1000, {})})

        result = AccountBalanceService(ledger).get_balance_at_block(ACCOUNT, 50)

        assert not result.ok
        assert result.value is None
        assert isinstance(result.error, LedgerNotYetInitialized)
        assert "sum_signed_transfers" not in ledger.calls

    def test_dissociation_history(self, ledger):
        """Token X associated at t=10, dissociated at t=90"""
        ledger.add_token(TOKEN_A, 2)
        ledger.add_association(ACCOUNT, TOKEN_A, 10, True)
        ledger.add_association(ACCOUNT, TOKEN_A, 90, False)
        service = AccountBalanceService(ledger)

        assert service.get_dissociated_tokens(ACCOUNT, 95).value == [Token(EntityId(0, 0, TOKEN_A), 2)]
        assert service.get_dissociated_tokens(ACCOUNT, 50).value == []

    def test_beyond_last_block(self, ledger):
        """T past the last block gives an empty list, not an error"""
        ledger.add_block(1, 10)

        result = AccountBalanceService(ledger).get_tokens_transferred_after(ACCOUNT, 500)

        assert result.ok
        assert result.value == []


class TestReconstructionProperties:
    """Algebraic properties of point-in-time balances"""

    @pytest.mark.parametrize("target", [100, 119, 120, 150, 260, 399, 400, 450, 1000])
    def test_decomposition_identity(self, busy_ledger, target):
        """Balance equals the located snapshot merged with the accumulated delta"""
        service = AccountBalanceService(busy_ledger)

        snapshot = service.snapshot_locator.locate(ACCOUNT, target)
        change = service.delta_accumulator.accumulate(ACCOUNT, snapshot.consensus_timestamp, target)
        native, tokens = merge(snapshot.native, snapshot.tokens, change.native, change.tokens)

        result = service.get_balance_at_block(ACCOUNT, target)

        assert _as_dict(result.value) == _as_dict([NativeAmount(native), *tokens])

    def test_idempotence(self, busy_ledger):
        """Repeated queries against an unchanged ledger agree"""
        service = AccountBalanceService(busy_ledger)

        first = service.get_balance_at_block(ACCOUNT, 300)
        second = service.get_balance_at_block(ACCOUNT, 300)

        assert _as_dict(first.value) == _as_dict(second.value)

    @pytest.mark.parametrize("t1,t2", [(100, 150), (120, 180), (150, 399), (100, 399)])
    def test_monotonic_consistency(self, busy_ledger, t1, t2):
        """Balance difference between T1 and T2 equals the delta over (T1, T2]"""
        service = AccountBalanceService(busy_ledger)

        native1, tokens1 = _as_dict(service.get_balance_at_block(ACCOUNT, t1).value)
        native2, tokens2 = _as_dict(service.get_balance_at_block(ACCOUNT, t2).value)
        change = service.delta_accumulator.accumulate(ACCOUNT, t1, t2)

        assert native2 - native1 == change.native
        for delta in change.tokens:
            before = tokens1.get(delta.token_id.num, (0, delta.decimals))[0]
            assert tokens2[delta.token_id.num][0] - before == delta.value

    def test_zero_balances_are_retained(self, busy_ledger):
        """Token A falls to zero after the second snapshot and is still listed"""
        busy_ledger.add_transfer(420, ACCOUNT, -5, token_id=TOKEN_A)

        native, tokens = _as_dict(
            AccountBalanceService(busy_ledger).get_balance_at_block(ACCOUNT, 450).value
        )

        assert native == 600
        assert tokens == {TOKEN_A: (0, 2), TOKEN_B: (3, 0)}

    def test_concurrent_queries_share_no_state(self, busy_ledger):
        """Parallel queries on one service return consistent results"""
        service = AccountBalanceService(busy_ledger)
        expected = {t: _as_dict(service.get_balance_at_block(ACCOUNT, t).value) for t in (150, 260, 450)}
        results = []
        lock = threading.Lock()

        def worker(target):
            value = _as_dict(service.get_balance_at_block(ACCOUNT, target).value)
            with lock:
                results.append((target, value))

        threads = [threading.Thread(target=worker, args=(t,)) for t in (150, 260, 450) * 10]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(results) == 30
        for target, value in results:
            assert value == expected[target]


class TestErrorResults:
    """Failures come back as results, never as exceptions"""

    def test_storage_unavailable(self):
        store = MagicMock()
        store.get_latest_snapshot_at_or_before.side_effect = StorageUnavailable("connection refused")

        result = AccountBalanceService(store).get_balance_at_block(ACCOUNT, 100)

        assert isinstance(result.error, StorageUnavailable)
        assert result.error.retriable is True
        store.get_latest_snapshot_at_or_before.assert_called_once()

    def test_malformed_payload(self):
        store = MagicMock()
        store.get_latest_snapshot_at_or_before.return_value = SnapshotRow(100, 10, "[{}]")

        result = AccountBalanceService(store).get_balance_at_block(ACCOUNT, 100)

        assert isinstance(result.error, MalformedPayload)
        store.sum_signed_transfers.assert_not_called()

    def test_association_storage_failure(self):
        store = MagicMock()
        store.get_block_after.side_effect = StorageUnavailable("timeout")

        result = AccountBalanceService(store).get_tokens_transferred_after(ACCOUNT, 100)

        assert not result.ok
        with pytest.raises(StorageUnavailable):
            result.unwrap()

    def test_unwrap_success(self, ledger):
        ledger.add_snapshot(100, {ACCOUNT: (7, {})})

        amounts = AccountBalanceService(ledger).get_balance_at_block(ACCOUNT, 100).unwrap()

        assert amounts == [NativeAmount(7)]
