"""Net balance change of an account over a window of transfers."""

from typing import Dict

import structlog

from .payload import decode_token_amounts
from .store import LedgerStore
from .models import BalanceChange, TokenAmount

logger = structlog.get_logger()


class DeltaAccumulator:
    """Sums signed transfers for an account in ``(since, until]``.

    The lower bound is exclusive so that transfers already reflected in the
    snapshot at ``since`` are not counted twice.
    """

    def __init__(self, store: LedgerStore):
        self.store = store
        self.logger = logger.bind(component="delta_accumulator")

    def accumulate(self, account_id: int, since_exclusive: int, until_inclusive: int) -> BalanceChange:
        """Return the per-asset signed change in ``(since_exclusive, until_inclusive]``.

        An empty window yields a zero change without touching the store.

        Raises:
            ValueError: If the window is inverted
            MalformedPayload: If the token sums fail to decode
            StorageUnavailable: If the store cannot answer
        """
        if until_inclusive < since_exclusive:
            raise ValueError(
                f"Inverted window: since {since_exclusive} is after until {until_inclusive}"
            )
        if until_inclusive == since_exclusive:
            return BalanceChange()

        row = self.store.sum_signed_transfers(account_id, since_exclusive, until_inclusive)
        token_deltas = decode_token_amounts(row.token_values)

        # The store groups by token, but a token must never appear twice in a change
        grouped: Dict[int, TokenAmount] = {}
        for delta in token_deltas:
            key = delta.token_id.encoded_id
            if key in grouped:
                existing = grouped[key]
                grouped[key] = TokenAmount(existing.token_id, existing.decimals, existing.value + delta.value)
            else:
                grouped[key] = delta

        change = BalanceChange(native=row.value, tokens=tuple(grouped.values()))

        self.logger.debug(
            "delta_accumulated",
            account_id=account_id,
            since=since_exclusive,
            until=until_inclusive,
            native_delta=change.native,
            token_count=len(change.tokens),
        )
        return change
