"""Combine snapshot state with a balance change.

Both inputs are left untouched: the snapshot may be shared by concurrent
queries, so the merge always builds new values.
"""

from typing import Dict, Iterable, List, Mapping, Tuple

from .models import Amount, BalanceChange, BalanceSnapshot, NativeAmount, TokenAmount


def merge(
    snapshot_native: int,
    snapshot_tokens: Mapping[int, TokenAmount],
    delta_native: int,
    delta_tokens: Iterable[TokenAmount],
) -> Tuple[int, Tuple[TokenAmount, ...]]:
    """Apply deltas to snapshot balances.

    Tokens present in the snapshot keep their decimals and gain the delta;
    tokens only seen in the delta are added with the delta's value and
    decimals. Snapshot tokens whose balance ends at zero are kept.

    Args:
        snapshot_native: Native balance at the snapshot
        snapshot_tokens: Snapshot token amounts keyed by encoded token id
        delta_native: Signed native change since the snapshot
        delta_tokens: Signed token changes since the snapshot

    Returns:
        Final native balance and the final token amounts (order unspecified)
    """
    final_tokens: Dict[int, TokenAmount] = dict(snapshot_tokens)

    for delta in delta_tokens:
        key = delta.token_id.encoded_id
        current = final_tokens.get(key)
        if current is None:
            final_tokens[key] = delta
        else:
            final_tokens[key] = TokenAmount(current.token_id, current.decimals, current.value + delta.value)

    return snapshot_native + delta_native, tuple(final_tokens.values())


def merge_balances(snapshot: BalanceSnapshot, change: BalanceChange) -> List[Amount]:
    """Native amount first, then every token amount."""
    native, tokens = merge(snapshot.native, snapshot.tokens, change.native, change.tokens)
    amounts: List[Amount] = [NativeAmount(native)]
    amounts.extend(tokens)
    return amounts
