"""Decoding of per-asset aggregates returned by the ledger store.

Snapshot and transfer queries return token amounts as a JSON array of
``{"token_id", "decimals", "value"}`` objects. Decoding is kept separate
from both the SQL and the balance arithmetic so that a corrupt aggregate
fails one query with ``MalformedPayload`` instead of surfacing as an
empty result.
"""

import json
from typing import Any, Iterable, List, Mapping, Tuple, Union

from .errors import MalformedPayload
from .models import AssociationRecord, EntityId, Token, TokenAmount

RawPayload = Union[str, bytes, bytearray, List[Any], None]


def _require_int(item: Mapping[str, Any], key: str) -> int:
    if key not in item:
        raise MalformedPayload(f"Missing field '{key}' in {item!r}")
    value = item[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedPayload(f"Field '{key}' must be an integer, got {value!r}")
    return value


def _decode_token(item: Mapping[str, Any]) -> Token:
    if not isinstance(item, Mapping):
        raise MalformedPayload(f"Expected an object, got {item!r}")

    try:
        token_id = EntityId.from_encoded(_require_int(item, "token_id"))
    except ValueError as e:
        raise MalformedPayload(f"Invalid token id: {e}") from e

    decimals = _require_int(item, "decimals")
    if decimals < 0:
        raise MalformedPayload(f"Negative decimals {decimals} for token {token_id}")

    return Token(token_id, decimals)


def decode_token_amounts(raw: RawPayload) -> Tuple[TokenAmount, ...]:
    """Decode a JSON array of token amounts.

    Args:
        raw: JSON text or bytes, an already decoded list, or None

    Returns:
        Tuple of TokenAmount in payload order

    Raises:
        MalformedPayload: If the payload is not a list of well-formed amounts
    """
    if raw is None:
        return ()

    if isinstance(raw, (str, bytes, bytearray)):
        try:
            items = json.loads(raw)
        except (ValueError, UnicodeDecodeError) as e:
            raise MalformedPayload(f"Token amounts are not valid JSON: {e}") from e
    else:
        items = raw

    if not isinstance(items, list):
        raise MalformedPayload(f"Token amounts must be a JSON array, got {type(items).__name__}")

    amounts = []
    for item in items:
        token = _decode_token(item)
        amounts.append(TokenAmount(token.token_id, token.decimals, _require_int(item, "value")))

    return tuple(amounts)


def decode_tokens(rows: Iterable[Mapping[str, Any]]) -> List[Token]:
    """Decode ``(token_id, decimals)`` rows into Tokens."""
    return [_decode_token(row) for row in rows]


def decode_association_records(rows: Iterable[Mapping[str, Any]]) -> List[AssociationRecord]:
    """Decode association history rows.

    Each row carries ``token_id``, ``decimals``, ``modified_timestamp`` and
    ``associated``.
    """
    records = []
    for row in rows:
        token = _decode_token(row)
        associated = row.get("associated")
        if not isinstance(associated, bool):
            raise MalformedPayload(f"Field 'associated' must be a boolean, got {associated!r}")
        records.append(
            AssociationRecord(
                token=token,
                modified_timestamp=_require_int(row, "modified_timestamp"),
                associated=associated,
            )
        )
    return records
