"""Typed values shared by the balance reconstruction services."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Tuple, Union

SHARD_BITS = 15
REALM_BITS = 16
NUM_BITS = 32

MAX_SHARD = (1 << SHARD_BITS) - 1
MAX_REALM = (1 << REALM_BITS) - 1
MAX_NUM = (1 << NUM_BITS) - 1
MAX_ENCODED_ID = (1 << 63) - 1

NATIVE_SYMBOL = "HBAR"
NATIVE_DECIMALS = 8


@dataclass(frozen=True, order=True)
class EntityId:
    """Ledger entity id (account or token) in shard.realm.num form."""

    shard: int
    realm: int
    num: int

    def __post_init__(self):
        for name, value, upper in (
            ("shard", self.shard, MAX_SHARD),
            ("realm", self.realm, MAX_REALM),
            ("num", self.num, MAX_NUM),
        ):
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValueError(f"{name} must be an integer, got {value!r}")
            if value < 0 or value > upper:
                raise ValueError(f"{name} {value} out of range [0, {upper}]")

    @property
    def encoded_id(self) -> int:
        return (self.shard << (REALM_BITS + NUM_BITS)) | (self.realm << NUM_BITS) | self.num

    @classmethod
    def from_encoded(cls, encoded_id: int) -> "EntityId":
        if isinstance(encoded_id, bool) or not isinstance(encoded_id, int):
            raise ValueError(f"Encoded id must be an integer, got {encoded_id!r}")
        if encoded_id < 0 or encoded_id > MAX_ENCODED_ID:
            raise ValueError(f"Encoded id {encoded_id} out of range")

        return cls(
            shard=encoded_id >> (REALM_BITS + NUM_BITS),
            realm=(encoded_id >> NUM_BITS) & MAX_REALM,
            num=encoded_id & MAX_NUM,
        )

    @classmethod
    def parse(cls, text: str) -> "EntityId":
        """Parse ``shard.realm.num``, ``realm.num`` or a bare encoded id.

        Raises:
            ValueError: If the text is not a valid entity id
        """
        if not text:
            raise ValueError("Entity id must not be empty")

        parts = text.split(".")
        if len(parts) > 3 or not all(p.isascii() and p.isdecimal() for p in parts):
            raise ValueError(f"Invalid entity id {text!r}")

        values = [int(p) for p in parts]
        if len(values) == 1:
            return cls.from_encoded(values[0])
        if len(values) == 2:
            return cls(0, values[0], values[1])
        return cls(*values)

    def __str__(self) -> str:
        return f"{self.shard}.{self.realm}.{self.num}"


@dataclass(frozen=True)
class Token:
    token_id: EntityId
    decimals: int

    def to_dict(self) -> dict:
        return {"token_id": str(self.token_id), "decimals": self.decimals}


@dataclass(frozen=True)
class NativeAmount:
    """Balance of the ledger's native currency, in its smallest unit."""

    value: int

    decimals = NATIVE_DECIMALS
    symbol = NATIVE_SYMBOL

    def to_dict(self) -> dict:
        return {"asset": self.symbol, "decimals": self.decimals, "value": self.value}


@dataclass(frozen=True)
class TokenAmount:
    token_id: EntityId
    decimals: int
    value: int

    @property
    def token(self) -> Token:
        return Token(self.token_id, self.decimals)

    def to_dict(self) -> dict:
        return {"asset": str(self.token_id), "decimals": self.decimals, "value": self.value}


Amount = Union[NativeAmount, TokenAmount]


@dataclass(frozen=True)
class Block:
    """A contiguous ledger interval, both bounds inclusive."""

    consensus_start: int
    consensus_end: int


@dataclass(frozen=True)
class AssociationRecord:
    token: Token
    modified_timestamp: int
    associated: bool


def _freeze(tokens: Mapping[int, TokenAmount]) -> Mapping[int, TokenAmount]:
    return MappingProxyType(dict(tokens))


@dataclass(frozen=True)
class BalanceSnapshot:
    """Account state at a snapshot, token amounts keyed by encoded token id."""

    consensus_timestamp: int
    native: int
    tokens: Mapping[int, TokenAmount] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "tokens", _freeze(self.tokens))


@dataclass(frozen=True)
class BalanceChange:
    """Net signed per-asset change over a window of transfers."""

    native: int = 0
    tokens: Tuple[TokenAmount, ...] = ()
