"""Token association state of an account over ledger time."""

from typing import Dict, Iterable, List

import structlog

from .payload import decode_association_records, decode_tokens
from .store import LedgerStore
from .models import AssociationRecord, Token

logger = structlog.get_logger()


def latest_per_token(records: Iterable[AssociationRecord], timestamp: int) -> Dict[int, AssociationRecord]:
    """Select each token's effective record at ``timestamp``.

    The effective record is the one with the greatest modification
    timestamp <= ``timestamp``. Between two records of a token with the same
    modification timestamp, the dissociated one wins.
    """
    latest: Dict[int, AssociationRecord] = {}
    for record in records:
        if record.modified_timestamp > timestamp:
            continue

        key = record.token.token_id.encoded_id
        current = latest.get(key)
        if (
            current is None
            or record.modified_timestamp > current.modified_timestamp
            or (record.modified_timestamp == current.modified_timestamp and not record.associated)
        ):
            latest[key] = record

    return latest


class AssociationResolver:
    """Resolves dissociated tokens and tokens moved in the following block."""

    def __init__(self, store: LedgerStore):
        self.store = store
        self.logger = logger.bind(component="association_resolver")

    def dissociated_tokens_as_of(self, account_id: int, timestamp: int) -> List[Token]:
        """Tokens whose effective association state at ``timestamp`` is dissociated.

        Raises:
            MalformedPayload: If a history row fails to decode
            StorageUnavailable: If the store cannot answer
        """
        records = decode_association_records(
            self.store.get_association_history(account_id, timestamp)
        )
        latest = latest_per_token(records, timestamp)

        tokens = [
            latest[key].token
            for key in sorted(latest)
            if not latest[key].associated
        ]

        self.logger.debug(
            "dissociated_tokens_resolved",
            account_id=account_id,
            timestamp=timestamp,
            token_count=len(tokens),
        )
        return tokens

    def tokens_transferred_in_block_after(self, account_id: int, timestamp: int) -> List[Token]:
        """Distinct tokens moved to or from the account in the block after ``timestamp``.

        The next block is the one with the smallest end strictly greater than
        ``timestamp``. Returns an empty list when no such block is recorded yet.

        Raises:
            MalformedPayload: If a token row fails to decode
            StorageUnavailable: If the store cannot answer
        """
        block = self.store.get_block_after(timestamp)
        if block is None:
            self.logger.debug("no_block_after", account_id=account_id, timestamp=timestamp)
            return []

        rows = self.store.get_tokens_transferred_between(
            account_id, block.consensus_start, block.consensus_end
        )

        distinct: Dict[int, Token] = {}
        for token in decode_tokens(rows):
            distinct.setdefault(token.token_id.encoded_id, token)

        return [distinct[key] for key in sorted(distinct)]
