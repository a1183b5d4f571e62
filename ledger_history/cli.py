import argparse
import json
import logging
import sys
from typing import List, Optional

from .common.config import get_config
from .common.logging_setup import setup_logging
from .common.db import check_connection, close_pool
from services.accounts import AccountBalanceService, EntityId, QueryResult


def _account_id(text: str) -> int:
    try:
        return EntityId.parse(text).encoded_id
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def _emit(result: QueryResult) -> int:
    if not result.ok:
        print(json.dumps({"error": result.error.to_dict()}))
        return 1

    print(json.dumps([item.to_dict() for item in result.value]))
    return 0


def cmd_health(_: argparse.Namespace) -> int:
    logging.info("testing database connectivity")
    ok = check_connection()
    print(json.dumps({"db": "ok" if ok else "unavailable"}))
    return 0 if ok else 1


def cmd_balance(args: argparse.Namespace) -> int:
    service = AccountBalanceService()
    return _emit(service.get_balance_at_block(args.account, args.timestamp))


def cmd_dissociated(args: argparse.Namespace) -> int:
    service = AccountBalanceService()
    return _emit(service.get_dissociated_tokens(args.account, args.timestamp))


def cmd_transferred_after(args: argparse.Namespace) -> int:
    service = AccountBalanceService()
    return _emit(service.get_tokens_transferred_after(args.account, args.timestamp))


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser("ledger-history")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("health").set_defaults(func=cmd_health)

    for name, func, help_text in (
        ("balance", cmd_balance, "balances at the block ending at --timestamp"),
        ("dissociated", cmd_dissociated, "tokens dissociated as of --timestamp"),
        ("transferred-after", cmd_transferred_after, "tokens moved in the block after --timestamp"),
    ):
        p_cmd = sub.add_parser(name, help=help_text)
        p_cmd.add_argument("--account", type=_account_id, required=True,
                           help="account id, e.g. 0.0.1234")
        p_cmd.add_argument("--timestamp", type=int, required=True,
                           help="consensus timestamp in nanoseconds")
        p_cmd.set_defaults(func=func)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging()
    logging.debug({"config": get_config()})
    try:
        return args.func(args)
    finally:
        close_pool()


if __name__ == "__main__":
    sys.exit(main())
