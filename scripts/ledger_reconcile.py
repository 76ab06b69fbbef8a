"""Replay ledger entries per account and print any running-balance breaks."""

import argparse
import json

from reconpay.common.config import settings
from reconpay.common.db import create_db_engine, make_session_factory
from reconpay.services.reconciler.ledger import verify_account_chain, verify_all_accounts


def main() -> None:
    """CLI entrypoint for ledger chain checks."""

    parser = argparse.ArgumentParser(description="Verify ledger balance_after chains against a running sum.")
    parser.add_argument("--account-id", default=None, help="Check one account instead of all")
    args = parser.parse_args()

    engine = create_db_engine(settings)
    try:
        with make_session_factory(engine)() as db:
            if args.account_id:
                report = {args.account_id: verify_account_chain(db, args.account_id)}
            else:
                report = verify_all_accounts(db)
    finally:
        engine.dispose()

    breaks = {
        account_id: [
            {
                "entry_id": b.entry_id,
                "expected_balance": str(b.expected_balance),
                "stored_balance": str(b.stored_balance),
            }
            for b in account_breaks
        ]
        for account_id, account_breaks in report.items()
        if account_breaks
    }
    print(json.dumps({"accounts_with_breaks": len(breaks), "breaks": breaks}, indent=2))
    raise SystemExit(1 if breaks else 0)


if __name__ == "__main__":
    main()
