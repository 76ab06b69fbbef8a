"""Insert a payment (optional) and a pending reconciliation job for it.

Useful for local runs and fault injection, e.g. `--amount 100.13` for a
discrepancy or a made-up `--payment-id` for the missing-payment path.
"""

import argparse
from decimal import Decimal

from reconpay.common.config import settings
from reconpay.common.db import create_db_engine, make_session_factory
from reconpay.services.reconciler.jobs import enqueue_job
from reconpay.services.reconciler.models import Payment


def main() -> None:
    """Parse CLI args and enqueue one job."""

    parser = argparse.ArgumentParser(description="Enqueue one reconciliation job.")
    parser.add_argument("--payment-id", default=None, help="Existing payment id; skips payment creation")
    parser.add_argument("--account-id", default="acct-demo")
    parser.add_argument("--amount", default="50.00")
    parser.add_argument("--currency", default="USD")
    args = parser.parse_args()

    engine = create_db_engine(settings)
    try:
        with make_session_factory(engine)() as db:
            payment_id = args.payment_id
            if payment_id is None:
                payment = Payment(
                    account_id=args.account_id,
                    amount=Decimal(args.amount),
                    currency=args.currency.upper(),
                    status="pending",
                )
                db.add(payment)
                db.flush()
                payment_id = payment.id
            job = enqueue_job(db, payment_id)
            db.commit()
            print(f"Enqueued job_id={job.id} payment_id={payment_id}")
    finally:
        engine.dispose()


if __name__ == "__main__":
    main()
