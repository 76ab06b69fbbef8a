"""Move one failed reconciliation job back to `pending`.

The claim query never picks up failed jobs on its own; this is the operator
path once the underlying cause (e.g. a missing payment row) is fixed.
"""

import argparse

from reconpay.common.config import settings
from reconpay.common.db import create_db_engine, make_session_factory
from reconpay.services.reconciler.jobs import requeue_failed_job


def main() -> None:
    """Parse CLI args and requeue the job."""

    parser = argparse.ArgumentParser(description="Requeue a failed reconciliation job.")
    parser.add_argument("--job-id", required=True)
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()

    engine = create_db_engine(settings)
    try:
        with make_session_factory(engine)() as db:
            try:
                job = requeue_failed_job(db, args.job_id)
            except ValueError as exc:
                raise SystemExit(f"Cannot requeue job_id={args.job_id}: {exc}") from exc
            if args.dry_run:
                db.rollback()
                print(f"Dry run only; job_id={job.id} attempts={job.attempts} would be requeued.")
                return
            db.commit()
            print(f"Requeued job_id={job.id} attempts={job.attempts}")
    finally:
        engine.dispose()


if __name__ == "__main__":
    main()
