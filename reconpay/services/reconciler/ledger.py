"""Append-only ledger access.

All reads and writes here run on the caller's session, inside the same
transaction as the payment update that triggers them.
"""

import zlib
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select, text

from reconpay.common.db import store_now
from reconpay.services.reconciler.models import LedgerEntry

ZERO = Decimal("0.00")
PAYMENT_ENTRY = "payment"


@dataclass(frozen=True)
class ChainBreak:
    """One ledger row whose stored balance disagrees with the running sum."""

    entry_id: int
    account_id: str
    expected_balance: Decimal
    stored_balance: Decimal


def lock_account(db, account_id: str) -> None:
    """Serialize appenders on one account's ledger tail for this transaction.

    PostgreSQL gets a transaction-scoped advisory lock; other stores rely on
    their own write serialization.
    """

    if db.get_bind().dialect.name != "postgresql":
        return
    key = zlib.crc32(account_id.encode("utf-8"))
    db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": key})


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def ledger_tail(db, account_id: str):
    """Most recent `(balance_after, created_at)` row for the account, or None."""

    return db.execute(
        select(LedgerEntry.balance_after, LedgerEntry.created_at)
        .where(LedgerEntry.account_id == account_id)
        .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
        .limit(1)
    ).first()


def latest_balance(db, account_id: str) -> Decimal:
    """Balance after the most recent entry for the account, or zero."""

    tail = ledger_tail(db, account_id)
    return ZERO if tail is None else Decimal(tail.balance_after)


def append_entry(
    db,
    account_id: str,
    payment_id: str,
    amount: Decimal,
    balance_after: Decimal,
    created_at: datetime,
    entry_type: str = PAYMENT_ENTRY,
) -> LedgerEntry:
    entry = LedgerEntry(
        account_id=account_id,
        payment_id=payment_id,
        entry_type=entry_type,
        amount=amount,
        balance_after=balance_after,
        created_at=created_at,
    )
    db.add(entry)
    db.flush()
    return entry


def post_payment(db, account_id: str, payment_id: str, amount: Decimal) -> LedgerEntry:
    """Read the account tail and append one entry carrying the new running total.

    The entry time is read from the store once the account lock is held and is
    never earlier than the tail it chains from, so ordering by `created_at`
    always replays entries in the order their balances were computed.
    """

    lock_account(db, account_id)
    tail = ledger_tail(db, account_id)
    created_at = _as_utc(db.execute(select(store_now())).scalar_one())
    previous = ZERO
    if tail is not None:
        previous = Decimal(tail.balance_after)
        created_at = max(created_at, _as_utc(tail.created_at))
    new_balance = (previous + Decimal(amount)).quantize(ZERO)
    return append_entry(db, account_id, payment_id, amount, new_balance, created_at)


def verify_account_chain(db, account_id: str) -> list[ChainBreak]:
    """Replay an account's entries from zero and report every mismatched row."""

    entries = db.execute(
        select(LedgerEntry)
        .where(LedgerEntry.account_id == account_id)
        .order_by(LedgerEntry.created_at.asc(), LedgerEntry.id.asc())
    ).scalars().all()
    breaks = []
    running = ZERO
    for entry in entries:
        running = (running + Decimal(entry.amount)).quantize(ZERO)
        stored = Decimal(entry.balance_after).quantize(ZERO)
        if stored != running:
            breaks.append(ChainBreak(entry.id, account_id, running, stored))
            # Continue from the stored value so one bad row is reported once.
            running = stored
    return breaks


def verify_all_accounts(db) -> dict[str, list[ChainBreak]]:
    """Chain check over every account that has ledger activity."""

    account_ids = (
        db.execute(select(LedgerEntry.account_id).distinct().order_by(LedgerEntry.account_id)).scalars().all()
    )
    report = {}
    for account_id in account_ids:
        breaks = verify_account_chain(db, account_id)
        if breaks:
            report[account_id] = breaks
    return report
