"""Deterministic reconciliation rules.

`reconcile_payment` is pure: no I/O and no clock, so a job can be retried any
number of times and always reach the same verdict. Any callable with the
same signature can be handed to the service instead.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable

VERDICT_COMPLETED = "completed"
VERDICT_DISCREPANCY = "completed_with_discrepancy"
VERDICT_FAILED = "failed"

DISCREPANCY_CENTS = 13
DISCREPANCY_AMOUNT = Decimal("0.13")


@dataclass(frozen=True)
class PaymentSnapshot:
    """Immutable view of the payment row the rules are evaluated against."""

    id: str
    account_id: str
    amount: Decimal
    currency: str
    status: str

    @classmethod
    def from_row(cls, payment) -> "PaymentSnapshot":
        return cls(
            id=payment.id,
            account_id=payment.account_id,
            amount=Decimal(payment.amount),
            currency=payment.currency,
            status=payment.status,
        )


@dataclass(frozen=True)
class ReconciliationVerdict:
    status: str
    matched: bool
    discrepancy_amount: Decimal | None
    notes: str


Reconciler = Callable[[PaymentSnapshot], ReconciliationVerdict]


def _cents_part(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value(rounding=ROUND_HALF_UP)) % 100


def reconcile_payment(payment: PaymentSnapshot) -> ReconciliationVerdict:
    """Apply the ordered rule set; the first matching rule wins."""

    amount = payment.amount
    if amount < 0:
        return ReconciliationVerdict(VERDICT_FAILED, False, None, "negative amount not allowed")
    if amount == 0:
        return ReconciliationVerdict(VERDICT_FAILED, False, None, "zero amount not allowed")
    # Amounts ending in .13 carry a fixed discrepancy.
    if _cents_part(amount) == DISCREPANCY_CENTS:
        return ReconciliationVerdict(VERDICT_DISCREPANCY, False, DISCREPANCY_AMOUNT, "discrepancy detected in amount")
    return ReconciliationVerdict(VERDICT_COMPLETED, True, None, "successfully reconciled")
