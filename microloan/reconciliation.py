"""
Reconciliation Engine Module

Replays the complete payment history of a loan against its installment
schedule and recomputes the status of every installment from scratch.
Payments are never mapped to a specific installment: the total paid is
applied earliest installment first, so the oldest outstanding obligation is
always retired before a later one.

Running reconciliation twice with the same inputs yields the same result, and
any earlier inconsistency in stored statuses is overwritten by the recompute.
"""

from decimal import Decimal
from datetime import date, datetime
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence
from enum import Enum
import logging

from .currency import Money, Currency, sum_money
from .schedule import Installment, InstallmentStatus
from .validation import ConsistencyError


logger = logging.getLogger("microloan.reconciliation")


class LoanStatus(Enum):
    """Loan lifecycle states"""
    ACTIVE = "active"          # Repayment in progress
    COMPLETED = "completed"    # Every installment fully paid
    DEFAULTED = "defaulted"    # Set by an administrator, never by reconciliation


class PaymentMethod(Enum):
    """How a payment was collected"""
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    UPI = "upi"
    CHEQUE = "cheque"


@dataclass(frozen=True)
class Payment:
    """
    Immutable record of money received against a loan.

    Payments are append-only: once recorded they are never edited or deleted.
    """
    id: str
    loan_id: str
    amount: Money
    payment_date: date
    method: PaymentMethod
    reference: Optional[str] = None     # Transaction ID, cheque number, etc.
    notes: Optional[str] = None
    recorded_by: Optional[str] = None
    created_at: Optional[datetime] = None
    sequence: int = 0                   # Insertion order within the loan

    def to_dict(self) -> Dict[str, Any]:
        """Convert payment to a storage row"""
        return {
            'id': self.id,
            'loan_id': self.loan_id,
            'amount': str(self.amount.amount),
            'currency': self.amount.currency.code,
            'payment_date': self.payment_date.isoformat(),
            'method': self.method.value,
            'reference': self.reference,
            'notes': self.notes,
            'recorded_by': self.recorded_by,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'sequence': self.sequence
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Payment':
        """Rebuild a payment from a storage row"""
        created_at = data.get('created_at')
        return cls(
            id=data['id'],
            loan_id=data['loan_id'],
            amount=Money(Decimal(data['amount']), Currency[data['currency']]),
            payment_date=date.fromisoformat(data['payment_date']),
            method=PaymentMethod(data['method']),
            reference=data.get('reference'),
            notes=data.get('notes'),
            recorded_by=data.get('recorded_by'),
            created_at=datetime.fromisoformat(created_at) if created_at else None,
            sequence=data.get('sequence', 0)
        )


@dataclass
class ReconciliationResult:
    """Recomputed installment states plus loan-level settlement"""
    installments: List[Installment]
    payments: List[Payment]
    as_of: date
    total_paid: Money
    total_due: Money
    fully_settled: bool

    @property
    def currency(self) -> Currency:
        return self.total_due.currency

    @property
    def applied_amount(self) -> Money:
        """Money allocated to installments"""
        return sum_money((i.paid_amount for i in self.installments), self.currency)

    @property
    def unapplied_amount(self) -> Money:
        """Money received beyond the schedule total"""
        return self.total_paid - self.applied_amount

    @property
    def outstanding_amount(self) -> Money:
        return self.total_due - self.applied_amount

    @property
    def overdue_installments(self) -> List[Installment]:
        return [i for i in self.installments if i.status == InstallmentStatus.OVERDUE]

    @property
    def past_due_installments(self) -> List[Installment]:
        """Not fully paid and due before the reconciliation date"""
        return [
            i for i in self.installments
            if i.status != InstallmentStatus.PAID and i.due_date < self.as_of
        ]

    @property
    def overdue_amount(self) -> Money:
        return sum_money((i.outstanding_amount for i in self.past_due_installments), self.currency)

    @property
    def partially_paid_installment(self) -> Optional[Installment]:
        for installment in self.installments:
            if installment.status == InstallmentStatus.PARTIALLY_PAID:
                return installment
        return None

    @property
    def next_due_installment(self) -> Optional[Installment]:
        """Earliest installment that still has money owing"""
        for installment in self.installments:
            if installment.status != InstallmentStatus.PAID:
                return installment
        return None


def _check_consistency(installments: List[Installment], payments: List[Payment]) -> None:
    problems = []

    if not installments:
        raise ConsistencyError(["Loan has no installments"])

    currency = installments[0].amount.currency
    ordered = sorted(installments, key=lambda i: i.sequence_number)
    numbers = [i.sequence_number for i in ordered]
    if numbers != list(range(1, len(ordered) + 1)):
        problems.append(f"Installment sequence numbers must run 1..{len(ordered)}, got {numbers}")

    loan_ids = {i.loan_id for i in installments if i.loan_id}
    if len(loan_ids) > 1:
        problems.append(f"Installments belong to more than one loan: {sorted(loan_ids)}")

    for installment in ordered:
        if installment.amount.currency != currency:
            problems.append(
                f"Installment {installment.sequence_number} is in "
                f"{installment.amount.currency.code}, expected {currency.code}"
            )
        elif not installment.amount.is_positive():
            problems.append(
                f"Installment {installment.sequence_number} amount must be positive, "
                f"got {installment.amount.to_string()}"
            )

    for payment in payments:
        if payment.amount.currency != currency:
            problems.append(
                f"Payment {payment.id} is in {payment.amount.currency.code}, expected {currency.code}"
            )
        elif not payment.amount.is_positive():
            problems.append(
                f"Payment {payment.id} amount must be positive, got {payment.amount.to_string()}"
            )
        if loan_ids and payment.loan_id not in loan_ids:
            problems.append(f"Payment {payment.id} belongs to loan {payment.loan_id}")

    if problems:
        logger.error(f"Refusing to reconcile: {'; '.join(problems)}")
        raise ConsistencyError(problems)


def reconcile(
    installments: Sequence[Installment],
    payments: Sequence[Payment],
    as_of: date
) -> ReconciliationResult:
    """
    Recompute every installment's status from the full payment history

    Args:
        installments: The loan's complete installment set
        payments: Every payment ever recorded against the loan
        as_of: Reconciliation date, used for overdue classification and
            as the paid date of fully covered installments

    Returns:
        ReconciliationResult with new installment objects; inputs are untouched

    Raises:
        ConsistencyError: If installments are empty or non-contiguous, or a
            payment is non-positive or foreign to the loan
    """
    installments = list(installments)
    payments = list(payments)
    _check_consistency(installments, payments)

    currency = installments[0].amount.currency
    zero = Money.zero(currency)

    # Stable sort: same-day payments keep their insertion order
    ordered_payments = sorted(payments, key=lambda p: (p.payment_date, p.sequence))
    total_paid = sum_money((p.amount for p in ordered_payments), currency)

    remaining = total_paid
    recomputed = []
    for installment in sorted(installments, key=lambda i: i.sequence_number):
        if remaining >= installment.amount:
            recomputed.append(replace(
                installment,
                status=InstallmentStatus.PAID,
                paid_amount=installment.amount,
                paid_date=as_of
            ))
            remaining = remaining - installment.amount
        elif remaining.is_positive():
            recomputed.append(replace(
                installment,
                status=InstallmentStatus.PARTIALLY_PAID,
                paid_amount=remaining,
                paid_date=None
            ))
            remaining = zero
        else:
            if installment.due_date < as_of:
                status = InstallmentStatus.OVERDUE
            else:
                status = InstallmentStatus.PENDING
            recomputed.append(replace(
                installment,
                status=status,
                paid_amount=zero,
                paid_date=None
            ))

    total_due = sum_money((i.amount for i in recomputed), currency)
    fully_settled = all(i.paid_amount == i.amount for i in recomputed)

    logger.debug(
        f"Reconciled {len(recomputed)} installments against {len(ordered_payments)} payments "
        f"as of {as_of.isoformat()}: paid {total_paid.to_string()} of {total_due.to_string()}"
    )

    return ReconciliationResult(
        installments=recomputed,
        payments=ordered_payments,
        as_of=as_of,
        total_paid=total_paid,
        total_due=total_due,
        fully_settled=fully_settled
    )


def next_loan_status(current: LoanStatus, fully_settled: bool) -> LoanStatus:
    """
    Apply the settlement flag to the loan lifecycle

    Only active -> completed is decided here. Every other status passes
    through unchanged; a completed loan is never reverted.
    """
    if current == LoanStatus.ACTIVE and fully_settled:
        return LoanStatus.COMPLETED
    return current
