"""
Loan Module

Loan activation, payment recording, reconciliation write-back, default
marking and progress queries. Installments are persisted once at activation
from the schedule generator and afterwards only their status fields change,
always through a full reconciliation over the loan's payment history.
"""

from decimal import Decimal, ROUND_HALF_UP
from datetime import datetime, timezone, date
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union
from contextlib import contextmanager
import logging
import threading
import uuid

from .audit import AuditTrail, AuditEventType
from .config import MicroloanConfig, get_config
from .currency import Money, to_decimal
from .logging_config import log_action
from .reconciliation import (
    LoanStatus, Payment, PaymentMethod, ReconciliationResult, next_loan_status, reconcile
)
from .roles import Actor, Permission, Role, check_permission
from .schedule import (
    Installment, LoanTerms, generate_loan_number, generate_schedule, validate_loan_terms
)
from .storage import StorageInterface, StorageRecord
from .validation import ValidationError


logger = logging.getLogger("microloan.loans")


@dataclass
class Loan(StorageRecord):
    """Loan aggregate: terms, schedule anchor and lifecycle status"""
    loan_number: str
    borrower_id: str
    terms: LoanTerms
    start_date: date
    status: LoanStatus = LoanStatus.ACTIVE
    created_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    defaulted_at: Optional[datetime] = None
    default_reason: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == LoanStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        """Convert loan to a storage row"""
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'loan_number': self.loan_number,
            'borrower_id': self.borrower_id,
            'terms': self.terms.to_dict(),
            'start_date': self.start_date.isoformat(),
            'status': self.status.value,
            'created_by': self.created_by,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'defaulted_at': self.defaulted_at.isoformat() if self.defaulted_at else None,
            'default_reason': self.default_reason
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        """Rebuild a loan from a storage row"""
        def get_datetime(field: str) -> Optional[datetime]:
            if data.get(field):
                return datetime.fromisoformat(data[field])
            return None

        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_number=data['loan_number'],
            borrower_id=data['borrower_id'],
            terms=LoanTerms.from_dict(data['terms']),
            start_date=date.fromisoformat(data['start_date']),
            status=LoanStatus(data['status']),
            created_by=data.get('created_by'),
            completed_at=get_datetime('completed_at'),
            defaulted_at=get_datetime('defaulted_at'),
            default_reason=data.get('default_reason')
        )


@dataclass
class LoanProgress:
    """Repayment progress as shown on loan and dashboard screens"""
    loan_id: str
    status: LoanStatus
    as_of: date
    total_payable: Money
    total_paid: Money
    outstanding: Money
    unapplied: Money
    percent_complete: Decimal
    installments_total: int
    installments_paid: int
    overdue_count: int
    overdue_amount: Money
    next_due: Optional[Installment]


class LoanManager:
    """
    Runs the loan workflows around the schedule generator and reconciliation engine

    Payment recording and reconciliation for one loan are serialized by a
    per-loan lock, and every write-back happens inside a single atomic block.
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        config: Optional[MicroloanConfig] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.config = config or get_config()

        self.loans_table = "loans"
        self.installments_table = "installments"
        self.payments_table = "loan_payments"

        self._loan_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _loan_lock(self, loan_id: str) -> Iterator[None]:
        """At most one payment/reconciliation per loan at a time"""
        with self._locks_guard:
            lock = self._loan_locks.setdefault(loan_id, threading.Lock())
        with lock:
            yield

    @contextmanager
    def _atomic(self) -> Iterator[None]:
        try:
            with self.storage.atomic():
                yield
        except Exception:
            # Audit events written inside the block were rolled back with it
            self.audit_trail.reload()
            raise

    def _audit(self, event_type: AuditEventType, loan_id: str,
               metadata: Dict[str, Any], user_id: Optional[str] = None) -> None:
        if self.config.enable_audit_logging:
            self.audit_trail.log_event(
                event_type=event_type,
                entity_type="loan",
                entity_id=loan_id,
                metadata=metadata,
                user_id=user_id
            )

    def create_loan(
        self,
        borrower_id: str,
        terms: LoanTerms,
        actor: Actor,
        start_date: Optional[date] = None
    ) -> Loan:
        """
        Activate a new loan and persist its installment schedule

        Args:
            borrower_id: Borrower receiving the loan
            terms: Loan terms
            actor: Lender or administrator creating the loan
            start_date: Activation date (defaults to today); installment k
                falls due k months later

        Returns:
            Created Loan

        Raises:
            PermissionError: If the actor cannot create loans
            ValidationError: With every problem found in the request
        """
        check_permission(actor, Permission.CREATE_LOAN)

        validation = validate_loan_terms(terms, self.config)
        if self.config.single_active_loan_per_borrower:
            if any(loan.is_active for loan in self.get_borrower_loans(borrower_id)):
                validation.errors.append(
                    "Borrower already has an active loan. Please close existing loan first."
                )
        validation.raise_if_invalid()

        now = datetime.now(timezone.utc)
        start_date = start_date or now.date()
        loan_id = str(uuid.uuid4())
        installments = generate_schedule(terms, start_date, loan_id=loan_id, config=self.config)

        loan = Loan(
            id=loan_id,
            created_at=now,
            updated_at=now,
            loan_number=generate_loan_number(self.config.loan_number_prefix, today=now.date()),
            borrower_id=borrower_id,
            terms=terms,
            start_date=start_date,
            status=LoanStatus.ACTIVE,
            created_by=actor.user_id
        )

        # Loan and schedule are written together or not at all
        with self._atomic():
            self.storage.save(self.loans_table, loan.id, loan.to_dict())
            for installment in installments:
                self.storage.save(self.installments_table, installment.id, installment.to_dict())

            self._audit(AuditEventType.LOAN_CREATED, loan.id, {
                "loan_number": loan.loan_number,
                "borrower_id": borrower_id,
                "principal": terms.principal_amount.to_string(),
                "annual_interest_rate": str(terms.annual_interest_rate),
                "tenure_months": terms.tenure_months,
                "start_date": start_date.isoformat()
            }, user_id=actor.user_id)
            self._audit(AuditEventType.SCHEDULE_GENERATED, loan.id, {
                "installments": len(installments),
                "installment_amount": installments[0].amount.to_string(),
                "last_installment_amount": installments[-1].amount.to_string(),
                "first_due_date": installments[0].due_date.isoformat(),
                "last_due_date": installments[-1].due_date.isoformat()
            }, user_id=actor.user_id)

        for warning in validation.warnings:
            logger.warning(f"Loan {loan.loan_number}: {warning}")

        log_action(logger, "info", f"Loan {loan.loan_number} created",
                   user_id=actor.user_id, action="create_loan", resource=loan.id,
                   extra={"borrower_id": borrower_id, "tenure_months": terms.tenure_months})
        return loan

    def record_payment(
        self,
        loan_id: str,
        amount: Union[Money, Decimal, str],
        method: Union[PaymentMethod, str],
        actor: Actor,
        payment_date: Optional[date] = None,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
        as_of: Optional[date] = None
    ) -> Tuple[Payment, ReconciliationResult]:
        """
        Append a payment to a loan and reconcile the whole loan

        Args:
            loan_id: Loan ID
            amount: Amount received (must be > 0)
            method: Payment method
            actor: Lender or administrator recording the payment
            payment_date: Date money was received (defaults to today)
            reference: Transaction ID, cheque number, etc.
            notes: Free text
            as_of: Reconciliation date (defaults to today)

        Returns:
            Tuple of the recorded Payment and the ReconciliationResult

        Raises:
            PermissionError: If the actor cannot record payments
            ValueError: If the loan does not exist
            ValidationError: If the amount is invalid or the loan is not active
        """
        check_permission(actor, Permission.RECORD_PAYMENT)
        today = date.today()

        with self._loan_lock(loan_id):
            loan = self._require_loan(loan_id)
            currency = loan.terms.currency

            errors = []
            payment_amount = None
            max_payment = Decimal(self.config.max_payment_amount)
            if isinstance(amount, Money):
                if amount.currency != currency:
                    errors.append(f"Payment must be in {currency.code}, got {amount.currency.code}")
                if amount.amount > max_payment:
                    errors.append(f"Payment amount cannot exceed {max_payment}")
                payment_amount = amount
            else:
                value = to_decimal(amount)
                if value is None or not value.is_finite():
                    errors.append("Payment amount must be a finite decimal")
                elif value > max_payment:
                    errors.append(f"Payment amount cannot exceed {max_payment}")
                else:
                    payment_amount = Money(value, currency)
            if payment_amount is not None and not payment_amount.is_positive():
                errors.append("Payment amount must be greater than zero")

            try:
                method = PaymentMethod(method)
            except ValueError:
                errors.append(f"Unknown payment method: {method}")

            if not loan.is_active:
                errors.append(f"Cannot record payment for {loan.status.value} loan")

            if errors:
                raise ValidationError(errors)

            existing = self.get_payments(loan_id)
            now = datetime.now(timezone.utc)
            payment = Payment(
                id=str(uuid.uuid4()),
                loan_id=loan_id,
                amount=payment_amount,
                payment_date=payment_date or today,
                method=method,
                reference=reference,
                notes=notes,
                recorded_by=actor.user_id,
                created_at=now,
                sequence=max((p.sequence for p in existing), default=0) + 1
            )

            with self._atomic():
                self.storage.save(self.payments_table, payment.id, payment.to_dict())
                self._audit(AuditEventType.PAYMENT_RECORDED, loan_id, {
                    "payment_id": payment.id,
                    "amount": payment.amount.to_string(),
                    "payment_date": payment.payment_date.isoformat(),
                    "method": payment.method.value,
                    "reference": reference
                }, user_id=actor.user_id)
                result = self._reconcile_and_store(loan, existing + [payment], as_of or today,
                                                   user_id=actor.user_id)

        log_action(logger, "info", f"Payment of {payment.amount.to_string()} recorded",
                   user_id=actor.user_id, action="record_payment", resource=loan_id,
                   extra={"payment_id": payment.id,
                          "outstanding": str(result.outstanding_amount.amount)})
        return payment, result

    def reconcile_loan(
        self,
        loan_id: str,
        as_of: Optional[date] = None,
        actor: Optional[Actor] = None
    ) -> ReconciliationResult:
        """
        Recompute and persist installment statuses for a loan

        Used after payments and for periodic overdue refreshes. Runs for any
        loan status; the status itself only ever moves active -> completed.

        Args:
            loan_id: Loan ID
            as_of: Reconciliation date (defaults to today)
            actor: Optional user triggering the run; system runs pass None
        """
        if actor is not None:
            check_permission(actor, Permission.RECONCILE_LOAN)

        with self._loan_lock(loan_id):
            loan = self._require_loan(loan_id)
            with self._atomic():
                return self._reconcile_and_store(
                    loan, self.get_payments(loan_id), as_of or date.today(),
                    user_id=actor.user_id if actor else None
                )

    def _reconcile_and_store(
        self,
        loan: Loan,
        payments: List[Payment],
        as_of: date,
        user_id: Optional[str] = None
    ) -> ReconciliationResult:
        result = reconcile(self.get_installments(loan.id), payments, as_of)

        for installment in result.installments:
            self.storage.save(self.installments_table, installment.id, installment.to_dict())

        now = datetime.now(timezone.utc)
        previous_status = loan.status
        loan.status = next_loan_status(loan.status, result.fully_settled)
        loan.updated_at = now
        if loan.status != previous_status:
            loan.completed_at = now
        self.storage.save(self.loans_table, loan.id, loan.to_dict())

        self._audit(AuditEventType.LOAN_RECONCILED, loan.id, {
            "as_of": as_of.isoformat(),
            "total_paid": result.total_paid.to_string(),
            "outstanding": result.outstanding_amount.to_string(),
            "unapplied": result.unapplied_amount.to_string(),
            "overdue_installments": len(result.overdue_installments),
            "fully_settled": result.fully_settled
        }, user_id=user_id)

        if loan.status != previous_status:
            self._audit(AuditEventType.LOAN_COMPLETED, loan.id, {
                "total_paid": result.total_paid.to_string(),
                "completed_at": now
            }, user_id=user_id)
            logger.info(f"Loan {loan.loan_number} fully settled and marked completed")

        return result

    def mark_defaulted(self, loan_id: str, actor: Actor, reason: str) -> Loan:
        """
        Mark an active loan as defaulted (administrative decision)

        Raises:
            PermissionError: If the actor cannot mark defaults
            ValueError: If the loan does not exist or is not active
        """
        check_permission(actor, Permission.MARK_DEFAULTED)

        with self._loan_lock(loan_id):
            loan = self._require_loan(loan_id)
            if not loan.is_active:
                raise ValueError(f"Can only default ACTIVE loans, loan is {loan.status.value}")

            now = datetime.now(timezone.utc)
            loan.status = LoanStatus.DEFAULTED
            loan.defaulted_at = now
            loan.default_reason = reason
            loan.updated_at = now

            with self._atomic():
                self.storage.save(self.loans_table, loan.id, loan.to_dict())
                self._audit(AuditEventType.LOAN_DEFAULTED, loan.id,
                            {"reason": reason}, user_id=actor.user_id)

        log_action(logger, "warning", f"Loan {loan.loan_number} marked defaulted",
                   user_id=actor.user_id, action="mark_defaulted", resource=loan.id,
                   extra={"reason": reason})
        return loan

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        """Get loan by ID"""
        data = self.storage.load(self.loans_table, loan_id)
        if data:
            return Loan.from_dict(data)
        return None

    def _require_loan(self, loan_id: str) -> Loan:
        loan = self.get_loan(loan_id)
        if not loan:
            raise ValueError(f"Loan {loan_id} not found")
        return loan

    def get_borrower_loans(self, borrower_id: str) -> List[Loan]:
        """Get all loans for a borrower"""
        rows = self.storage.find(self.loans_table, {"borrower_id": borrower_id})
        return [Loan.from_dict(data) for data in rows]

    def get_installments(self, loan_id: str) -> List[Installment]:
        """Get a loan's installments ordered by sequence number"""
        rows = self.storage.find(self.installments_table, {"loan_id": loan_id})
        installments = [Installment.from_dict(data) for data in rows]
        installments.sort(key=lambda i: i.sequence_number)
        return installments

    def get_payments(self, loan_id: str) -> List[Payment]:
        """Get payment history for a loan, oldest first"""
        rows = self.storage.find(self.payments_table, {"loan_id": loan_id})
        payments = [Payment.from_dict(data) for data in rows]
        payments.sort(key=lambda p: (p.payment_date, p.sequence))
        return payments

    def get_loan_progress(self, loan_id: str, as_of: Optional[date] = None) -> LoanProgress:
        """
        Compute repayment progress without writing anything

        Overdue flags are derived for the given date rather than read from
        the last stored reconciliation.
        """
        loan = self._require_loan(loan_id)
        as_of = as_of or date.today()
        result = reconcile(self.get_installments(loan_id), self.get_payments(loan_id), as_of)

        applied = result.applied_amount
        percent = (applied.amount / result.total_due.amount * Decimal('100')).quantize(
            Decimal('0.01'), rounding=ROUND_HALF_UP
        )

        return LoanProgress(
            loan_id=loan_id,
            status=loan.status,
            as_of=as_of,
            total_payable=result.total_due,
            total_paid=result.total_paid,
            outstanding=result.outstanding_amount,
            unapplied=result.unapplied_amount,
            percent_complete=percent,
            installments_total=len(result.installments),
            installments_paid=sum(1 for i in result.installments if i.is_paid),
            overdue_count=len(result.past_due_installments),
            overdue_amount=result.overdue_amount,
            next_due=result.next_due_installment
        )


def check_view_access(loan: Loan, actor: Actor) -> None:
    """
    Ensure the actor may view a loan; borrowers only see their own loans

    Raises:
        PermissionError: If access is not allowed
    """
    check_permission(actor, Permission.VIEW_LOAN)
    if actor.role == Role.BORROWER and loan.borrower_id != actor.user_id:
        raise PermissionError(f"User {actor.user_id} cannot view loan {loan.id}")
