"""
Pydantic schemas for API requests and responses

Money always travels as a decimal string plus currency code.
"""

from datetime import date
from typing import List, Optional
from pydantic import BaseModel, Field

from ..currency import Money, Currency
from ..loans import Loan, LoanProgress
from ..reconciliation import Payment, ReconciliationResult
from ..schedule import Installment, LoanSummary, LoanTerms
from ..validation import ValidationError


class MoneyModel(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    currency: str = Field(..., description="Currency code (INR, USD, etc.)")

    @classmethod
    def from_money(cls, money: Money) -> 'MoneyModel':
        return cls(amount=str(money.amount), currency=money.currency.code)


class LoanTermsModel(BaseModel):
    principal: str = Field(..., description="Principal as decimal string")
    annual_interest_rate: str = Field(..., description="Flat annual rate in percent, e.g. '12'")
    tenure_months: int
    currency: Optional[str] = Field(None, description="Currency code; defaults to the configured currency")

    def to_loan_terms(self, default_currency: str) -> LoanTerms:
        code = self.currency or default_currency
        try:
            currency = Currency[code]
        except KeyError:
            raise ValidationError([f"Unsupported currency: {code}"])
        return LoanTerms(
            principal=self.principal,
            annual_interest_rate=self.annual_interest_rate,
            tenure_months=self.tenure_months,
            currency=currency
        )

    @classmethod
    def from_terms(cls, terms: LoanTerms) -> 'LoanTermsModel':
        return cls(
            principal=str(terms.principal),
            annual_interest_rate=str(terms.annual_interest_rate),
            tenure_months=terms.tenure_months,
            currency=terms.currency.code
        )


class InstallmentModel(BaseModel):
    sequence_number: int
    due_date: date
    amount: MoneyModel
    status: str
    paid_amount: MoneyModel
    outstanding_amount: MoneyModel
    paid_date: Optional[date] = None

    @classmethod
    def from_installment(cls, installment: Installment) -> 'InstallmentModel':
        return cls(
            sequence_number=installment.sequence_number,
            due_date=installment.due_date,
            amount=MoneyModel.from_money(installment.amount),
            status=installment.status.value,
            paid_amount=MoneyModel.from_money(installment.paid_amount),
            outstanding_amount=MoneyModel.from_money(installment.outstanding_amount),
            paid_date=installment.paid_date
        )


class PaymentModel(BaseModel):
    id: str
    loan_id: str
    amount: MoneyModel
    payment_date: date
    method: str
    reference: Optional[str] = None
    notes: Optional[str] = None
    recorded_by: Optional[str] = None

    @classmethod
    def from_payment(cls, payment: Payment) -> 'PaymentModel':
        return cls(
            id=payment.id,
            loan_id=payment.loan_id,
            amount=MoneyModel.from_money(payment.amount),
            payment_date=payment.payment_date,
            method=payment.method.value,
            reference=payment.reference,
            notes=payment.notes,
            recorded_by=payment.recorded_by
        )


class LoanModel(BaseModel):
    id: str
    loan_number: str
    borrower_id: str
    terms: LoanTermsModel
    start_date: date
    status: str
    created_by: Optional[str] = None
    default_reason: Optional[str] = None

    @classmethod
    def from_loan(cls, loan: Loan) -> 'LoanModel':
        return cls(
            id=loan.id,
            loan_number=loan.loan_number,
            borrower_id=loan.borrower_id,
            terms=LoanTermsModel.from_terms(loan.terms),
            start_date=loan.start_date,
            status=loan.status.value,
            created_by=loan.created_by,
            default_reason=loan.default_reason
        )


class LoanSummaryModel(BaseModel):
    principal: MoneyModel
    total_interest: MoneyModel
    total_payable: MoneyModel
    installment_amount: MoneyModel
    last_installment_amount: MoneyModel
    tenure_months: int
    effective_annual_rate: str
    warnings: List[str] = []

    @classmethod
    def from_summary(cls, summary: LoanSummary) -> 'LoanSummaryModel':
        return cls(
            principal=MoneyModel.from_money(summary.principal),
            total_interest=MoneyModel.from_money(summary.total_interest),
            total_payable=MoneyModel.from_money(summary.total_payable),
            installment_amount=MoneyModel.from_money(summary.installment_amount),
            last_installment_amount=MoneyModel.from_money(summary.last_installment_amount),
            tenure_months=summary.tenure_months,
            effective_annual_rate=str(summary.effective_annual_rate),
            warnings=summary.warnings
        )


class ReconciliationModel(BaseModel):
    as_of: date
    fully_settled: bool
    total_paid: MoneyModel
    total_due: MoneyModel
    outstanding: MoneyModel
    unapplied: MoneyModel
    overdue: MoneyModel
    installments: List[InstallmentModel]

    @classmethod
    def from_result(cls, result: ReconciliationResult) -> 'ReconciliationModel':
        return cls(
            as_of=result.as_of,
            fully_settled=result.fully_settled,
            total_paid=MoneyModel.from_money(result.total_paid),
            total_due=MoneyModel.from_money(result.total_due),
            outstanding=MoneyModel.from_money(result.outstanding_amount),
            unapplied=MoneyModel.from_money(result.unapplied_amount),
            overdue=MoneyModel.from_money(result.overdue_amount),
            installments=[InstallmentModel.from_installment(i) for i in result.installments]
        )


class LoanProgressModel(BaseModel):
    loan_id: str
    status: str
    as_of: date
    total_payable: MoneyModel
    total_paid: MoneyModel
    outstanding: MoneyModel
    percent_complete: str
    installments_total: int
    installments_paid: int
    overdue_count: int
    overdue_amount: MoneyModel
    next_due: Optional[InstallmentModel] = None

    @classmethod
    def from_progress(cls, progress: LoanProgress) -> 'LoanProgressModel':
        return cls(
            loan_id=progress.loan_id,
            status=progress.status.value,
            as_of=progress.as_of,
            total_payable=MoneyModel.from_money(progress.total_payable),
            total_paid=MoneyModel.from_money(progress.total_paid),
            outstanding=MoneyModel.from_money(progress.outstanding),
            percent_complete=str(progress.percent_complete),
            installments_total=progress.installments_total,
            installments_paid=progress.installments_paid,
            overdue_count=progress.overdue_count,
            overdue_amount=MoneyModel.from_money(progress.overdue_amount),
            next_due=InstallmentModel.from_installment(progress.next_due) if progress.next_due else None
        )


# Requests
class SchedulePreviewRequest(BaseModel):
    terms: LoanTermsModel
    start_date: date


class CreateLoanRequest(BaseModel):
    borrower_id: str
    terms: LoanTermsModel
    start_date: Optional[date] = None


class RecordPaymentRequest(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    method: str = Field(..., description="cash, bank_transfer, upi or cheque")
    payment_date: Optional[date] = None
    reference: Optional[str] = None
    notes: Optional[str] = None
    as_of: Optional[date] = None


class ReconcileRequest(BaseModel):
    as_of: Optional[date] = None


class DefaultLoanRequest(BaseModel):
    reason: str
