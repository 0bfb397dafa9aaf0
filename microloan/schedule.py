"""
Schedule Generator Module

Turns loan terms into a fixed schedule of monthly installments (EMIs) under
the flat-interest model: interest is charged once on the principal for the
whole tenure, and the resulting total is divided evenly across the months.
The final installment absorbs the rounding residual so the schedule always
sums to the rounded total payable.
"""

from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from datetime import date
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from enum import Enum
import calendar
import logging
import secrets

from .currency import Money, Currency, to_decimal
from .config import MicroloanConfig, get_config
from .validation import ValidationResult


logger = logging.getLogger("microloan.schedule")

HUNDRED = Decimal('100')


class InstallmentStatus(Enum):
    """Installment (EMI) statuses derived by reconciliation"""
    PENDING = "pending"                # Not yet due, nothing paid
    PARTIALLY_PAID = "partially_paid"  # Some money applied, not all
    PAID = "paid"                      # Fully covered
    OVERDUE = "overdue"                # Past due date, nothing paid


@dataclass(frozen=True)
class LoanTerms:
    """Loan terms: an immutable value with no identity"""
    principal: Decimal
    annual_interest_rate: Decimal       # Percentage, e.g. 12 for 12% flat
    tenure_months: int
    currency: Currency = Currency.INR

    def __post_init__(self):
        # Coerce numeric input to Decimal; anything unconvertible is left for validation
        for name in ('principal', 'annual_interest_rate'):
            value = to_decimal(getattr(self, name))
            if value is not None:
                object.__setattr__(self, name, value)

    @property
    def principal_amount(self) -> Money:
        return Money(self.principal, self.currency)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'principal': str(self.principal),
            'annual_interest_rate': str(self.annual_interest_rate),
            'tenure_months': self.tenure_months,
            'currency': self.currency.code
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LoanTerms':
        return cls(
            principal=Decimal(data['principal']),
            annual_interest_rate=Decimal(data['annual_interest_rate']),
            tenure_months=data['tenure_months'],
            currency=Currency[data['currency']]
        )


@dataclass(frozen=True)
class Installment:
    """
    Single EMI in a loan schedule.

    Sequence number, due date and amount are fixed at generation time.
    Status, paid amount and paid date are owned by reconciliation.
    """
    sequence_number: int
    due_date: date
    amount: Money
    status: InstallmentStatus = InstallmentStatus.PENDING
    paid_amount: Optional[Money] = None
    paid_date: Optional[date] = None
    loan_id: Optional[str] = None
    id: Optional[str] = None

    def __post_init__(self):
        if self.paid_amount is None:
            object.__setattr__(self, 'paid_amount', Money.zero(self.amount.currency))

    @property
    def outstanding_amount(self) -> Money:
        return self.amount - self.paid_amount

    @property
    def is_paid(self) -> bool:
        return self.status == InstallmentStatus.PAID

    def to_dict(self) -> Dict[str, Any]:
        """Convert installment to a storage row"""
        return {
            'id': self.id,
            'loan_id': self.loan_id,
            'sequence_number': self.sequence_number,
            'due_date': self.due_date.isoformat(),
            'amount': str(self.amount.amount),
            'paid_amount': str(self.paid_amount.amount),
            'currency': self.amount.currency.code,
            'status': self.status.value,
            'paid_date': self.paid_date.isoformat() if self.paid_date else None
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Installment':
        """Rebuild an installment from a storage row"""
        currency = Currency[data['currency']]
        return cls(
            sequence_number=data['sequence_number'],
            due_date=date.fromisoformat(data['due_date']),
            amount=Money(Decimal(data['amount']), currency),
            status=InstallmentStatus(data['status']),
            paid_amount=Money(Decimal(data['paid_amount']), currency),
            paid_date=date.fromisoformat(data['paid_date']) if data.get('paid_date') else None,
            loan_id=data.get('loan_id'),
            id=data.get('id')
        )


@dataclass
class LoanSummary:
    """Totals derived from loan terms"""
    principal: Money
    total_interest: Money
    total_payable: Money
    installment_amount: Money
    last_installment_amount: Money
    tenure_months: int
    effective_annual_rate: Decimal
    warnings: List[str] = field(default_factory=list)


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, clamping to the last day of shorter months"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def _split_total(principal: Decimal, annual_rate: Decimal, tenure_months: int,
                 currency: Currency) -> Tuple[Money, Money, Money]:
    """Return (total payable, regular installment, last installment)"""
    total_payable = Money(principal * (Decimal('1') + annual_rate / HUNDRED), currency)
    regular = total_payable / Decimal(tenure_months)
    last = total_payable - regular * Decimal(tenure_months - 1)
    return total_payable, regular, last


def validate_loan_terms(terms: LoanTerms,
                        config: Optional[MicroloanConfig] = None) -> ValidationResult:
    """
    Validate loan terms against the configured business limits

    Every violated constraint is reported, not just the first one.

    Args:
        terms: Loan terms to validate
        config: Configuration with limits (defaults to global config)

    Returns:
        ValidationResult with errors and warnings
    """
    config = config or get_config()
    result = ValidationResult()

    min_principal = Decimal(config.min_principal)
    max_principal = Decimal(config.max_principal)
    max_rate = Decimal(config.max_interest_rate)
    max_tenure = config.max_tenure_months

    principal = to_decimal(terms.principal)
    if principal is None or not principal.is_finite():
        result.errors.append("Principal amount must be a finite decimal")
        principal = None
    elif principal <= Decimal('0'):
        result.errors.append("Principal amount must be greater than zero")
    elif principal <= min_principal:
        result.errors.append(f"Principal amount must be greater than {min_principal}")
    elif principal > max_principal:
        result.errors.append(f"Principal amount cannot exceed {max_principal}")

    rate = to_decimal(terms.annual_interest_rate)
    if rate is None or not rate.is_finite():
        result.errors.append("Interest rate must be a finite decimal")
        rate = None
    elif rate < Decimal('0'):
        result.errors.append("Interest rate must be non-negative")
    elif rate > max_rate:
        result.errors.append(f"Interest rate cannot exceed {max_rate}%")

    tenure = terms.tenure_months
    if isinstance(tenure, bool) or not isinstance(tenure, int):
        result.errors.append("Tenure must be a whole number of months")
    elif tenure < 1:
        result.errors.append("Tenure must be at least 1 month")
    elif tenure > max_tenure:
        result.errors.append(f"Maximum tenure is {max_tenure} months")

    if not isinstance(terms.currency, Currency):
        result.errors.append("Currency must be a supported ISO 4217 currency")

    if result.errors:
        return result

    total, regular, last = _split_total(principal, rate, tenure, terms.currency)
    if not regular.is_positive() or not last.is_positive():
        result.errors.append(
            f"Total payable {total.to_string()} is too small to spread over {tenure} months"
        )
        return result

    if rate < Decimal(config.low_rate_warning_threshold):
        result.warnings.append(f"Interest rate is very low ({rate}%). Please verify.")
    if rate > HUNDRED:
        result.warnings.append(
            "Total interest exceeds principal amount. Consider reducing tenure or rate."
        )

    return result


def generate_schedule(
    terms: LoanTerms,
    start_date: date,
    loan_id: Optional[str] = None,
    config: Optional[MicroloanConfig] = None
) -> List[Installment]:
    """
    Generate the installment schedule for a loan

    Installment k is due k calendar months after the start date. All
    installments share the same amount except the last, which absorbs the
    rounding residual.

    Args:
        terms: Loan terms
        start_date: Loan start (activation) date
        loan_id: Optional owning loan; also used to derive installment ids
        config: Configuration with limits (defaults to global config)

    Returns:
        List of Installment objects ordered by sequence number

    Raises:
        ValidationError: If terms are invalid (no partial output)
    """
    validate_loan_terms(terms, config).raise_if_invalid()

    _, regular, last = _split_total(
        terms.principal, terms.annual_interest_rate, terms.tenure_months, terms.currency
    )

    schedule = []
    for number in range(1, terms.tenure_months + 1):
        schedule.append(Installment(
            sequence_number=number,
            due_date=add_months(start_date, number),
            amount=last if number == terms.tenure_months else regular,
            loan_id=loan_id,
            id=f"{loan_id}_{number}" if loan_id else None
        ))

    logger.debug(
        f"Generated {len(schedule)} installments of {regular.to_string()} "
        f"(last {last.to_string()}) from {start_date.isoformat()}"
    )
    return schedule


def summarize_terms(terms: LoanTerms, config: Optional[MicroloanConfig] = None) -> LoanSummary:
    """
    Summarize totals for a set of loan terms

    Raises:
        ValidationError: If terms are invalid
    """
    validation = validate_loan_terms(terms, config)
    validation.raise_if_invalid()

    total, regular, last = _split_total(
        terms.principal, terms.annual_interest_rate, terms.tenure_months, terms.currency
    )
    principal = terms.principal_amount

    # Annualized equivalent of the flat total over the tenure
    years = Decimal(terms.tenure_months) / Decimal('12')
    growth = total.amount / principal.amount
    effective = (growth ** (Decimal('1') / years) - Decimal('1')) * HUNDRED

    return LoanSummary(
        principal=principal,
        total_interest=total - principal,
        total_payable=total,
        installment_amount=regular,
        last_installment_amount=last,
        tenure_months=terms.tenure_months,
        effective_annual_rate=effective.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP),
        warnings=validation.warnings
    )


def calculate_affordability(
    monthly_income: Decimal,
    existing_emis: Decimal = Decimal('0'),
    foir: Decimal = Decimal('0.4')
) -> Decimal:
    """
    Maximum new installment a borrower can afford

    Args:
        monthly_income: Borrower's monthly income
        existing_emis: Existing monthly installment obligations
        foir: Fixed Obligation to Income Ratio (default 40%)

    Returns:
        Affordable installment amount, never negative
    """
    available = Decimal(monthly_income) * Decimal(foir) - Decimal(existing_emis)
    return max(Decimal('0.00'), available.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP))


def calculate_max_principal(
    affordable_emi: Decimal,
    annual_interest_rate: Decimal,
    tenure_months: int
) -> Decimal:
    """
    Largest principal whose flat-interest installment fits the affordable EMI

    Rounded down so the installment never exceeds what the borrower can afford.
    """
    total_payable = Decimal(affordable_emi) * Decimal(tenure_months)
    principal = total_payable / (Decimal('1') + Decimal(annual_interest_rate) / HUNDRED)
    return principal.quantize(Decimal('0.01'), rounding=ROUND_DOWN)


def generate_loan_number(
    prefix: str = "ML",
    branch_code: Optional[str] = None,
    today: Optional[date] = None
) -> str:
    """
    Generate a human-readable loan number, e.g. ML-26-10-04217

    Args:
        prefix: Lender code
        branch_code: Optional branch identifier
        today: Date used for the year/month parts (defaults to today)
    """
    today = today or date.today()
    parts = [prefix, f"{today.year % 100:02d}", f"{today.month:02d}"]
    if branch_code:
        parts.append(branch_code)
    parts.append(f"{secrets.randbelow(100000):05d}")
    return "-".join(parts)
