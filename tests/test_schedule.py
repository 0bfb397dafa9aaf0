"""
Test suite for schedule generator

Tests flat-interest EMI schedules, month-end due date clamping, term
validation and the loan calculators. Every schedule must sum exactly to the
rounded total payable.
"""

import re
import pytest
from decimal import Decimal, ROUND_HALF_UP
from datetime import date

from microloan.config import MicroloanConfig
from microloan.currency import Money, Currency
from microloan.schedule import (
    LoanTerms, Installment, InstallmentStatus, add_months, validate_loan_terms,
    generate_schedule, summarize_terms, calculate_affordability,
    calculate_max_principal, generate_loan_number
)
from microloan.validation import ValidationError


class TestLoanTerms:
    """Test loan terms value object"""

    def test_numeric_input_is_coerced_to_decimal(self):
        """Test that floats and strings become exact Decimals"""
        terms = LoanTerms(principal=100000.0, annual_interest_rate="12.5", tenure_months=12)

        assert terms.principal == Decimal('100000.0')
        assert terms.annual_interest_rate == Decimal('12.5')
        assert terms.currency == Currency.INR
        assert terms.principal_amount == Money(Decimal('100000'), Currency.INR)

    def test_dict_round_trip(self):
        terms = LoanTerms(Decimal('5000'), Decimal('18'), 6, Currency.KES)
        assert LoanTerms.from_dict(terms.to_dict()) == terms

    def test_terms_are_immutable(self):
        terms = LoanTerms(Decimal('5000'), Decimal('18'), 6)
        with pytest.raises(AttributeError):
            terms.tenure_months = 12


class TestAddMonths:
    """Test calendar month arithmetic"""

    def test_simple_offsets(self):
        assert add_months(date(2024, 1, 15), 1) == date(2024, 2, 15)
        assert add_months(date(2024, 11, 15), 2) == date(2025, 1, 15)
        assert add_months(date(2024, 1, 15), 24) == date(2026, 1, 15)

    def test_month_end_clamping_leap_year(self):
        """Jan 31 + 1 month lands on Feb 29 in a leap year"""
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)

    def test_month_end_clamping_non_leap_year(self):
        """Jan 31 + 1 month lands on Feb 28 otherwise"""
        assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)

    def test_clamping_does_not_drift(self):
        """Offsets are taken from the start date, not chained"""
        assert add_months(date(2024, 1, 31), 2) == date(2024, 3, 31)
        assert add_months(date(2024, 1, 31), 3) == date(2024, 4, 30)


class TestValidation:
    """Test loan term validation"""

    def setup_method(self):
        self.config = MicroloanConfig()

    def test_valid_terms(self):
        result = validate_loan_terms(LoanTerms(Decimal('100000'), Decimal('12'), 12), self.config)
        assert result.is_valid
        assert result.errors == []
        assert result.warnings == []

    def test_all_violations_reported(self):
        """Every violated constraint is listed, not only the first"""
        result = validate_loan_terms(LoanTerms(Decimal('0'), Decimal('-1'), 0), self.config)

        assert not result.is_valid
        assert "Principal amount must be greater than zero" in result.errors
        assert "Interest rate must be non-negative" in result.errors
        assert "Tenure must be at least 1 month" in result.errors
        assert len(result.errors) == 3

    def test_upper_limits(self):
        result = validate_loan_terms(LoanTerms(Decimal('1000'), Decimal('1001'), 361), self.config)

        assert "Interest rate cannot exceed 1000%" in result.errors
        assert "Maximum tenure is 360 months" in result.errors

    def test_principal_above_limit(self):
        """Oversized principals are reported, not computed"""
        result = validate_loan_terms(LoanTerms(Decimal('1e27'), Decimal('12'), 12), self.config)

        assert result.errors == ["Principal amount cannot exceed 10000000"]

        with pytest.raises(ValidationError, match="Principal amount cannot exceed"):
            generate_schedule(LoanTerms(Decimal('1e27'), Decimal('12'), 12), date(2024, 1, 15),
                              config=self.config)

    def test_principal_at_limit(self):
        result = validate_loan_terms(LoanTerms(Decimal('10000000'), Decimal('1000'), 360), self.config)
        assert result.is_valid

    def test_configured_limits(self):
        """Limits come from configuration"""
        config = MicroloanConfig(max_tenure_months=24, min_principal="500")
        result = validate_loan_terms(LoanTerms(Decimal('500'), Decimal('12'), 36), config)

        assert "Principal amount must be greater than 500" in result.errors
        assert "Maximum tenure is 24 months" in result.errors

    def test_non_numeric_input(self):
        result = validate_loan_terms(LoanTerms("abc", "NaN", 12.5), self.config)

        assert "Principal amount must be a finite decimal" in result.errors
        assert "Interest rate must be a finite decimal" in result.errors
        assert "Tenure must be a whole number of months" in result.errors

    def test_total_too_small_to_split(self):
        """A schedule may never contain a zero or negative installment"""
        result = validate_loan_terms(LoanTerms(Decimal('0.10'), Decimal('0'), 12), self.config)

        assert not result.is_valid
        assert "too small to spread over 12 months" in result.errors[0]

    def test_zero_rate_is_allowed_with_warning(self):
        result = validate_loan_terms(LoanTerms(Decimal('12000'), Decimal('0'), 12), self.config)

        assert result.is_valid
        assert any("Interest rate is very low" in w for w in result.warnings)

    def test_high_rate_warning(self):
        result = validate_loan_terms(LoanTerms(Decimal('10000'), Decimal('150'), 12), self.config)

        assert result.is_valid
        assert any("Total interest exceeds principal" in w for w in result.warnings)


class TestGenerateSchedule:
    """Test schedule generation"""

    def setup_method(self):
        self.config = MicroloanConfig()

    def test_reference_schedule(self):
        """100000 at 12% flat over 12 months"""
        terms = LoanTerms(Decimal('100000'), Decimal('12'), 12)
        schedule = generate_schedule(terms, date(2024, 1, 15), config=self.config)

        assert len(schedule) == 12
        assert [i.sequence_number for i in schedule] == list(range(1, 13))
        for installment in schedule[:-1]:
            assert installment.amount == Money(Decimal('9333.33'), Currency.INR)
        assert schedule[-1].amount == Money(Decimal('9333.37'), Currency.INR)
        assert sum(i.amount.amount for i in schedule) == Decimal('112000.00')

    def test_initial_state(self):
        """Fresh installments are pending with nothing paid"""
        terms = LoanTerms(Decimal('3000'), Decimal('0'), 3)
        schedule = generate_schedule(terms, date(2024, 1, 15), loan_id="L1", config=self.config)

        for installment in schedule:
            assert installment.status == InstallmentStatus.PENDING
            assert installment.paid_amount == Money.zero(Currency.INR)
            assert installment.paid_date is None
            assert installment.loan_id == "L1"
        assert [i.id for i in schedule] == ["L1_1", "L1_2", "L1_3"]
        assert [i.due_date for i in schedule] == [
            date(2024, 2, 15), date(2024, 3, 15), date(2024, 4, 15)
        ]

    @pytest.mark.parametrize("principal", ['1000', '100000', '12345.67', '999.99'])
    @pytest.mark.parametrize("rate", ['0', '7.25', '12', '18.5', '24'])
    @pytest.mark.parametrize("tenure", [1, 3, 7, 12, 24, 36])
    def test_schedule_sums_to_total_payable(self, principal, rate, tenure):
        """Installments sum exactly to the rounded total; only the last one differs"""
        terms = LoanTerms(Decimal(principal), Decimal(rate), tenure)
        schedule = generate_schedule(terms, date(2024, 3, 10), config=self.config)
        summary = summarize_terms(terms, self.config)
        expected_total = (Decimal(principal) * (1 + Decimal(rate) / 100)).quantize(
            Decimal('0.01'), rounding=ROUND_HALF_UP
        )

        assert len(schedule) == tenure
        assert sum(i.amount.amount for i in schedule) == expected_total
        assert summary.total_payable.amount == expected_total
        assert len({i.amount for i in schedule[:-1]}) <= 1
        assert all(i.amount.is_positive() for i in schedule)

        residual = abs(schedule[-1].amount.amount - summary.installment_amount.amount)
        assert residual <= Decimal('0.005') * tenure

    def test_due_dates_clamped_from_month_end(self):
        terms = LoanTerms(Decimal('4000'), Decimal('0'), 4)
        schedule = generate_schedule(terms, date(2024, 1, 31), config=self.config)

        assert [i.due_date for i in schedule] == [
            date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30), date(2024, 5, 31)
        ]

    def test_jpy_schedule(self):
        """Currencies without a minor unit round to whole units"""
        terms = LoanTerms(Decimal('100000'), Decimal('10'), 7, Currency.JPY)
        schedule = generate_schedule(terms, date(2024, 1, 1), config=self.config)

        assert all(i.amount.amount == i.amount.amount.to_integral_value() for i in schedule)
        assert sum(i.amount.amount for i in schedule) == Decimal('110000')

    def test_deterministic(self):
        """Same inputs always produce the same schedule"""
        terms = LoanTerms(Decimal('25000'), Decimal('14'), 9)
        first = generate_schedule(terms, date(2024, 5, 31), loan_id="L9", config=self.config)
        second = generate_schedule(terms, date(2024, 5, 31), loan_id="L9", config=self.config)

        assert first == second

    def test_invalid_terms_raise(self):
        """No partial schedule for invalid terms"""
        terms = LoanTerms(Decimal('-5'), Decimal('12'), 0)

        with pytest.raises(ValidationError, match="Principal amount must be greater than zero") as exc_info:
            generate_schedule(terms, date(2024, 1, 1), config=self.config)

        assert "Tenure must be at least 1 month" in exc_info.value.violations
        assert isinstance(exc_info.value, ValueError)


class TestInstallment:
    """Test installment record"""

    def test_outstanding_and_round_trip(self):
        installment = Installment(
            sequence_number=2,
            due_date=date(2024, 3, 15),
            amount=Money(Decimal('1000'), Currency.INR),
            status=InstallmentStatus.PARTIALLY_PAID,
            paid_amount=Money(Decimal('400'), Currency.INR),
            loan_id="L1",
            id="L1_2"
        )

        assert installment.outstanding_amount == Money(Decimal('600'), Currency.INR)
        assert not installment.is_paid
        assert Installment.from_dict(installment.to_dict()) == installment

        data = installment.to_dict()
        assert data['amount'] == '1000.00'
        assert data['status'] == 'partially_paid'
        assert data['paid_date'] is None


class TestCalculators:
    """Test summaries and affordability helpers"""

    def setup_method(self):
        self.config = MicroloanConfig()

    def test_summary(self):
        summary = summarize_terms(LoanTerms(Decimal('100000'), Decimal('12'), 12), self.config)

        assert summary.total_interest == Money(Decimal('12000'), Currency.INR)
        assert summary.total_payable == Money(Decimal('112000'), Currency.INR)
        assert summary.installment_amount == Money(Decimal('9333.33'), Currency.INR)
        assert summary.last_installment_amount == Money(Decimal('9333.37'), Currency.INR)
        assert summary.effective_annual_rate == Decimal('12.00')
        assert summary.warnings == []

    def test_effective_rate_over_two_years(self):
        """Flat 12% over two years compounds to roughly 11.36% a year"""
        summary = summarize_terms(LoanTerms(Decimal('100000'), Decimal('12'), 24), self.config)

        assert summary.total_payable == Money(Decimal('124000'), Currency.INR)
        assert summary.effective_annual_rate == Decimal('11.36')

    def test_summary_carries_warnings(self):
        summary = summarize_terms(LoanTerms(Decimal('12000'), Decimal('0'), 12), self.config)

        assert summary.total_interest.is_zero()
        assert summary.effective_annual_rate == Decimal('0.00')
        assert len(summary.warnings) == 1

    def test_affordability(self):
        assert calculate_affordability(Decimal('50000'), Decimal('5000')) == Decimal('15000.00')
        assert calculate_affordability(Decimal('10000'), Decimal('5000')) == Decimal('0.00')

    def test_max_principal_rounds_down(self):
        assert calculate_max_principal(Decimal('9333.33'), Decimal('12'), 12) == Decimal('99999.96')
        assert calculate_max_principal(Decimal('1000'), Decimal('0'), 12) == Decimal('12000.00')

    def test_loan_number_format(self):
        number = generate_loan_number(today=date(2026, 10, 19))
        assert re.match(r"^ML-26-10-\d{5}$", number)

        branch = generate_loan_number("MFI", branch_code="BR1", today=date(2026, 1, 5))
        assert re.match(r"^MFI-26-01-BR1-\d{5}$", branch)
