#!/usr/bin/env python3
"""
Example: Disbursing a microloan and reconciling repayments

Creates a loan, records a few payments (including an underpayment and a
late one) and prints the installment statuses after each reconciliation.
"""

import os
import sys
from decimal import Decimal
from datetime import date

# Add the microloan package to the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from microloan.audit import AuditTrail
from microloan.config import get_config
from microloan.loans import LoanManager
from microloan.reconciliation import PaymentMethod
from microloan.roles import Actor, Role
from microloan.schedule import LoanTerms, summarize_terms
from microloan.storage import create_storage


def print_installments(installments):
    for i in installments:
        print(f"   #{i.sequence_number:<3} {i.due_date}  {i.amount.to_string():>14}  "
              f"paid {i.paid_amount.to_string():>14}  {i.status.value}")


def main():
    print("Microloan Engine - Basic Usage Example")
    print("=" * 60)

    # 1. Configuration and storage
    config = get_config()
    storage = create_storage(config.database_url)
    manager = LoanManager(storage, AuditTrail(storage), config)
    print(f"\n1. Storage: {config.database_url}")

    officer = Actor("officer-1", Role.LENDER)
    terms = LoanTerms(Decimal('50000'), Decimal('18'), 6)

    # 2. Terms summary
    summary = summarize_terms(terms, config)
    print("\n2. Loan terms")
    print(f"   Principal:        {summary.principal.to_string()}")
    print(f"   Total interest:   {summary.total_interest.to_string()}")
    print(f"   Total payable:    {summary.total_payable.to_string()}")
    print(f"   Monthly EMI:      {summary.installment_amount.to_string()}")
    print(f"   Effective rate:   {summary.effective_annual_rate}% p.a.")

    # 3. Activate the loan
    loan = manager.create_loan("borrower-42", terms, officer, start_date=date(2024, 1, 31))
    print(f"\n3. Loan {loan.loan_number} created")
    print_installments(manager.get_installments(loan.id))

    # 4. Repayments
    payments = [
        (Decimal('9833.33'), date(2024, 2, 28), PaymentMethod.UPI),
        (Decimal('5000'), date(2024, 3, 30), PaymentMethod.CASH),
        (Decimal('14666.67'), date(2024, 5, 10), PaymentMethod.BANK_TRANSFER),
    ]
    for amount, paid_on, method in payments:
        payment, result = manager.record_payment(
            loan.id, amount, method, officer, payment_date=paid_on, as_of=paid_on
        )
        print(f"\n4. Payment of {payment.amount.to_string()} on {paid_on} via {method.value}")
        print_installments(result.installments)
        print(f"   Outstanding: {result.outstanding_amount.to_string()}  "
              f"Overdue: {result.overdue_amount.to_string()}")

    # 5. Progress
    progress = manager.get_loan_progress(loan.id, as_of=date(2024, 6, 15))
    print(f"\n5. Progress as of {progress.as_of}: {progress.percent_complete}% repaid, "
          f"{progress.overdue_count} installment(s) past due")

    storage.close()


if __name__ == "__main__":
    main()
