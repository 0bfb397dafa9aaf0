"""
Loan endpoints
"""

from datetime import date
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status

from .deps import get_actor, get_loan_manager
from .schemas import (
    CreateLoanRequest, DefaultLoanRequest, InstallmentModel, LoanModel, LoanProgressModel,
    PaymentModel, ReconcileRequest, ReconciliationModel, RecordPaymentRequest
)
from ..loans import Loan, LoanManager, check_view_access
from ..roles import Actor


router = APIRouter()


def _load_loan(manager: LoanManager, loan_id: str) -> Loan:
    loan = manager.get_loan(loan_id)
    if not loan:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Loan {loan_id} not found")
    return loan


@router.post("", status_code=status.HTTP_201_CREATED)
def create_loan(
    request: CreateLoanRequest,
    manager: LoanManager = Depends(get_loan_manager),
    actor: Actor = Depends(get_actor)
):
    """Activate a loan and generate its installment schedule"""
    loan = manager.create_loan(
        borrower_id=request.borrower_id,
        terms=request.terms.to_loan_terms(manager.config.default_currency),
        actor=actor,
        start_date=request.start_date
    )
    return {
        "loan": LoanModel.from_loan(loan),
        "installments": [InstallmentModel.from_installment(i) for i in manager.get_installments(loan.id)],
        "message": "Loan created successfully"
    }


@router.get("/{loan_id}", response_model=LoanModel)
def get_loan(
    loan_id: str,
    manager: LoanManager = Depends(get_loan_manager),
    actor: Actor = Depends(get_actor)
):
    """Get loan details"""
    loan = _load_loan(manager, loan_id)
    check_view_access(loan, actor)
    return LoanModel.from_loan(loan)


@router.get("/{loan_id}/installments", response_model=List[InstallmentModel])
def get_installments(
    loan_id: str,
    manager: LoanManager = Depends(get_loan_manager),
    actor: Actor = Depends(get_actor)
):
    """Get the loan's installment schedule with stored statuses"""
    check_view_access(_load_loan(manager, loan_id), actor)
    return [InstallmentModel.from_installment(i) for i in manager.get_installments(loan_id)]


@router.get("/{loan_id}/payments", response_model=List[PaymentModel])
def get_payments(
    loan_id: str,
    manager: LoanManager = Depends(get_loan_manager),
    actor: Actor = Depends(get_actor)
):
    """Get payment history"""
    check_view_access(_load_loan(manager, loan_id), actor)
    return [PaymentModel.from_payment(p) for p in manager.get_payments(loan_id)]


@router.post("/{loan_id}/payments", status_code=status.HTTP_201_CREATED)
def record_payment(
    loan_id: str,
    request: RecordPaymentRequest,
    manager: LoanManager = Depends(get_loan_manager),
    actor: Actor = Depends(get_actor)
):
    """Record a payment and reconcile the loan"""
    _load_loan(manager, loan_id)
    payment, result = manager.record_payment(
        loan_id=loan_id,
        amount=request.amount,
        method=request.method,
        actor=actor,
        payment_date=request.payment_date,
        reference=request.reference,
        notes=request.notes,
        as_of=request.as_of
    )
    return {
        "payment": PaymentModel.from_payment(payment),
        "reconciliation": ReconciliationModel.from_result(result),
        "loan_status": _load_loan(manager, loan_id).status.value
    }


@router.post("/{loan_id}/reconcile", response_model=ReconciliationModel)
def reconcile_loan(
    loan_id: str,
    request: ReconcileRequest,
    manager: LoanManager = Depends(get_loan_manager),
    actor: Actor = Depends(get_actor)
):
    """Recompute installment statuses from the full payment history"""
    _load_loan(manager, loan_id)
    result = manager.reconcile_loan(loan_id, as_of=request.as_of, actor=actor)
    return ReconciliationModel.from_result(result)


@router.get("/{loan_id}/progress", response_model=LoanProgressModel)
def get_progress(
    loan_id: str,
    as_of: Optional[date] = None,
    manager: LoanManager = Depends(get_loan_manager),
    actor: Actor = Depends(get_actor)
):
    """Repayment progress, next due installment and overdue totals"""
    check_view_access(_load_loan(manager, loan_id), actor)
    return LoanProgressModel.from_progress(manager.get_loan_progress(loan_id, as_of=as_of))


@router.post("/{loan_id}/default", response_model=LoanModel)
def mark_defaulted(
    loan_id: str,
    request: DefaultLoanRequest,
    manager: LoanManager = Depends(get_loan_manager),
    actor: Actor = Depends(get_actor)
):
    """Mark an active loan as defaulted"""
    _load_loan(manager, loan_id)
    try:
        loan = manager.mark_defaulted(loan_id, actor=actor, reason=request.reason)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return LoanModel.from_loan(loan)
