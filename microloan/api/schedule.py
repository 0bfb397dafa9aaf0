"""
Schedule preview endpoint
"""

from fastapi import APIRouter, Depends

from .deps import get_loan_manager
from .schemas import InstallmentModel, LoanSummaryModel, SchedulePreviewRequest
from ..loans import LoanManager
from ..schedule import generate_schedule, summarize_terms


router = APIRouter()


@router.post("/preview")
def preview_schedule(
    request: SchedulePreviewRequest,
    manager: LoanManager = Depends(get_loan_manager)
):
    """Generate a schedule without creating a loan"""
    terms = request.terms.to_loan_terms(manager.config.default_currency)
    summary = summarize_terms(terms, manager.config)
    installments = generate_schedule(terms, request.start_date, config=manager.config)
    return {
        "summary": LoanSummaryModel.from_summary(summary),
        "installments": [InstallmentModel.from_installment(i) for i in installments]
    }
