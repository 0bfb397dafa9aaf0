"""
Validation and Error Module

Error taxonomy for the loan engine. Validation errors describe bad input and
always carry the complete list of violations; consistency errors describe
corrupted installment or payment data and are never silently repaired.
"""

from dataclasses import dataclass, field
from typing import Iterable, List


class LoanEngineError(Exception):
    """Base class for loan engine errors"""

    def __init__(self, violations: Iterable[str], prefix: str = "Loan engine error"):
        self.violations: List[str] = list(violations)
        super().__init__(f"{prefix}: {'; '.join(self.violations)}")


class ValidationError(LoanEngineError, ValueError):
    """Invalid loan terms or workflow input. Nothing was applied."""

    def __init__(self, violations: Iterable[str]):
        super().__init__(violations, prefix="Invalid loan parameters")


class ConsistencyError(LoanEngineError):
    """Installment or payment data violates an invariant the engine relies on"""

    def __init__(self, violations: Iterable[str]):
        super().__init__(violations, prefix="Inconsistent loan data")


@dataclass
class ValidationResult:
    """Outcome of a validation pass: blocking errors plus advisory warnings"""
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def raise_if_invalid(self) -> None:
        if self.errors:
            raise ValidationError(self.errors)
