"""Commission calculators."""

from commission_engine.calculators.document import (
    build_document_inputs,
    calculate_document,
    validate_document_inputs,
)
from commission_engine.calculators.money import (
    build_inputs,
    calculate_commission,
    calculate_override,
    round_cents,
    to_decimal,
)
from commission_engine.calculators.pay_date import calculate_scheduled_pay_date
from commission_engine.calculators.types import (
    CommissionBreakdown,
    CommissionInputs,
    DocumentBreakdown,
    DocumentInputs,
    OverrideResult,
)

__all__ = [
    "CommissionBreakdown",
    "CommissionInputs",
    "DocumentBreakdown",
    "DocumentInputs",
    "OverrideResult",
    "build_document_inputs",
    "build_inputs",
    "calculate_commission",
    "calculate_document",
    "calculate_override",
    "calculate_scheduled_pay_date",
    "round_cents",
    "to_decimal",
    "validate_document_inputs",
]
