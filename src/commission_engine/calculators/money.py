"""Commission worksheet money calculator.

All functions are pure: the same inputs always produce the same outputs,
and every derived amount is rounded to cents at its own boundary so that
chained values never carry sub-cent drift.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from commission_engine.calculators.types import (
    CommissionBreakdown,
    CommissionInputs,
    OverrideResult,
)
from commission_engine.config import OverrideRules
from commission_engine.errors import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: Any, field_name: str = "amount") -> Decimal:
    """Coerce user input to Decimal without going through binary floats."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number")
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(f"{field_name} must be a number") from None
    elif isinstance(value, float):
        result = Decimal(repr(value))
    else:
        raise ValidationError(f"{field_name} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{field_name} must be a finite number")
    return result


def round_cents(amount: Decimal) -> Decimal:
    """Round to two decimal places, half up."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def validate_inputs(inputs: CommissionInputs) -> None:
    """Reject negative or inconsistent worksheet inputs."""
    errors: list[str] = []
    for name in ("contract_amount", "supplements_approved", "advances_paid"):
        if getattr(inputs, name) < 0:
            errors.append(f"{name} must be >= 0")
    if inputs.is_flat_fee:
        if inputs.flat_fee_amount is None:
            errors.append("flat_fee_amount is required for flat-fee submissions")
        elif inputs.flat_fee_amount < 0:
            errors.append("flat_fee_amount must be >= 0")
    elif not (ZERO <= inputs.commission_percentage <= HUNDRED):
        errors.append("commission_percentage must be between 0 and 100")
    if errors:
        raise ValidationError.from_errors(errors)


def build_inputs(data: dict[str, Any]) -> CommissionInputs:
    """Build validated inputs from a field map."""
    flat_fee = data.get("flat_fee_amount")
    inputs = CommissionInputs(
        contract_amount=to_decimal(data.get("contract_amount"), "contract_amount"),
        supplements_approved=to_decimal(
            data.get("supplements_approved"), "supplements_approved"
        ),
        commission_percentage=to_decimal(
            data.get("commission_percentage"), "commission_percentage"
        ),
        advances_paid=to_decimal(data.get("advances_paid"), "advances_paid"),
        is_flat_fee=bool(data.get("is_flat_fee", False)),
        flat_fee_amount=None if flat_fee is None else to_decimal(flat_fee, "flat_fee_amount"),
    )
    validate_inputs(inputs)
    return inputs


def total_revenue(contract_amount: Decimal, supplements_approved: Decimal) -> Decimal:
    """Contract plus approved supplements."""
    if contract_amount < 0 or supplements_approved < 0:
        raise ValidationError("contract_amount and supplements_approved must be >= 0")
    return round_cents(contract_amount + supplements_approved)


def gross_commission(inputs: CommissionInputs) -> Decimal:
    """Flat fee, or revenue times the commission percentage."""
    if inputs.is_flat_fee:
        return round_cents(inputs.flat_fee_amount or ZERO)
    revenue = total_revenue(inputs.contract_amount, inputs.supplements_approved)
    return round_cents(revenue * inputs.commission_percentage / HUNDRED)


def net_commission_owed(gross: Decimal, advances_paid: Decimal) -> Decimal:
    """Gross commission minus advances. Sign is preserved."""
    return round_cents(gross - advances_paid)


def calculate_commission(inputs: CommissionInputs) -> CommissionBreakdown:
    """Derive revenue, gross and net commission from worksheet inputs."""
    validate_inputs(inputs)
    gross = gross_commission(inputs)
    return CommissionBreakdown(
        total_job_revenue=total_revenue(inputs.contract_amount, inputs.supplements_approved),
        gross_commission=gross,
        net_commission_owed=net_commission_owed(gross, inputs.advances_paid),
    )


def calculate_override(
    net_commission: Decimal,
    approved_count: int,
    phase_complete: bool,
    rules: OverrideRules | None = None,
) -> OverrideResult:
    """Manager override for a rep's first N approved commissions."""
    rules = rules or OverrideRules()
    if phase_complete or approved_count >= rules.commission_limit:
        return OverrideResult(
            override_amount=ZERO,
            commission_number=None,
            new_count=approved_count,
            phase_complete=True,
        )
    new_count = approved_count + 1
    return OverrideResult(
        override_amount=round_cents(net_commission * rules.rate),
        commission_number=new_count,
        new_count=new_count,
        phase_complete=new_count >= rules.commission_limit,
    )
