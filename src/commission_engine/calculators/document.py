"""Itemized commission document calculations."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable

from commission_engine.calculators.money import ZERO, round_cents, to_decimal
from commission_engine.calculators.types import DocumentBreakdown, DocumentInputs
from commission_engine.errors import ValidationError

ONE = Decimal("1")


def validate_document_inputs(inputs: DocumentInputs) -> None:
    """Validate money fields are non-negative and percentages are fractions."""
    errors: list[str] = []
    if inputs.gross_contract_total < 0:
        errors.append("Gross Contract Total must be >= 0")
    if not (ZERO <= inputs.op_percent <= ONE):
        errors.append("O&P must be between 0 and 1")
    if inputs.material_cost < 0:
        errors.append("Material cost must be >= 0")
    if inputs.labor_cost < 0:
        errors.append("Labor cost must be >= 0")
    if not (ZERO <= inputs.rep_profit_percent <= ONE):
        errors.append("Rep profit percent must be between 0 and 1")
    if inputs.advance_total < 0:
        errors.append("Advance total must be >= 0")
    if any(e < 0 for e in inputs.negative_expenses + inputs.positive_expenses):
        errors.append("Expense amounts must be >= 0")
    if errors:
        raise ValidationError.from_errors(errors)


def build_document_inputs(data: dict[str, Any]) -> DocumentInputs:
    """Build validated document inputs from a field map."""

    def _many(values: Iterable[Any] | None, name: str) -> tuple[Decimal, ...]:
        return tuple(to_decimal(v, name) for v in (values or ()))

    inputs = DocumentInputs(
        gross_contract_total=to_decimal(data.get("gross_contract_total"), "gross_contract_total"),
        op_percent=to_decimal(data.get("op_percent"), "op_percent"),
        material_cost=to_decimal(data.get("material_cost"), "material_cost"),
        labor_cost=to_decimal(data.get("labor_cost"), "labor_cost"),
        negative_expenses=_many(data.get("negative_expenses"), "negative_expenses"),
        positive_expenses=_many(data.get("positive_expenses"), "positive_expenses"),
        rep_profit_percent=to_decimal(data.get("rep_profit_percent"), "rep_profit_percent"),
        advance_total=to_decimal(data.get("advance_total"), "advance_total"),
    )
    validate_document_inputs(inputs)
    return inputs


def calculate_op_amount(gross_contract_total: Decimal, op_percent: Decimal) -> Decimal:
    return round_cents(gross_contract_total * op_percent)


def calculate_net_profit(
    contract_total_net: Decimal,
    material_cost: Decimal,
    labor_cost: Decimal,
    negative_expenses: Iterable[Decimal],
    positive_expenses: Iterable[Decimal],
) -> Decimal:
    """Contract net less material, labor and negative expenses, plus credits."""
    return round_cents(
        contract_total_net
        - material_cost
        - labor_cost
        - sum(negative_expenses, ZERO)
        + sum(positive_expenses, ZERO)
    )


def calculate_document(inputs: DocumentInputs) -> DocumentBreakdown:
    """Derive every computed field of an itemized commission document."""
    validate_document_inputs(inputs)

    op_amount = calculate_op_amount(inputs.gross_contract_total, inputs.op_percent)
    contract_total_net = round_cents(inputs.gross_contract_total - op_amount)
    net_profit = calculate_net_profit(
        contract_total_net,
        inputs.material_cost,
        inputs.labor_cost,
        inputs.negative_expenses,
        inputs.positive_expenses,
    )
    rep_commission = round_cents(net_profit * inputs.rep_profit_percent)
    company_profit = round_cents(net_profit - rep_commission)

    return DocumentBreakdown(
        op_amount=op_amount,
        contract_total_net=contract_total_net,
        net_profit=net_profit,
        rep_commission=rep_commission,
        company_profit=company_profit,
        company_total=round_cents(op_amount + company_profit),
        rep_balance_due=round_cents(rep_commission - inputs.advance_total),
    )
