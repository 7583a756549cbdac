"""Type definitions for commission calculations."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any


@dataclass(frozen=True)
class CommissionInputs:
    """Worksheet inputs for a commission submission.

    ``commission_percentage`` is a whole-number percent (15 means 15%).
    """

    contract_amount: Decimal = Decimal("0")
    supplements_approved: Decimal = Decimal("0")
    commission_percentage: Decimal = Decimal("0")
    advances_paid: Decimal = Decimal("0")
    is_flat_fee: bool = False
    flat_fee_amount: Decimal | None = None

    def to_fields(self) -> dict[str, Any]:
        return {
            "contract_amount": self.contract_amount,
            "supplements_approved": self.supplements_approved,
            "commission_percentage": self.commission_percentage,
            "advances_paid": self.advances_paid,
            "is_flat_fee": self.is_flat_fee,
            "flat_fee_amount": self.flat_fee_amount,
        }


@dataclass(frozen=True)
class CommissionBreakdown:
    """Derived worksheet amounts, each rounded to cents.

    ``net_commission_owed`` keeps its sign; a negative value means the
    advances exceed the commission.
    """

    total_job_revenue: Decimal
    gross_commission: Decimal
    net_commission_owed: Decimal

    @property
    def is_negative_balance(self) -> bool:
        return self.net_commission_owed < 0

    def to_fields(self) -> dict[str, Any]:
        return {
            "total_job_revenue": self.total_job_revenue,
            "gross_commission": self.gross_commission,
            "net_commission_owed": self.net_commission_owed,
        }


@dataclass(frozen=True)
class DocumentInputs:
    """Itemized commission document inputs.

    Percentages are fractions (0.15 means 15%).
    """

    gross_contract_total: Decimal
    op_percent: Decimal
    material_cost: Decimal = Decimal("0")
    labor_cost: Decimal = Decimal("0")
    negative_expenses: tuple[Decimal, ...] = field(default_factory=tuple)
    positive_expenses: tuple[Decimal, ...] = field(default_factory=tuple)
    rep_profit_percent: Decimal = Decimal("0")
    advance_total: Decimal = Decimal("0")


@dataclass(frozen=True)
class DocumentBreakdown:
    """Derived itemized document amounts."""

    op_amount: Decimal
    contract_total_net: Decimal
    net_profit: Decimal
    rep_commission: Decimal
    company_profit: Decimal
    company_total: Decimal
    rep_balance_due: Decimal


@dataclass(frozen=True)
class OverrideResult:
    """Manager override outcome for one approved commission."""

    override_amount: Decimal
    commission_number: int | None
    new_count: int
    phase_complete: bool

    @property
    def applies(self) -> bool:
        return self.commission_number is not None
