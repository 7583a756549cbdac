"""Tests for the commission worksheet calculator."""

from decimal import Decimal

import pytest

from commission_engine.calculators import (
    build_inputs,
    calculate_commission,
    calculate_override,
    round_cents,
    to_decimal,
)
from commission_engine.calculators.types import CommissionInputs
from commission_engine.config import OverrideRules
from commission_engine.errors import ValidationError


class TestRounding:
    """Money rounds half up to cents."""

    def test_half_up(self):
        assert round_cents(Decimal("1.005")) == Decimal("1.01")
        assert round_cents(Decimal("1.004")) == Decimal("1.00")
        assert round_cents(Decimal("-1.005")) == Decimal("-1.01")

    def test_to_decimal_accepts_strings_and_ints(self):
        assert to_decimal("12.50") == Decimal("12.50")
        assert to_decimal(7) == Decimal("7")
        assert to_decimal(None) == Decimal("0")

    def test_to_decimal_float_avoids_binary_noise(self):
        assert to_decimal(0.1) == Decimal("0.1")

    def test_to_decimal_rejects_garbage(self):
        with pytest.raises(ValidationError):
            to_decimal("abc", "contract_amount")
        with pytest.raises(ValidationError):
            to_decimal(True, "contract_amount")
        with pytest.raises(ValidationError):
            to_decimal("NaN", "contract_amount")


class TestCalculateCommission:
    """Revenue, gross and net commission."""

    def test_percentage_commission(self):
        result = calculate_commission(
            CommissionInputs(
                contract_amount=Decimal("18000"),
                supplements_approved=Decimal("2000"),
                commission_percentage=Decimal("10"),
                advances_paid=Decimal("500"),
            )
        )
        assert result.total_job_revenue == Decimal("20000.00")
        assert result.gross_commission == Decimal("2000.00")
        assert result.net_commission_owed == Decimal("1500.00")
        assert result.is_negative_balance is False

    def test_flat_fee_ignores_percentage(self):
        result = calculate_commission(
            CommissionInputs(
                contract_amount=Decimal("10000"),
                commission_percentage=Decimal("10"),
                is_flat_fee=True,
                flat_fee_amount=Decimal("750"),
            )
        )
        assert result.total_job_revenue == Decimal("10000.00")
        assert result.gross_commission == Decimal("750.00")
        assert result.net_commission_owed == Decimal("750.00")

    @pytest.mark.parametrize(
        "contract, supplements",
        [("0", "0"), ("10000", "0"), ("48000", "2500.50")],
    )
    def test_flat_fee_net_independent_of_revenue(self, contract, supplements):
        result = calculate_commission(
            build_inputs(
                {
                    "contract_amount": contract,
                    "supplements_approved": supplements,
                    "commission_percentage": "10",
                    "advances_paid": "200",
                    "is_flat_fee": True,
                    "flat_fee_amount": "750",
                    "submission_kind": "subcontractor",
                }
            )
        )
        assert result.gross_commission == Decimal("750.00")
        assert result.net_commission_owed == Decimal("550.00")

    def test_derivation_is_repeatable(self):
        inputs = build_inputs(
            {
                "contract_amount": "18333.33",
                "supplements_approved": "1234.56",
                "commission_percentage": "7.5",
                "advances_paid": "300",
            }
        )
        assert calculate_commission(inputs) == calculate_commission(inputs)

    def test_negative_net_is_preserved(self):
        result = calculate_commission(
            CommissionInputs(
                contract_amount=Decimal("1000"),
                commission_percentage=Decimal("10"),
                advances_paid=Decimal("250"),
            )
        )
        assert result.net_commission_owed == Decimal("-150.00")
        assert result.is_negative_balance is True

    def test_fractional_percentage_rounds_half_up(self):
        result = calculate_commission(
            CommissionInputs(
                contract_amount=Decimal("1234.50"),
                commission_percentage=Decimal("7.5"),
            )
        )
        # 1234.50 * 0.075 = 92.5875
        assert result.gross_commission == Decimal("92.59")

    def test_zero_inputs(self):
        result = calculate_commission(CommissionInputs())
        assert result.total_job_revenue == Decimal("0.00")
        assert result.net_commission_owed == Decimal("0.00")


class TestBuildInputs:
    """Input validation."""

    def test_negative_amounts_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            build_inputs({"contract_amount": "-1", "advances_paid": "-5"})
        assert "contract_amount must be >= 0" in exc_info.value.errors
        assert "advances_paid must be >= 0" in exc_info.value.errors

    def test_percentage_out_of_range(self):
        with pytest.raises(ValidationError):
            build_inputs({"contract_amount": "100", "commission_percentage": "101"})

    def test_flat_fee_requires_amount(self):
        with pytest.raises(ValidationError):
            build_inputs({"is_flat_fee": True})

    def test_percentage_not_checked_for_flat_fee(self):
        inputs = build_inputs(
            {"is_flat_fee": True, "flat_fee_amount": "500", "commission_percentage": "150"}
        )
        assert inputs.flat_fee_amount == Decimal("500")


class TestOverride:
    """Manager override on a rep's first approved commissions."""

    def test_first_commission_gets_override(self):
        result = calculate_override(Decimal("2000.00"), 0, False)
        assert result.applies is True
        assert result.override_amount == Decimal("200.00")
        assert result.commission_number == 1
        assert result.new_count == 1
        assert result.phase_complete is False

    def test_tenth_commission_completes_phase(self):
        result = calculate_override(Decimal("1000.00"), 9, False)
        assert result.commission_number == 10
        assert result.phase_complete is True

    def test_no_override_after_phase(self):
        result = calculate_override(Decimal("1000.00"), 10, True)
        assert result.applies is False
        assert result.override_amount == Decimal("0")
        assert result.new_count == 10

    def test_custom_rules(self):
        rules = OverrideRules(rate=Decimal("0.05"), commission_limit=2)
        first = calculate_override(Decimal("333.33"), 0, False, rules)
        assert first.override_amount == Decimal("16.67")
        second = calculate_override(Decimal("100"), 1, False, rules)
        assert second.phase_complete is True
