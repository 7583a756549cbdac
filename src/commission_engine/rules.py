"""Draw eligibility, draw caps and job-number rules.

Pure predicates and checks; the services feed them data from the stores.
"""

from __future__ import annotations

import re
from decimal import Decimal
from typing import Mapping

from commission_engine.calculators.money import ZERO, round_cents
from commission_engine.config import DrawRules
from commission_engine.errors import (
    CapExceededError,
    EligibilityIncompleteError,
    NeedsEstimateError,
    ValidationError,
)

DRAW_ELIGIBILITY_ITEMS: tuple[str, ...] = (
    "Signed contract received",
    "Deposit received from homeowner",
    "Job number assigned in AccuLynx",
    "Job is on the build schedule",
    "Meet-for-color completed",
    "Full scope and estimate completed",
)

_JOB_NUMBER = re.compile(r"[0-9]{4}")


def missing_eligibility(checklist: Mapping[str, bool]) -> list[str]:
    """Checklist items that are not confirmed."""
    return [item for item in DRAW_ELIGIBILITY_ITEMS if not checklist.get(item, False)]


def all_eligibility_checked(checklist: Mapping[str, bool]) -> bool:
    return not missing_eligibility(checklist)


def ensure_eligibility(checklist: Mapping[str, bool]) -> None:
    missing = missing_eligibility(checklist)
    if missing:
        raise EligibilityIncompleteError(missing)


def max_draw(estimated_commission: Decimal, rules: DrawRules | None = None) -> Decimal:
    """Half the estimated commission, or the flat ceiling without an estimate."""
    rules = rules or DrawRules()
    if estimated_commission > 0:
        return round_cents(estimated_commission * rules.cap_ratio)
    return rules.flat_ceiling


def check_draw_amount(
    requested: Decimal,
    estimated_commission: Decimal,
    rules: DrawRules | None = None,
) -> Decimal:
    """Validate a requested draw, returning the cap that applied.

    Raises NeedsEstimateError when the request is above the flat ceiling
    with no estimate, and CapExceededError when it is above the cap.
    """
    rules = rules or DrawRules()
    if requested <= ZERO:
        raise ValidationError("Draw amount must be greater than 0")
    if estimated_commission <= 0 and requested > rules.flat_ceiling:
        raise NeedsEstimateError(requested, rules.flat_ceiling)
    cap = max_draw(estimated_commission, rules)
    if requested > cap:
        raise CapExceededError(requested, cap)
    return cap


def is_valid_job_number(job_number: str | None) -> bool:
    return bool(job_number) and bool(_JOB_NUMBER.fullmatch(job_number))


def validate_job_number(job_number: str | None, required: bool = False) -> None:
    if job_number is None or job_number == "":
        if required:
            raise ValidationError("acculynx_job_id is required")
        return
    if not is_valid_job_number(job_number):
        raise ValidationError("acculynx_job_id must be exactly 4 digits")

