"""Utility charges from a direct bill or from meter readings against a rate plan.

Direct bills are taken as-is, never prorated by calendar days: the amount is
what the provider billed for the period.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from pydantic import BaseModel

from leasebill.exceptions import DataError, MissingRatePlanError, NegativeConsumptionError, ValidationError
from leasebill.models import round_money
from leasebill.models.utility import UtilityRatePlan, UtilityStatement, UtilityType
from leasebill.repositories.base import UtilityRatePlanRepository

logger = logging.getLogger(__name__)


class SlabCharge(BaseModel):
    from_units: Decimal
    to_units: Decimal | None
    units: Decimal
    rate_per_unit: Decimal
    amount: Decimal
    fixed_charge: Decimal | None = None


class UtilityCalculation(BaseModel):
    utility_type: UtilityType
    is_meter_based: bool
    units_consumed: Decimal | None = None
    total_amount: Decimal
    description: str
    rate_plan_id: int | None = None
    slabs: list[SlabCharge] = []


def units_consumed(
    previous: Decimal,
    current: Decimal,
    rollover: bool = False,
    capacity: Decimal | None = None,
) -> Decimal:
    """``current - previous``; a meter that wrapped past ``capacity`` back to zero only when flagged."""
    if current >= previous:
        return current - previous
    if not rollover:
        raise NegativeConsumptionError(previous, current)
    if capacity is None or capacity <= previous:
        raise DataError(
            "Meter rollover requires a capacity above the previous reading",
            {"previous_reading": str(previous), "meter_capacity": str(capacity)},
        )
    return capacity - previous + current


def apply_slabs(units: Decimal, plan: UtilityRatePlan) -> tuple[Decimal, list[SlabCharge]]:
    """Charge each slab for the consumption inside ``[from_units, to_units)``."""
    total = Decimal("0")
    breakdown: list[SlabCharge] = []
    for slab in plan.ordered_slabs():
        upper = units if slab.to_units is None else min(units, slab.to_units)
        in_slab = max(Decimal("0"), upper - slab.from_units)
        if in_slab <= 0:
            continue
        slab_amount = in_slab * slab.rate_per_unit
        total += slab_amount + (slab.fixed_charge or 0)
        breakdown.append(
            SlabCharge(
                from_units=slab.from_units,
                to_units=slab.to_units,
                units=in_slab,
                rate_per_unit=slab.rate_per_unit,
                amount=round_money(slab_amount),
                fixed_charge=slab.fixed_charge,
            )
        )
    return round_money(total), breakdown


class UtilityCalculationService:
    def __init__(self, rate_plan_repo: UtilityRatePlanRepository) -> None:
        self.rate_plan_repo = rate_plan_repo

    @staticmethod
    def calculate_direct(amount: Decimal, utility_type: UtilityType) -> UtilityCalculation:
        if amount < 0:
            raise ValidationError(f"Direct bill amount must not be negative, got {amount}", field="direct_bill_amount")
        return UtilityCalculation(
            utility_type=utility_type,
            is_meter_based=False,
            total_amount=round_money(amount),
            description=f"{utility_type.value.capitalize()} - direct billing",
        )

    @staticmethod
    def calculate_meter(
        previous: Decimal,
        current: Decimal,
        plan: UtilityRatePlan,
        rollover: bool = False,
        capacity: Decimal | None = None,
    ) -> UtilityCalculation:
        units = units_consumed(previous, current, rollover, capacity)
        total, breakdown = apply_slabs(units, plan)
        return UtilityCalculation(
            utility_type=plan.utility_type,
            is_meter_based=True,
            units_consumed=units,
            total_amount=total,
            description=f"{plan.utility_type.value.capitalize()} - {units} units ({plan.name})",
            rate_plan_id=plan.id,
            slabs=breakdown,
        )

    def resolve_rate_plan(self, org_id: int, statement: UtilityStatement) -> UtilityRatePlan:
        """The plan pinned on the statement, else the one in effect at the end of its period."""
        if statement.rate_plan_id is not None:
            plan = self.rate_plan_repo.get_by_id(statement.rate_plan_id)
        else:
            plan = self.rate_plan_repo.get_rate_plan(org_id, statement.utility_type, statement.period_end)
        if plan is None:
            raise MissingRatePlanError(
                f"No {statement.utility_type.value} rate plan in effect on {statement.period_end.isoformat()}",
                {"org_id": org_id, "utility_type": statement.utility_type.value, "rate_plan_id": statement.rate_plan_id},
            )
        return plan

    def calculate_statement(self, org_id: int, statement: UtilityStatement) -> UtilityCalculation:
        if not statement.is_meter_based:
            if statement.direct_bill_amount is None:
                raise DataError(
                    f"Direct-bill statement {statement.id} has no amount",
                    {"statement_id": statement.id},
                )
            return self.calculate_direct(statement.direct_bill_amount, statement.utility_type)

        if statement.previous_reading is None or statement.current_reading is None:
            raise DataError(
                f"Meter statement {statement.id} is missing a reading",
                {"statement_id": statement.id},
            )
        plan = self.resolve_rate_plan(org_id, statement)
        result = self.calculate_meter(
            statement.previous_reading,
            statement.current_reading,
            plan,
            rollover=statement.meter_rollover,
            capacity=statement.meter_capacity,
        )
        logger.debug(
            "Utility statement %s: %s units -> %s via plan %s",
            statement.id,
            result.units_consumed,
            result.total_amount,
            plan.id,
        )
        return result
