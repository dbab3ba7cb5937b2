"""
Cost Allocation Engine

DESIGN DECISION: Allocation is DETERMINISTIC and PURE.
Every function takes an already-fetched `MonthLedger` and returns summary
models. Nothing here reads storage, talks to the network or caches, so the
same ledger always produces the same numbers no matter which backend
supplied it.

ALLOCATION RULES:
- Meal costs are pooled and charged per meal eaten (the meal rate)
- Individual other costs are charged to their owner only
- Shared other costs are split evenly across the mess's current members
"""

from typing import Optional

from messmate.models.entities import User
from messmate.models.summary import MemberSummary, MonthLedger, MonthSummary


def _total_meals(ledger: MonthLedger, user_id: Optional[str] = None) -> float:
    return sum(
        meal.total for meal in ledger.meals
        if user_id is None or meal.user_id == user_id
    )


def _total_meal_cost(ledger: MonthLedger) -> float:
    return sum(cost.amount for cost in ledger.meal_costs)


def _total_shared_cost(ledger: MonthLedger) -> float:
    return sum(cost.amount for cost in ledger.other_costs if cost.is_shared)


def _active_members(ledger: MonthLedger) -> list[User]:
    return [m for m in ledger.members if m.is_approved and m.is_active]


def meal_rate(ledger: MonthLedger) -> float:
    """Pooled meal cost per meal eaten. 0 when nobody ate."""
    total_month_meals = _total_meals(ledger)
    if total_month_meals <= 0:
        return 0.0
    return _total_meal_cost(ledger) / total_month_meals


def member_summary(ledger: MonthLedger, user_id: str) -> MemberSummary:
    """
    One member's position for the month.

    The shared-cost divisor is the member count of the ledger (the mess
    membership when the ledger was built), with a floor of one.
    """
    user = next((m for m in ledger.members if m.id == user_id), None)

    total_meals = _total_meals(ledger, user_id)
    total_deposit = sum(d.amount for d in ledger.deposits if d.user_id == user_id)
    meal_cost = total_meals * meal_rate(ledger)
    individual_cost = sum(
        c.amount for c in ledger.other_costs
        if c.user_id == user_id and not c.is_shared
    )
    member_count = max(len(_active_members(ledger)), 1)
    shared_cost = _total_shared_cost(ledger) / member_count

    return MemberSummary(
        user_id=user_id,
        user_name=(user.full_name if user and user.full_name else "Unknown"),
        total_meals=total_meals,
        total_deposit=total_deposit,
        meal_cost=meal_cost,
        individual_cost=individual_cost,
        shared_cost=shared_cost,
        balance=total_deposit - (meal_cost + individual_cost + shared_cost),
    )


def month_summary(ledger: MonthLedger) -> MonthSummary:
    """Mess-wide totals for the month."""
    total_deposit = sum(d.amount for d in ledger.deposits)
    total_meal_cost = _total_meal_cost(ledger)
    total_individual_cost = sum(c.amount for c in ledger.other_costs if not c.is_shared)
    total_shared_cost = _total_shared_cost(ledger)

    return MonthSummary(
        month_id=ledger.month_id,
        month_name=ledger.month_name,
        mess_balance=total_deposit - (total_meal_cost + total_individual_cost + total_shared_cost),
        total_deposit=total_deposit,
        total_meals=_total_meals(ledger),
        total_meal_cost=total_meal_cost,
        meal_rate=meal_rate(ledger),
        total_individual_cost=total_individual_cost,
        total_shared_cost=total_shared_cost,
    )


def all_members_summary(ledger: MonthLedger) -> list[MemberSummary]:
    """`member_summary` for every approved, active member."""
    return [member_summary(ledger, m.id) for m in _active_members(ledger)]
