"""
Summary Models

Output of the allocation engine and of the remote /summary endpoints.
Both backends produce the same shapes so the UI renders one type.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from messmate.models.entities import Deposit, Meal, MealCost, OtherCost, User


class _SummaryModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_record(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class MemberSummary(_SummaryModel):
    """One member's position for one month."""
    user_id: str
    user_name: str = "Unknown"
    total_meals: float = 0.0
    total_deposit: float = 0.0
    meal_cost: float = 0.0
    individual_cost: float = 0.0
    shared_cost: float = 0.0
    balance: float = 0.0


class MonthSummary(_SummaryModel):
    """Mess-wide totals for one month."""
    month_id: str
    month_name: str = "Current Month"
    mess_balance: float = 0.0
    total_deposit: float = 0.0
    total_meals: float = 0.0
    total_meal_cost: float = 0.0
    meal_rate: float = 0.0
    total_individual_cost: float = 0.0
    total_shared_cost: float = 0.0


class MonthLedger(BaseModel):
    """
    Everything the allocation engine needs for one month, already fetched.

    `members` is the mess membership at calculation time, not at the time
    the records were created.
    """
    month_id: str
    month_name: str = "Current Month"
    meals: list[Meal] = Field(default_factory=list)
    deposits: list[Deposit] = Field(default_factory=list)
    meal_costs: list[MealCost] = Field(default_factory=list)
    other_costs: list[OtherCost] = Field(default_factory=list)
    members: list[User] = Field(default_factory=list)
