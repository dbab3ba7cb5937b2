"""Cost allocation package."""

from messmate.allocation.engine import (
    all_members_summary,
    meal_rate,
    member_summary,
    month_summary,
)

__all__ = [
    "all_members_summary",
    "meal_rate",
    "member_summary",
    "month_summary",
]
