"""Choose between the precomputed legacy plan report and live computation."""

from dataclasses import dataclass, field
from typing import Sequence

# First year computed live from activity tables
PLAN_SOURCE_CUTOVER_YEAR = 2026


@dataclass(frozen=True)
class PlanSourceRoute:
    old_years: list[int] = field(default_factory=list)
    new_years: list[int] = field(default_factory=list)
    # Only meaningful when no year filter was given
    default_is_new: bool = False

    @property
    def use_legacy(self) -> bool:
        if self.old_years or self.new_years:
            return bool(self.old_years)
        return not self.default_is_new

    @property
    def use_current(self) -> bool:
        if self.old_years or self.new_years:
            return bool(self.new_years)
        return self.default_is_new


def determine_plan_data_source(
    years: Sequence[int] | None, current_year: int
) -> PlanSourceRoute:
    if not years:
        return PlanSourceRoute(default_is_new=current_year >= PLAN_SOURCE_CUTOVER_YEAR)
    return PlanSourceRoute(
        old_years=[y for y in years if y < PLAN_SOURCE_CUTOVER_YEAR],
        new_years=[y for y in years if y >= PLAN_SOURCE_CUTOVER_YEAR],
    )
