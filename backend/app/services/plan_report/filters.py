"""Parse plan-report query parameters into a typed filter set."""

from dataclasses import dataclass
from datetime import date

from app.errors import ValidationError


@dataclass(frozen=True)
class PlanReportFilters:
    years: tuple[int, ...] = ()
    months: tuple[int, ...] = ()
    # Report "as of" this calendar day
    as_of: date | None = None
    collector_ids: tuple[int, ...] = ()

    @property
    def pins_single_period(self) -> bool:
        """Exactly one year and one month requested."""
        return len(self.years) == 1 and len(self.months) == 1


def parse_int_list(value: str | None, name: str) -> tuple[int, ...]:
    """``"2025, 2026"`` -> ``(2025, 2026)``; empty or missing -> ``()``."""
    if value is None or not value.strip():
        return ()
    result = []
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            result.append(int(part))
        except ValueError:
            raise ValidationError(f"{name} must be a comma-separated list of integers, got {part!r}")
    return tuple(result)


def parse_plan_report_filters(
    year: str | None = None,
    month: str | None = None,
    date_value: str | None = None,
    collector_id: str | None = None,
) -> PlanReportFilters:
    years = parse_int_list(year, "year")
    months = parse_int_list(month, "month")
    collector_ids = parse_int_list(collector_id, "collector_id")

    bad_months = [m for m in months if not 1 <= m <= 12]
    if bad_months:
        raise ValidationError(f"month must be between 1 and 12, got {bad_months[0]}")
    bad_years = [y for y in years if not 1900 <= y <= 9999]
    if bad_years:
        raise ValidationError(f"year is out of range: {bad_years[0]}")

    parsed_date = None
    if date_value:
        try:
            # Accept full ISO timestamps; only the calendar day matters
            parsed_date = date.fromisoformat(date_value.strip()[:10])
        except ValueError:
            raise ValidationError(f"date must be an ISO date (YYYY-MM-DD), got {date_value!r}")

    return PlanReportFilters(
        years=years,
        months=months,
        as_of=parsed_date,
        collector_ids=collector_ids,
    )
