"""Calendar arithmetic for contract visit frequencies."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import date

from dateutil.relativedelta import relativedelta

from upkeep.core.enums import ContractFrequency, FrequencyUnit
from upkeep.core.exceptions import ValidationError

FREQUENCY_STEPS: dict[ContractFrequency, relativedelta] = {
    ContractFrequency.DAILY: relativedelta(days=1),
    ContractFrequency.WEEKLY: relativedelta(weeks=1),
    ContractFrequency.BI_WEEKLY: relativedelta(weeks=2),
    ContractFrequency.MONTHLY: relativedelta(months=1),
    ContractFrequency.QUARTERLY: relativedelta(months=3),
    ContractFrequency.SEMI_ANNUAL: relativedelta(months=6),
    ContractFrequency.ANNUAL: relativedelta(years=1),
}

_UNIT_FIELDS: dict[FrequencyUnit, str] = {
    FrequencyUnit.DAYS: "days",
    FrequencyUnit.WEEKS: "weeks",
    FrequencyUnit.MONTHS: "months",
    FrequencyUnit.YEARS: "years",
}


def _coerce_frequency(frequency: ContractFrequency | str) -> ContractFrequency:
    try:
        return ContractFrequency(frequency)
    except ValueError as exc:
        raise ValidationError(f"Unknown contract frequency: {frequency}") from exc


def frequency_step(
    frequency: ContractFrequency | str,
    frequency_value: int | None = None,
    frequency_unit: FrequencyUnit | str | None = None,
) -> relativedelta | None:
    """Return the step between two visits, or None for one-off contracts.

    Custom frequencies fail fast when value or unit is missing.
    """
    resolved = _coerce_frequency(frequency)
    if resolved is ContractFrequency.ONCE:
        return None
    if resolved is ContractFrequency.CUSTOM:
        if frequency_value is None or frequency_unit is None:
            raise ValidationError("Custom frequency requires frequency_value and frequency_unit.")
        if int(frequency_value) < 1:
            raise ValidationError("frequency_value must be a positive integer.")
        try:
            unit = FrequencyUnit(frequency_unit)
        except ValueError as exc:
            raise ValidationError(f"Unknown frequency unit: {frequency_unit}") from exc
        return relativedelta(**{_UNIT_FIELDS[unit]: int(frequency_value)})
    return FREQUENCY_STEPS[resolved]


def validate_schedule(
    frequency: ContractFrequency | str,
    frequency_value: int | None,
    frequency_unit: FrequencyUnit | str | None,
    start_date: date | None,
    end_date: date | None,
) -> None:
    """Raise ValidationError for any schedule that cannot be expanded."""
    if start_date is None:
        raise ValidationError("start_date is required.")
    if end_date is not None and end_date < start_date:
        raise ValidationError("end_date must be on or after start_date.")
    frequency_step(frequency, frequency_value, frequency_unit)


def iter_occurrences(start: date, step: relativedelta | None, until: date) -> Iterator[date]:
    """Yield start, start + step, start + 2*step, ... up to and including ``until``.

    Each occurrence is computed from ``start`` so month-end dates do not drift
    (Jan 31 -> Feb 29 -> Mar 31). A one-off step yields ``start`` only.
    """
    if start > until:
        return
    if step is None:
        yield start
        return
    index = 0
    while True:
        current = start + step * index
        if current > until:
            return
        yield current
        index += 1


def next_occurrence_after(start: date, step: relativedelta | None, after: date) -> date | None:
    """First occurrence of the ``start``-anchored sequence that falls strictly after ``after``.

    Uses the same ``start + step * n`` arithmetic as ``iter_occurrences``, so a
    follow-up visit lands on the date generation would have produced.
    """
    if step is None:
        return None
    index = 0
    while True:
        current = start + step * index
        if current > after:
            return current
        index += 1
