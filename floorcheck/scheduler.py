"""Due-date computation from a recurrence frequency."""
import calendar
from datetime import date, datetime, timedelta
from typing import Optional, TypeVar, Union

from .exceptions import SchedulingError
from .schema import Frequency

DateLike = TypeVar("DateLike", date, datetime)


def parse_frequency(value: Union[None, str, Frequency]) -> Optional[Frequency]:
    """Return the :class:`Frequency` for ``value`` or ``None`` when unset.

    Raises :class:`SchedulingError` for anything outside the known set.
    """
    if value is None or value == "":
        return None
    if isinstance(value, Frequency):
        return value
    try:
        return Frequency(str(value).strip().lower())
    except ValueError:
        raise SchedulingError(value)


def add_months(moment: DateLike, months: int) -> DateLike:
    """Add calendar months, clamping to the last day of a shorter month."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def compute_due_date(
    frequency: Union[None, str, Frequency], reference: DateLike
) -> Optional[DateLike]:
    """Next due instant after ``reference`` for ``frequency``.

    ``once`` and no frequency mean no schedule and return ``None``.
    Month based frequencies use calendar arithmetic: 31 January plus one
    month is the last day of February.
    """
    frequency = parse_frequency(frequency)
    if frequency is None or frequency == Frequency.ONCE:
        return None
    if frequency == Frequency.DAILY:
        return reference + timedelta(days=1)
    if frequency == Frequency.WEEKLY:
        return reference + timedelta(days=7)
    if frequency == Frequency.MONTHLY:
        return add_months(reference, 1)
    if frequency == Frequency.QUARTERLY:
        return add_months(reference, 3)
    if frequency == Frequency.ANNUALLY:
        return add_months(reference, 12)
    raise SchedulingError(frequency)
