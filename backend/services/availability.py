from dataclasses import dataclass
from datetime import datetime, tzinfo

from backend.models.student import Availability, Student

DAY_NAMES = ['Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday']


@dataclass(frozen=True)
class AvailabilityResult:
    available: bool
    reason: str | None = None


def day_of_week(moment: datetime) -> int:
    """Day index with 0 = Sunday, the encoding used by availability rules."""
    return (moment.weekday() + 1) % 7


def find_rule(rules: list[Availability], day: int) -> Availability | None:
    return next((rule for rule in rules if rule.day == day), None)


def check_availability(
    student: Student,
    start: datetime,
    end: datetime,
    tz: tzinfo | None = None,
) -> AvailabilityResult:
    if not student.availability:
        return AvailabilityResult(available=True)

    if tz is not None:
        start = start.astimezone(tz)
        end = end.astimezone(tz)

    day = day_of_week(start)
    rule = find_rule(student.availability, day)
    if rule is None:
        return AvailabilityResult(
            available=False,
            reason=f'{student.first_name} is not available on {DAY_NAMES[day]}',
        )

    if start.hour < rule.start_hour or end.hour > rule.end_hour:
        return AvailabilityResult(
            available=False,
            reason=f'{student.first_name} is only available from {rule.start_hour}h to {rule.end_hour}h that day',
        )

    return AvailabilityResult(available=True)
