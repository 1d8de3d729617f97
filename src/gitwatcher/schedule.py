"""Five-field cron schedule expressions.

Fields: minute, hour, day-of-month, month, day-of-week. Each field is ``*``,
a number, a comma-separated list, or (as an extension) a range ``a-b`` or a
step ``*/n`` / ``a-b/n``. Evaluation of the next fire time is delegated to
croniter; this module only validates the accepted subset and wraps errors.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime

from croniter import CroniterBadDateError, CroniterError, croniter

from .errors import InvalidScheduleError

# (name, low, high) per field, in cron order
FIELDS: tuple[tuple[str, int, int], ...] = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day-of-month", 1, 31),
    ("month", 1, 12),
    ("day-of-week", 0, 6),
)

_ITEM_RE = re.compile(r"^(?:\*|(\d+)(?:-(\d+))?)(?:/(\d+))?$")


def _check_field(value: str, name: str, low: int, high: int) -> None:
    if not value:
        raise InvalidScheduleError(f"empty {name} field")
    for item in value.split(","):
        match = _ITEM_RE.match(item)
        if not match:
            raise InvalidScheduleError(f"invalid {name} value: {item!r}")
        start, end, step = match.groups()
        for number in (start, end):
            if number is not None and not low <= int(number) <= high:
                raise InvalidScheduleError(
                    f"{name} value {number} out of range [{low},{high}]"
                )
        if start is not None and end is not None and int(start) > int(end):
            raise InvalidScheduleError(f"{name} range {item!r} is reversed")
        if step is not None and int(step) == 0:
            raise InvalidScheduleError(f"{name} step must be positive: {item!r}")


@dataclass(frozen=True)
class ScheduleExpression:
    """A parsed cron expression. Immutable and safe to share across threads."""

    spec: str

    @property
    def fields(self) -> list[str]:
        return self.spec.split()

    def next(self, after: datetime) -> datetime:
        """Return the first fire time strictly after ``after``.

        The result carries the same tzinfo as ``after``. Raises
        InvalidScheduleError for expressions that can never match
        (e.g. February 31st).
        """
        try:
            result = croniter(self.spec, after).get_next(datetime)
            while result <= after:
                result = croniter(self.spec, result).get_next(datetime)
        except CroniterBadDateError as exc:
            raise InvalidScheduleError(
                f"schedule {self.spec!r} never fires: {exc}"
            ) from exc
        return result

    def __str__(self) -> str:
        return self.spec


def parse(spec: str) -> ScheduleExpression:
    """Parse a five-field cron spec, raising InvalidScheduleError if malformed."""
    if not isinstance(spec, str):
        raise InvalidScheduleError(f"schedule must be a string, got {type(spec).__name__}")

    parts = spec.split()
    if len(parts) != len(FIELDS):
        raise InvalidScheduleError(
            f"schedule {spec!r} must have {len(FIELDS)} fields, got {len(parts)}"
        )
    for value, (name, low, high) in zip(parts, FIELDS):
        _check_field(value, name, low, high)

    normalized = " ".join(parts)
    try:
        croniter(normalized)
    except (CroniterError, ValueError) as exc:
        raise InvalidScheduleError(f"invalid schedule {spec!r}: {exc}") from exc
    return ScheduleExpression(normalized)
