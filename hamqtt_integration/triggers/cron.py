"""Cron schedule parsing."""

from datetime import datetime

from croniter import croniter

from ..errors import ScheduleParseError

CRON_FIELDS = ("minute", "hour", "day-of-month", "month", "day-of-week")


class CronSchedule:
    """A standard five-field cron expression with minute resolution.

    The expression is parsed and validated once, at construction; every
    ``next_after`` call reuses the parsed form.
    """

    def __init__(self, expression: str):
        """Parse a cron expression.

        Args:
            expression: e.g. ``"0 * * * *"`` for every hour

        Raises:
            ScheduleParseError: If the expression is not a valid 5-field cron
        """
        if not isinstance(expression, str):
            raise ScheduleParseError(f"Cron expression must be a string, got {expression!r}")

        fields = expression.split()
        if len(fields) != len(CRON_FIELDS):
            raise ScheduleParseError(
                f"Cron expression '{expression}' must have {len(CRON_FIELDS)} fields "
                f"({' '.join(CRON_FIELDS)}), got {len(fields)}"
            )

        self.expression = " ".join(fields)
        try:
            self._iter = croniter(self.expression, datetime(2000, 1, 1))
            # Impossible dates such as 31 February only show up when searching
            self._iter.get_next(datetime)
        except (ValueError, TypeError, KeyError) as e:
            raise ScheduleParseError(f"Invalid cron expression '{expression}': {e}") from e

    def next_after(self, moment: datetime) -> datetime:
        """First fire time strictly after ``moment``.

        The result carries the same timezone (or lack of one) as ``moment``.
        """
        self._iter.set_current(moment, force=True)
        return self._iter.get_next(datetime)

    def __repr__(self) -> str:
        return f"CronSchedule({self.expression!r})"

    def __eq__(self, other) -> bool:
        return isinstance(other, CronSchedule) and other.expression == self.expression

    def __hash__(self) -> int:
        return hash(self.expression)
