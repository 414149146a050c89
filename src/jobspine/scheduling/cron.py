"""Six-field cron schedules - validation and pure due-evaluation.

Manifesto:
    An invalid schedule must never reach the running loop. Expressions are
    parsed and range-checked when a job is defined; the loop only ever asks
    a validated ``CronSchedule`` whether an instant (or a window of
    instants) matches. Every method is a pure function of (expression,
    instant), so schedules can be tested exhaustively without real time.

This module provides six-field cron parsing (seconds first) plus next/previous
firing computation using croniter.

Tags:
    jobspine, scheduling, cron, croniter, evaluator, pure-function

Doc-Types:
    api-reference


┌──────────────────────────────────────────────────────────────────────────────┐
│  SIX-FIELD CRON GRAMMAR                                                       │
│                                                                               │
│   ┌───────── second        0-59                                               │
│   │ ┌─────── minute        0-59                                               │
│   │ │ ┌───── hour          0-23                                               │
│   │ │ │ ┌─── day of month  1-31                                               │
│   │ │ │ │ ┌─ month         1-12 or JAN-DEC                                    │
│   │ │ │ │ │ ┌ day of week  0-6 (0 = Sunday) or SUN-SAT                        │
│   * * * * * *                                                                 │
│                                                                               │
│  field := item ("," item)*                                                    │
│  item  := ("*" | value | value "-" value) ["/" step]                          │
│                                                                               │
│  Rejected: L, W, #, ?, H, empty items, out-of-range values, reversed          │
│  ranges, zero steps, names outside the month/day-of-week fields, and          │
│  expressions that can never fire (e.g. 30 February).                          │
│                                                                               │
│  Day matching:                                                                │
│  - day-of-month and day-of-week both restricted  → day matches if EITHER     │
│    matches (logical OR, standard cron)                                        │
│  - either one is exactly "*"                     → only the other restricts   │
│  A field counts as restricted unless it is the bare wildcard "*";            │
│  "*/2" in day-of-month is restricted.                                        │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta

from croniter import croniter

from jobspine.core.errors import InvalidScheduleExpression
from jobspine.core.timestamps import ensure_utc, truncate_to_second


@dataclass(frozen=True)
class _FieldSpec:
    name: str
    low: int
    high: int
    aliases: dict[str, int] | None = None


_MONTH_NAMES = {
    name: index
    for index, name in enumerate(
        ["JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC"],
        start=1,
    )
}
_DAY_NAMES = {
    name: index for index, name in enumerate(["SUN", "MON", "TUE", "WED", "THU", "FRI", "SAT"])
}

FIELDS: tuple[_FieldSpec, ...] = (
    _FieldSpec("second", 0, 59),
    _FieldSpec("minute", 0, 59),
    _FieldSpec("hour", 0, 23),
    _FieldSpec("day-of-month", 1, 31),
    _FieldSpec("month", 1, 12, _MONTH_NAMES),
    _FieldSpec("day-of-week", 0, 6, _DAY_NAMES),
)

_SECOND, _MINUTE, _HOUR, _DOM, _MONTH, _DOW = range(6)

# Longest possible month for day-of-month feasibility (February may have 29)
_MONTH_LENGTHS = {1: 31, 2: 29, 3: 31, 4: 30, 5: 31, 6: 30, 7: 31, 8: 31, 9: 30, 10: 31, 11: 30, 12: 31}

_ITEM_RE = re.compile(r"^(\*|[0-9A-Za-z]+(?:-[0-9A-Za-z]+)?)(?:/([0-9]+))?$")
_ONE_SECOND = timedelta(seconds=1)


def _parse_value(token: str, spec: _FieldSpec, expression: str) -> int:
    if token.isdigit():
        value = int(token)
    elif spec.aliases is not None and token.upper() in spec.aliases:
        value = spec.aliases[token.upper()]
    else:
        raise InvalidScheduleExpression(expression, f"unsupported {spec.name} value {token!r}")
    if not spec.low <= value <= spec.high:
        raise InvalidScheduleExpression(
            expression, f"{spec.name} value {value} outside [{spec.low}, {spec.high}]"
        )
    return value


def _parse_field(text: str, spec: _FieldSpec, expression: str) -> frozenset[int]:
    values: set[int] = set()
    for item in text.split(","):
        match = _ITEM_RE.match(item)
        if match is None:
            raise InvalidScheduleExpression(
                expression, f"unsupported {spec.name} syntax {item!r}"
            )
        base, step_text = match.groups()

        if base == "*":
            start, end = spec.low, spec.high
        elif "-" in base:
            first, last = base.split("-", 1)
            start = _parse_value(first, spec, expression)
            end = _parse_value(last, spec, expression)
            if start > end:
                raise InvalidScheduleExpression(
                    expression, f"reversed {spec.name} range {item!r}"
                )
        else:
            start = _parse_value(base, spec, expression)
            # "a/step" runs from a to the end of the field
            end = spec.high if step_text is not None else start

        step = 1
        if step_text is not None:
            step = int(step_text)
            if step == 0:
                raise InvalidScheduleExpression(expression, f"zero step in {spec.name} {item!r}")

        values.update(range(start, end + 1, step))
    return frozenset(values)


@dataclass(frozen=True)
class CronSchedule:
    """A validated six-field cron schedule.

    Construct with :meth:`parse`. Instances are immutable and hashable.

    Example:
        >>> schedule = CronSchedule.parse("0 */5 * * * *")
        >>> schedule.matches(datetime(2025, 1, 1, 12, 5, 0, tzinfo=UTC))
        True
        >>> schedule.next_after(datetime(2025, 1, 1, 12, 5, 0, tzinfo=UTC))
        datetime.datetime(2025, 1, 1, 12, 10, tzinfo=datetime.timezone.utc)
    """

    expression: str
    values: tuple[frozenset[int], ...]
    wildcard: tuple[bool, ...]

    @classmethod
    def parse(cls, expression: str) -> CronSchedule:
        """Validate ``expression`` and return a schedule.

        Raises:
            InvalidScheduleExpression: unsupported syntax, out-of-range
                values, wrong field count, or a schedule that never fires.
        """
        if not isinstance(expression, str):
            raise InvalidScheduleExpression(repr(expression), "expression must be a string")

        parts = expression.split()
        if len(parts) != len(FIELDS):
            raise InvalidScheduleExpression(
                expression, f"expected {len(FIELDS)} fields, got {len(parts)}"
            )

        values = tuple(
            _parse_field(part, spec, expression) for part, spec in zip(parts, FIELDS, strict=True)
        )
        wildcard = tuple(part == "*" for part in parts)
        schedule = cls(expression=" ".join(parts), values=values, wildcard=wildcard)

        if not schedule._can_fire():
            raise InvalidScheduleExpression(expression, "schedule can never fire")
        return schedule

    def _can_fire(self) -> bool:
        # Only day-of-month x month can be unsatisfiable; with a restricted
        # day-of-week the OR rule always leaves some matching day.
        if self.wildcard[_DOM] or not self.wildcard[_DOW]:
            return True
        first_day = min(self.values[_DOM])
        return any(first_day <= _MONTH_LENGTHS[month] for month in self.values[_MONTH])

    @property
    def normalized(self) -> str:
        """Seconds-first expression with every restricted field expanded to a list."""
        fields = []
        for values, is_wildcard in zip(self.values, self.wildcard, strict=True):
            fields.append("*" if is_wildcard else ",".join(str(v) for v in sorted(values)))
        return " ".join(fields)

    def _iterator(self, start: datetime) -> croniter:
        return croniter(
            self.normalized,
            start,
            ret_type=datetime,
            day_or=True,
            second_at_beginning=True,
        )

    # === Evaluation ===

    def matches(self, instant: datetime) -> bool:
        """Return True if ``instant`` (truncated to the second, UTC) is a firing."""
        moment = truncate_to_second(instant)
        if moment.second not in self.values[_SECOND]:
            return False
        if moment.minute not in self.values[_MINUTE]:
            return False
        if moment.hour not in self.values[_HOUR]:
            return False
        if moment.month not in self.values[_MONTH]:
            return False
        return self._day_matches(moment)

    def _day_matches(self, moment: datetime) -> bool:
        dom_ok = moment.day in self.values[_DOM]
        # isoweekday: Monday=1 .. Sunday=7; cron: Sunday=0
        dow_ok = moment.isoweekday() % 7 in self.values[_DOW]
        if self.wildcard[_DOM]:
            return dow_ok
        if self.wildcard[_DOW]:
            return dom_ok
        return dom_ok or dow_ok

    def next_after(self, instant: datetime) -> datetime:
        """First firing strictly after ``instant``."""
        moment = ensure_utc(instant)
        start = truncate_to_second(moment)
        return ensure_utc(self._iterator(start).get_next(datetime))

    def latest_at_or_before(self, instant: datetime) -> datetime:
        """Most recent firing at or before ``instant``."""
        start = truncate_to_second(instant) + _ONE_SECOND
        return ensure_utc(self._iterator(start).get_prev(datetime))

    def is_due(self, previous: datetime, now: datetime) -> bool:
        """True if at least one firing lies in the window ``(previous, now]``.

        Both bounds are truncated to whole seconds, so a loop that wakes twice
        within the same second sees an empty window the second time.
        """
        low = truncate_to_second(previous)
        high = truncate_to_second(now)
        if high <= low:
            return False
        if high - low == _ONE_SECOND:
            return self.matches(high)
        return self.next_after(low) <= high

    def upcoming(self, after: datetime, count: int = 5) -> list[datetime]:
        """The next ``count`` firings after ``after``."""
        firings = []
        cursor = after
        for _ in range(count):
            cursor = self.next_after(cursor)
            firings.append(cursor)
        return firings

    def __str__(self) -> str:
        return self.expression


def parse_schedule(schedule: str | CronSchedule) -> CronSchedule:
    """Accept either an expression or an already parsed schedule."""
    if isinstance(schedule, CronSchedule):
        return schedule
    return CronSchedule.parse(schedule)
