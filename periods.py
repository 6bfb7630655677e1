import re
from dataclasses import dataclass
from datetime import MAXYEAR, MINYEAR, date, datetime, timedelta, timezone
from typing import Optional

from errors import InvalidDateRange, InvalidMonthKey, InvalidReportGrouping, InvalidReportScope

SCOPE_RANGE = "range"
SCOPE_MONTHLY = "monthly"
SCOPE_BIMONTHLY = "bimonthly"
SCOPE_QUARTERLY = "quarterly"

PRESET_SCOPE_MONTHS = {
    SCOPE_MONTHLY: 1,
    SCOPE_BIMONTHLY: 2,
    SCOPE_QUARTERLY: 3,
}

GROUPING_DAY = "day"
GROUPING_WEEK = "week"
GROUPING_MONTH = "month"
GROUPINGS = (GROUPING_DAY, GROUPING_WEEK, GROUPING_MONTH)

_MONTH_KEY_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")
_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_FRACTION_RE = re.compile(r"\.(\d+)")

_MICROSECOND = timedelta(microseconds=1)


@dataclass(frozen=True)
class ReportPeriod:
    """Half-open UTC window ``[start, end)`` with naive UTC datetimes."""

    scope: str
    start: datetime
    end: datetime
    month_key: Optional[str] = None

    @property
    def from_utc(self) -> str:
        return format_utc(self.start)

    @property
    def to_utc(self) -> str:
        # Last representable instant, rendered with nanosecond precision.
        last = self.end - _MICROSECOND
        return f"{last:%Y-%m-%dT%H:%M:%S}.{last.microsecond:06d}999Z"

    @property
    def month_keys(self) -> list[str]:
        return month_keys_between(self.start, self.end)

    @property
    def last_day(self) -> date:
        return (self.end - _MICROSECOND).date()

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


def format_utc(moment: datetime) -> str:
    text = f"{moment:%Y-%m-%dT%H:%M:%S}"
    if moment.microsecond:
        text += f".{moment.microsecond:06d}"
    return text + "Z"


def parse_utc_timestamp(value: str) -> datetime:
    """Parse an RFC 3339 timestamp or a plain date into a naive UTC datetime."""
    text = (value or "").strip()
    if not text:
        raise ValueError("Empty timestamp")
    if _DATE_ONLY_RE.match(text):
        return datetime.combine(date.fromisoformat(text), datetime.min.time())
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    # fromisoformat on 3.10 only takes 3 or 6 fractional digits.
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def normalize_month_key(value: str) -> str:
    text = (value or "").strip()
    if not _MONTH_KEY_RE.match(text):
        raise InvalidMonthKey(f"Month key must look like YYYY-MM, got {value!r}")
    if int(text[:4]) < MINYEAR:
        raise InvalidMonthKey(f"Month key year out of range: {value!r}")
    return text


def add_months(first_of_month: datetime, count: int) -> datetime:
    index = first_of_month.year * 12 + (first_of_month.month - 1) + count
    if not MINYEAR <= index // 12 <= MAXYEAR:
        raise InvalidMonthKey(
            f"Window from {month_key_for(first_of_month)} leaves the supported calendar"
        )
    return first_of_month.replace(year=index // 12, month=index % 12 + 1, day=1)


def month_window(month_key: str) -> tuple[datetime, datetime]:
    key = normalize_month_key(month_key)
    start = datetime(int(key[:4]), int(key[5:]), 1)
    return start, add_months(start, 1)


def month_key_for(moment: datetime) -> str:
    return f"{moment.year:04d}-{moment.month:02d}"


def month_keys_between(start: datetime, end: datetime) -> list[str]:
    if end <= start:
        return []
    last = end - _MICROSECOND
    first_index = start.year * 12 + start.month - 1
    last_index = last.year * 12 + last.month - 1
    return [
        f"{index // 12:04d}-{index % 12 + 1:02d}"
        for index in range(first_index, last_index + 1)
    ]


def normalize_scope(scope: Optional[str]) -> str:
    normalized = (scope or "").strip().lower()
    if not normalized:
        return SCOPE_RANGE
    if normalized != SCOPE_RANGE and normalized not in PRESET_SCOPE_MONTHS:
        raise InvalidReportScope(f"Unsupported report scope: {scope}")
    return normalized


def normalize_grouping(grouping: Optional[str]) -> str:
    normalized = (grouping or "").strip().lower()
    if not normalized:
        return GROUPING_MONTH
    if normalized not in GROUPINGS:
        raise InvalidReportGrouping(f"Unsupported report grouping: {grouping}")
    return normalized


def period_key_for(moment: datetime, grouping: str) -> str:
    if grouping == GROUPING_DAY:
        return moment.date().isoformat()
    if grouping == GROUPING_WEEK:
        year, week, _ = moment.isocalendar()
        return f"{year:04d}-W{week:02d}"
    if grouping == GROUPING_MONTH:
        return month_key_for(moment)
    raise InvalidReportGrouping(f"Unsupported report grouping: {grouping}")


def _parse_boundary(value: str, *, is_end: bool) -> datetime:
    text = (value or "").strip()
    try:
        parsed = parse_utc_timestamp(text)
        if is_end:
            # Dates cover the whole day; timestamps are inclusive instants.
            if _DATE_ONLY_RE.match(text):
                return parsed + timedelta(days=1)
            return parsed + _MICROSECOND
    except (ValueError, OverflowError) as exc:
        raise InvalidDateRange(f"Invalid period boundary: {value!r}") from exc
    return parsed


def resolve_bounds(
    date_from: Optional[str], date_to: Optional[str]
) -> tuple[Optional[datetime], Optional[datetime]]:
    """Optional half-open bounds; either side may be open-ended."""
    start = _parse_boundary(date_from, is_end=False) if date_from else None
    end = _parse_boundary(date_to, is_end=True) if date_to else None
    if start is not None and end is not None and start >= end:
        raise InvalidDateRange("Start must not be after end")
    return start, end


def resolve_period(
    scope: Optional[str],
    *,
    month_key: Optional[str] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
) -> ReportPeriod:
    normalized = normalize_scope(scope)
    if normalized == SCOPE_RANGE:
        if not date_from or not date_to:
            raise InvalidDateRange("Range reports require both from and to")
        start, end = resolve_bounds(date_from, date_to)
        return ReportPeriod(SCOPE_RANGE, start, end)

    key = normalize_month_key(month_key or "")
    start, _ = month_window(key)
    end = add_months(start, PRESET_SCOPE_MONTHS[normalized])
    return ReportPeriod(normalized, start, end, month_key=key)
