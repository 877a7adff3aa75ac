"""Turn free-form availability text into a structured date range.

Parsing is deterministic: an ordered list of small matchers is tried from
most to least specific and the first one that recognises the text wins.
Bad input is returned as a WindowNormalizationError, never raised, because
malformed text is the normal case for a free-text box.

Supported shapes, in match order:

    2026-02-07 to 2026-02-09     iso_range
    Feb 7-9, 2026                same_month_range
    Dec 30 to Jan 2              cross_month_range (rolls into next year)
    Feb 7                        single_date
    early / mid / late March     relative_month
    first / second / last weekend of April
    last week of June
    June                         bare_month (whole month, length limit skipped)
"""
import calendar
import re
from datetime import date, timedelta
from typing import Callable, List, Optional, Tuple, Union

from tripsync.core.clock import Clock, system_clock
from tripsync.core.config import settings
from tripsync.models.scheduling.window_models import WindowPrecision
from tripsync.schemas.scheduling.window import (
    NormalizedWindow,
    WindowContext,
    WindowNormalizationError,
)

EMPTY_INPUT_ERROR = 'Please enter a date range. Examples: "Feb 7-9", "early March", "last week of June", "April"'
MULTI_RANGE_ERROR = "Please suggest one date range at a time. You can add another option separately."
UNPARSEABLE_ERROR = (
    'Could not understand the date format. Try: "Feb 7-9", "early March", '
    '"last week of June", or "first weekend of April"'
)
END_BEFORE_START_ERROR = "End date must be on or after start date."

MONTH_NAMES = {
    "jan": 1, "january": 1,
    "feb": 2, "february": 2,
    "mar": 3, "march": 3,
    "apr": 4, "april": 4,
    "may": 5,
    "jun": 6, "june": 6,
    "jul": 7, "july": 7,
    "aug": 8, "august": 8,
    "sep": 9, "sept": 9, "september": 9,
    "oct": 10, "october": 10,
    "nov": 11, "november": 11,
    "dec": 12, "december": 12,
}

RELATIVE_DAYS = {
    "early": (1, 7),
    "mid": (10, 20),
    "late": (21, None),  # None -> last day of month
}

_SEP = r"\s*(?:to|through|thru|–|—|-)\s*"
_YEAR = r"(?:\s*,?\s*(\d{4}))?"

MULTI_RANGE_PATTERNS = [
    re.compile(r"\bor\b", re.I),
    re.compile(r"\beither\b", re.I),
    re.compile(r"\banytime\b", re.I),
    re.compile(r"\bflexible\b", re.I),
    re.compile(r"\bwhenever\b", re.I),
    re.compile(r"(?:\band\b|&)", re.I),
    re.compile(r",\s*(?:and|&|also)\b", re.I),
    # "Mar 3, Mar 10" / "Mar 3, 10"; a trailing ", 2026" year is allowed
    re.compile(r",\s*(?:[a-z]{3,}\s+)?\d{1,2}(?!\d)", re.I),
    re.compile(r"\d+\s*[-–]\s*\d+\s*(?:or|,)\s*(?:[a-z]+\s+)?\d+\s*[-–]\s*\d+", re.I),
]

Matcher = Callable[[str, WindowContext, date], Optional[NormalizedWindow]]


def parse_month(token: str) -> Optional[int]:
    return MONTH_NAMES.get(token.strip().lower())


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def first_saturday_of_month(year: int, month: int) -> int:
    weekday = date(year, month, 1).weekday()  # Monday=0 .. Saturday=5
    return 1 + (5 - weekday) % 7


def days_between(start: date, end: date) -> int:
    """Inclusive day count; a single-day window is 1."""
    return (end - start).days + 1


def infer_year(month: int, context: WindowContext, today: date) -> int:
    if context.trip_year:
        return context.trip_year
    if context.start_bound:
        return context.start_bound.year
    # Typing "March" in November means next March, not one in the past
    if month < today.month:
        return today.year + 1
    return today.year


def contains_multi_range(text: str) -> bool:
    return any(pattern.search(text) for pattern in MULTI_RANGE_PATTERNS)


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _year(year_str: Optional[str], month: int, context: WindowContext, today: date) -> int:
    return int(year_str) if year_str else infer_year(month, context, today)


def _exact(start: date, end: date) -> NormalizedWindow:
    return NormalizedWindow(start_date=start, end_date=end, precision=WindowPrecision.exact)


def _approx(start: date, end: date, is_bare_month: bool = False) -> NormalizedWindow:
    return NormalizedWindow(
        start_date=start,
        end_date=end,
        precision=WindowPrecision.approx,
        is_bare_month=is_bare_month,
    )


# ---------------------------------------------------------------------------
# Matchers
# ---------------------------------------------------------------------------

_ISO_RANGE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})" + _SEP + r"(\d{4})-(\d{2})-(\d{2})$", re.I)
_SAME_MONTH = re.compile(r"^([a-z]+)\.?\s+(\d{1,2})" + _SEP + r"(\d{1,2})" + _YEAR + "$", re.I)
_CROSS_MONTH = re.compile(
    r"^([a-z]+)\.?\s+(\d{1,2})" + _SEP + r"([a-z]+)\.?\s+(\d{1,2})" + _YEAR + "$", re.I
)
_SINGLE_DATE = re.compile(r"^([a-z]+)\.?\s+(\d{1,2})" + _YEAR + "$", re.I)
_RELATIVE = re.compile(r"^(early|mid|late)[\s-]+([a-z]+)" + _YEAR + "$", re.I)
_WEEKEND = re.compile(
    r"^(?:the\s+)?(first|1st|second|2nd|last)\s+weekend\s+(?:of\s+|in\s+)?([a-z]+)" + _YEAR + "$", re.I
)
_LAST_WEEK = re.compile(r"^(?:the\s+)?last\s+week\s+(?:of\s+|in\s+)?([a-z]+)" + _YEAR + "$", re.I)
_BARE_MONTH = re.compile(r"^([a-z]+)" + _YEAR + "$", re.I)


def match_iso_range(text: str, context: WindowContext, today: date) -> Optional[NormalizedWindow]:
    m = _ISO_RANGE.match(text)
    if not m:
        return None
    y1, m1, d1, y2, m2, d2 = (int(g) for g in m.groups())
    start = _safe_date(y1, m1, d1)
    end = _safe_date(y2, m2, d2)
    if start is None or end is None:
        return None
    return _exact(start, end)


def match_same_month_range(text: str, context: WindowContext, today: date) -> Optional[NormalizedWindow]:
    m = _SAME_MONTH.match(text)
    if not m:
        return None
    month_str, day1, day2, year_str = m.groups()
    month = parse_month(month_str)
    if month is None:
        return None
    year = _year(year_str, month, context, today)
    start = _safe_date(year, month, int(day1))
    end = _safe_date(year, month, int(day2))
    if start is None or end is None:
        return None
    return _exact(start, end)


def match_cross_month_range(text: str, context: WindowContext, today: date) -> Optional[NormalizedWindow]:
    m = _CROSS_MONTH.match(text)
    if not m:
        return None
    month1_str, day1, month2_str, day2, year_str = m.groups()
    month1 = parse_month(month1_str)
    month2 = parse_month(month2_str)
    if month1 is None or month2 is None:
        return None
    year1 = _year(year_str, month1, context, today)
    year2 = year1 + 1 if month2 < month1 else year1
    start = _safe_date(year1, month1, int(day1))
    end = _safe_date(year2, month2, int(day2))
    if start is None or end is None:
        return None
    return _exact(start, end)


def match_single_date(text: str, context: WindowContext, today: date) -> Optional[NormalizedWindow]:
    m = _SINGLE_DATE.match(text)
    if not m:
        return None
    month_str, day, year_str = m.groups()
    month = parse_month(month_str)
    if month is None:
        return None
    day_date = _safe_date(_year(year_str, month, context, today), month, int(day))
    if day_date is None:
        return None
    return _exact(day_date, day_date)


def match_relative_month(text: str, context: WindowContext, today: date) -> Optional[NormalizedWindow]:
    m = _RELATIVE.match(text)
    if not m:
        return None
    position, month_str, year_str = m.groups()
    month = parse_month(month_str)
    if month is None:
        return None
    year = _year(year_str, month, context, today)
    start_day, end_day = RELATIVE_DAYS[position.lower()]
    if end_day is None:
        end_day = last_day_of_month(year, month)
    return _approx(date(year, month, start_day), date(year, month, end_day))


def match_nth_weekend(text: str, context: WindowContext, today: date) -> Optional[NormalizedWindow]:
    m = _WEEKEND.match(text)
    if not m:
        return None
    ordinal, month_str, year_str = m.groups()
    month = parse_month(month_str)
    if month is None:
        return None
    year = _year(year_str, month, context, today)
    last_day = last_day_of_month(year, month)
    ordinal = ordinal.lower()

    if ordinal == "last":
        # Python weekday: Saturday=5, so step back (weekday - 5) mod 7 days
        saturday = last_day - (date(year, month, last_day).weekday() - 5) % 7
    elif ordinal in ("second", "2nd"):
        saturday = first_saturday_of_month(year, month) + 7
        if saturday > last_day:
            return None
    else:
        saturday = first_saturday_of_month(year, month)

    start = date(year, month, saturday)
    # Sunday may spill into the next month (or year) for "last weekend"
    return _approx(start, start + timedelta(days=1))


def match_last_week(text: str, context: WindowContext, today: date) -> Optional[NormalizedWindow]:
    m = _LAST_WEEK.match(text)
    if not m:
        return None
    month_str, year_str = m.groups()
    month = parse_month(month_str)
    if month is None:
        return None
    year = _year(year_str, month, context, today)
    last_day = last_day_of_month(year, month)
    return _approx(date(year, month, last_day - 6), date(year, month, last_day))


def match_bare_month(text: str, context: WindowContext, today: date) -> Optional[NormalizedWindow]:
    m = _BARE_MONTH.match(text)
    if not m:
        return None
    month_str, year_str = m.groups()
    month = parse_month(month_str)
    if month is None:
        return None
    year = _year(year_str, month, context, today)
    return _approx(
        date(year, month, 1),
        date(year, month, last_day_of_month(year, month)),
        is_bare_month=True,
    )


MATCHERS: List[Tuple[str, Matcher]] = [
    ("iso_range", match_iso_range),
    ("same_month_range", match_same_month_range),
    ("cross_month_range", match_cross_month_range),
    ("single_date", match_single_date),
    ("relative_month", match_relative_month),
    ("nth_weekend", match_nth_weekend),
    ("last_week", match_last_week),
    ("bare_month", match_bare_month),
]


def match_window_text(
    text: str, context: WindowContext, today: date
) -> Optional[Tuple[str, NormalizedWindow]]:
    """Return (matcher name, result) for the first matcher that accepts text."""
    for name, matcher in MATCHERS:
        result = matcher(text, context, today)
        if result is not None:
            return name, result
    return None


def normalize_window(
    text: Optional[str],
    context: Optional[WindowContext] = None,
    clock: Clock = system_clock,
) -> Union[NormalizedWindow, WindowNormalizationError]:
    if not text or not isinstance(text, str) or not text.strip():
        return WindowNormalizationError(error=EMPTY_INPUT_ERROR)

    cleaned = " ".join(text.strip().split())
    if contains_multi_range(cleaned):
        return WindowNormalizationError(error=MULTI_RANGE_ERROR)

    matched = match_window_text(cleaned, context or WindowContext(), clock.today())
    if matched is None:
        return WindowNormalizationError(error=UNPARSEABLE_ERROR)
    _, result = matched

    max_days = settings.MAX_WINDOW_DAYS
    window_days = days_between(result.start_date, result.end_date)
    if not result.is_bare_month and window_days > max_days:
        return WindowNormalizationError(
            error=f"That's {window_days} days, which is longer than the {max_days}-day limit. Try a shorter range."
        )

    if window_days < 1:
        return WindowNormalizationError(error=END_BEFORE_START_ERROR)

    return result


def validate_window_bounds(
    start: date,
    end: date,
    start_bound: Optional[date],
    end_bound: Optional[date],
) -> Optional[str]:
    """Return an error message when a window falls outside the trip's bounds."""
    if not start_bound or not end_bound:
        return None
    if start < start_bound:
        return f"Start date {start.isoformat()} is before the trip's earliest date {start_bound.isoformat()}"
    if end > end_bound:
        return f"End date {end.isoformat()} is after the trip's latest date {end_bound.isoformat()}"
    return None
