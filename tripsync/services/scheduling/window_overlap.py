"""Coverage and overlap math over normalized date windows.

A window is anything exposing user_id, start_date, end_date and precision
(ORM WindowProposal rows or DateWindow schemas). Windows without dates, or
marked "unstructured", are ignored.

Cost: building the day map is O(days x windows); the best-range scan is
O(days^2 x users). Both are fine for tens of windows of at most 14 days,
so no interval tree is used.
"""
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Set

from pydantic import BaseModel

from tripsync.core.config import settings


class OverlapRange(BaseModel):
    start: date
    end: date
    coverage_count: int
    user_ids: List[int]

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1


class RangeCoverage(BaseModel):
    count: int
    user_ids: List[int]


class SimilarWindow(BaseModel):
    window_id: Optional[int]
    score: float


def _is_structured(window) -> bool:
    if getattr(window, "start_date", None) is None or getattr(window, "end_date", None) is None:
        return False
    precision = getattr(window, "precision", None)
    precision = getattr(precision, "value", precision)
    return precision != "unstructured"


def _iter_days(start: date, end: date) -> Iterable[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def compute_day_coverage(windows: Iterable) -> Dict[date, Set[int]]:
    """Map each calendar day to the set of users whose window covers it.

    A user with two windows over the same day is counted once.
    """
    coverage: Dict[date, Set[int]] = {}
    for window in windows:
        if not _is_structured(window):
            continue
        for day in _iter_days(window.start_date, window.end_date):
            coverage.setdefault(day, set()).add(window.user_id)
    return coverage


def find_best_overlap_range(windows: Iterable, min_days: Optional[int] = None) -> Optional[OverlapRange]:
    """Find the contiguous range with the most users available on every day.

    Candidates are maximal ranges for their covering set: extending one day
    either way would lose a user. Ranking is coverage count (desc), then
    duration (asc), then start date (asc). Ranges shorter than min_days are
    not candidates.
    """
    if min_days is None:
        min_days = settings.OVERLAP_MIN_DAYS
    coverage = compute_day_coverage(windows)
    if not coverage:
        return None

    days = sorted(coverage)
    best: Optional[OverlapRange] = None

    for i, start in enumerate(days):
        common: Set[int] = set(coverage[start])
        previous_day = coverage.get(start - timedelta(days=1), set())
        j = i
        while common:
            end = days[j]
            next_users = coverage.get(end + timedelta(days=1), set())
            extends = j + 1 < len(days) and days[j + 1] == end + timedelta(days=1)
            narrowed = common & next_users if extends else set()

            right_maximal = narrowed != common
            left_maximal = not common <= previous_day
            length = (end - start).days + 1
            if right_maximal and left_maximal and length >= min_days:
                candidate = OverlapRange(
                    start=start,
                    end=end,
                    coverage_count=len(common),
                    user_ids=sorted(common),
                )
                if best is None or _ranks_higher(candidate, best):
                    best = candidate

            if not extends:
                break
            common = narrowed
            j += 1

    return best


def _ranks_higher(candidate: OverlapRange, best: OverlapRange) -> bool:
    if candidate.coverage_count != best.coverage_count:
        return candidate.coverage_count > best.coverage_count
    if candidate.days != best.days:
        return candidate.days < best.days
    return candidate.start < best.start


def compute_range_coverage(windows: Iterable, start: date, end: date) -> RangeCoverage:
    """Users with a single window that contains every day of [start, end].

    Stricter than the per-day union: two windows that only jointly cover
    the range do not count.
    """
    users: Set[int] = set()
    for window in windows:
        if not _is_structured(window):
            continue
        if window.start_date <= start and window.end_date >= end:
            users.add(window.user_id)
    return RangeCoverage(count=len(users), user_ids=sorted(users))


def _window_length(start: date, end: date) -> int:
    return (end - start).days + 1


def compute_overlap_score(window_a, window_b) -> float:
    """Overlapping days divided by the shorter window's length (0.0 - 1.0)."""
    if not _is_structured(window_a) or not _is_structured(window_b):
        return 0.0
    intersect_start = max(window_a.start_date, window_b.start_date)
    intersect_end = min(window_a.end_date, window_b.end_date)
    if intersect_start > intersect_end:
        return 0.0
    overlap = _window_length(intersect_start, intersect_end)
    shorter = min(
        _window_length(window_a.start_date, window_a.end_date),
        _window_length(window_b.start_date, window_b.end_date),
    )
    return overlap / shorter


def find_similar_windows(new_window, existing: Iterable, threshold: Optional[float] = None) -> List[SimilarWindow]:
    if threshold is None:
        threshold = settings.WINDOW_SIMILARITY_THRESHOLD
    similar = []
    for window in existing:
        score = compute_overlap_score(new_window, window)
        if score >= threshold:
            similar.append(SimilarWindow(window_id=getattr(window, "id", None), score=round(score, 2)))
    similar.sort(key=lambda s: s.score, reverse=True)
    return similar


def get_most_similar_window(new_window, existing: Iterable, threshold: Optional[float] = None) -> Optional[SimilarWindow]:
    similar = find_similar_windows(new_window, existing, threshold)
    return similar[0] if similar else None
