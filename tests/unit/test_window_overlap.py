from datetime import date

import pytest

from tripsync.schemas.scheduling.window import DateWindow
from tripsync.services.scheduling.window_overlap import (
    compute_day_coverage,
    compute_overlap_score,
    compute_range_coverage,
    find_best_overlap_range,
    find_similar_windows,
    get_most_similar_window,
)


def window(user_id, start, end, window_id=None, precision="exact"):
    return DateWindow(id=window_id, user_id=user_id, start_date=start, end_date=end, precision=precision)


def march(day):
    return date(2026, 3, day)


def test_day_coverage_counts_each_user_once_per_day():
    coverage = compute_day_coverage(
        [
            window(1, march(1), march(3)),
            window(1, march(2), march(4)),
            window(2, march(3), march(3)),
        ]
    )

    assert coverage[march(1)] == {1}
    assert coverage[march(2)] == {1}
    assert coverage[march(3)] == {1, 2}
    assert coverage[march(4)] == {1}


def test_day_coverage_skips_windows_without_dates():
    coverage = compute_day_coverage(
        [
            window(1, None, None),
            window(2, march(1), march(2), precision="unstructured"),
            window(3, march(5), march(5)),
        ]
    )

    assert coverage == {march(5): {3}}


def test_best_overlap_three_staggered_windows():
    best = find_best_overlap_range(
        [
            window(1, march(1), march(5)),
            window(2, march(3), march(7)),
            window(3, march(4), march(8)),
        ]
    )

    assert best.start == march(4)
    assert best.end == march(5)
    assert best.coverage_count == 3
    assert best.user_ids == [1, 2, 3]


def test_tighter_range_with_more_people_beats_longer_range():
    best = find_best_overlap_range(
        [
            window(1, march(1), march(10)),
            window(2, march(4), march(6)),
        ]
    )

    assert (best.start, best.end) == (march(4), march(6))
    assert best.coverage_count == 2
    assert best.days == 3


def test_equal_coverage_prefers_shorter_then_earlier():
    best = find_best_overlap_range(
        [
            window(1, march(1), march(5)),
            window(2, march(10), march(12)),
            window(3, march(20), march(22)),
        ]
    )

    # Every range is covered by one person; the 3-day ones beat the 5-day one
    assert best.coverage_count == 1
    assert (best.start, best.end) == (march(10), march(12))


@pytest.mark.parametrize("min_days,expected", [(2, None), (1, (march(3), march(3)))])
def test_min_days_boundary(min_days, expected):
    windows = [window(1, march(3), march(3)), window(2, march(3), march(3))]

    best = find_best_overlap_range(windows, min_days=min_days)

    if expected is None:
        assert best is None
    else:
        assert (best.start, best.end) == expected
        assert best.coverage_count == 2


def test_best_overlap_of_nothing_is_none():
    assert find_best_overlap_range([]) is None
    assert find_best_overlap_range([window(1, None, None)]) is None


def test_best_overlap_is_stable_regardless_of_input_order():
    windows = [
        window(1, march(1), march(5)),
        window(2, march(3), march(7)),
        window(3, march(4), march(8)),
    ]

    assert find_best_overlap_range(windows) == find_best_overlap_range(list(reversed(windows)))


def test_range_coverage_requires_a_single_window_to_contain_the_range():
    windows = [
        window(1, march(1), march(10)),
        # user 2 only covers the range with two windows stitched together
        window(2, march(1), march(4)),
        window(2, march(5), march(10)),
        window(3, march(4), march(5)),
    ]

    coverage = compute_range_coverage(windows, march(3), march(6))

    assert coverage.count == 1
    assert coverage.user_ids == [1]


def test_range_coverage_counts_exact_fit():
    coverage = compute_range_coverage([window(4, march(3), march(6))], march(3), march(6))

    assert coverage.count == 1
    assert coverage.user_ids == [4]


def test_overlap_score_uses_shorter_window():
    assert compute_overlap_score(window(1, march(1), march(10)), window(2, march(3), march(4))) == 1.0
    assert compute_overlap_score(window(1, march(1), march(4)), window(2, march(3), march(6))) == 0.5
    assert compute_overlap_score(window(1, march(1), march(2)), window(2, march(5), march(6))) == 0.0


def test_similar_windows_sorted_by_score():
    new = window(9, march(3), march(6))
    existing = [
        window(1, march(5), march(12), window_id=10),
        window(2, march(2), march(7), window_id=11),
        window(3, march(20), march(22), window_id=12),
    ]

    similar = find_similar_windows(new, existing)

    assert [s.window_id for s in similar] == [11]
    assert similar[0].score == 1.0
    assert get_most_similar_window(new, existing).window_id == 11
    assert get_most_similar_window(new, existing[2:]) is None
