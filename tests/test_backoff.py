from datetime import timedelta

import pytest

from security.backoff import backoff_duration, violation_count

BASE = timedelta(minutes=5)
CAP = timedelta(hours=2)


def test_zero_violations_returns_base():
    assert backoff_duration(0, BASE, 2, CAP) == BASE


def test_first_violation_is_base_window():
    assert backoff_duration(1, BASE, 2, CAP) == BASE


def test_second_violation_doubles():
    assert backoff_duration(2, BASE, 2, CAP) == timedelta(minutes=10)


def test_custom_multiplier():
    assert backoff_duration(3, BASE, 3, CAP) == timedelta(minutes=45)


def test_capped_at_maximum():
    assert backoff_duration(10, BASE, 2, CAP) == CAP


def test_huge_violation_count_saturates_at_cap():
    assert backoff_duration(5000, BASE, 2, CAP) == CAP
    assert backoff_duration(5000, BASE, 2.5, CAP) == CAP


@pytest.mark.parametrize("multiplier", [1, 1.5, 2, 4])
def test_monotonic_and_bounded(multiplier):
    previous = backoff_duration(1, BASE, multiplier, CAP)
    for count in range(2, 60):
        current = backoff_duration(count, BASE, multiplier, CAP)
        assert current >= previous
        assert current <= CAP
        previous = current


@pytest.mark.parametrize("attempts,expected", [(5, 1), (6, 1), (9, 1), (10, 2), (11, 2), (15, 3)])
def test_violation_count_floors(attempts, expected):
    assert violation_count(attempts, 5) == expected
