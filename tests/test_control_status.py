"""Control status derivation from due dates."""

from datetime import datetime, timedelta

import pytest

from civictrack.config import ControlStatus
from civictrack.control.domain import ControlStatusCalculator, parse_due_date
from civictrack.core import ValidationException
from tests.fakes import NOW


@pytest.fixture
def calculator():
    return ControlStatusCalculator(approaching_threshold_hours=48)


def test_missing_due_date_is_not_controlled(calculator):
    assert calculator.calculate(None, NOW) == ControlStatus.NO
    assert calculator.calculate("", NOW) == ControlStatus.NO


def test_unparsable_due_date_is_not_controlled(calculator):
    assert calculator.calculate("next tuesday", NOW) == ControlStatus.NO


@pytest.mark.parametrize("hours, expected", [
    (-0.01, ControlStatus.OVERDUE),
    (-72, ControlStatus.OVERDUE),
    (0, ControlStatus.APPROACHING),
    (1, ControlStatus.APPROACHING),
    (48, ControlStatus.APPROACHING),
    (48.01, ControlStatus.NORMAL),
    (24 * 30, ControlStatus.NORMAL),
])
def test_thresholds(calculator, hours, expected):
    assert calculator.calculate(NOW + timedelta(hours=hours), NOW) == expected


def test_iso_string_and_naive_datetime_are_utc(calculator):
    due = (NOW + timedelta(hours=10)).replace(tzinfo=None)
    assert calculator.calculate(due, NOW) == ControlStatus.APPROACHING
    assert calculator.calculate(due.isoformat(), NOW) == ControlStatus.APPROACHING


def test_status_only_moves_forward_as_time_passes(calculator):
    due = NOW + timedelta(days=5)
    order = [ControlStatus.NORMAL, ControlStatus.APPROACHING, ControlStatus.OVERDUE]
    seen = [calculator.calculate(due, NOW + timedelta(hours=h)) for h in range(0, 24 * 7, 6)]
    ranks = [order.index(s) for s in seen]
    assert ranks == sorted(ranks)
    assert set(seen) == set(order)


def test_parse_due_date_rejects_garbage():
    with pytest.raises(ValidationException):
        parse_due_date("31/31/2026")


def test_parse_due_date_empty_is_none():
    assert parse_due_date(None) is None
    assert parse_due_date("") is None
    assert parse_due_date(datetime(2026, 1, 1)).tzinfo is not None
