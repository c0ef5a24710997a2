from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from src.gym_membership.gym_membership.common.datetime_utils import (
    add_months,
    month_bounds,
    parse_iso_datetime,
    same_calendar_month,
    to_local_naive,
)
from src.gym_membership.gym_membership.common.validators import require_amount, require_enum
from src.gym_membership.gym_membership.core.enums import SubscriptionType
from src.gym_membership.gym_membership.core.exceptions import InvalidArgumentError, InvalidTypeError


@pytest.mark.parametrize(
    "value, months, expected",
    [
        (datetime(2024, 3, 10, 8, 30), 1, datetime(2024, 4, 10, 8, 30)),
        (datetime(2024, 1, 31), 1, datetime(2024, 2, 29)),
        (datetime(2023, 1, 31), 1, datetime(2023, 2, 28)),
        (datetime(2024, 12, 15), 1, datetime(2025, 1, 15)),
        (datetime(2024, 3, 31), -1, datetime(2024, 2, 29)),
    ],
)
def test_add_months(value, months, expected):
    assert add_months(value, months) == expected


def test_month_bounds_and_same_month():
    start, end = month_bounds(datetime(2024, 12, 20, 13, 0))

    assert (start, end) == (datetime(2024, 12, 1), datetime(2025, 1, 1))
    assert same_calendar_month(datetime(2024, 3, 1), datetime(2024, 3, 31, 23, 59))
    assert not same_calendar_month(datetime(2024, 3, 1), datetime(2025, 3, 1))


def test_parse_iso_datetime():
    assert parse_iso_datetime("2024-03-10") == datetime(2024, 3, 10)
    assert parse_iso_datetime("2024-03-10T18:30:00") == datetime(2024, 3, 10, 18, 30)
    with pytest.raises(InvalidArgumentError):
        parse_iso_datetime("10/03/2024", "startDate")
    with pytest.raises(InvalidArgumentError):
        parse_iso_datetime(None, "startDate")


def test_validators():
    assert require_amount("49.90") == Decimal("49.9")
    assert require_amount(None) == 0
    with pytest.raises(InvalidArgumentError):
        require_amount("abc")
    assert require_enum(SubscriptionType, " Complete ", "type") == SubscriptionType.COMPLETE
    with pytest.raises(InvalidTypeError):
        require_enum(SubscriptionType, "gold", "type")


def test_parse_iso_datetime_converts_offsets_to_local_time():
    parsed = parse_iso_datetime("2024-04-10T00:00:00+00:00", "endDate")

    assert parsed.tzinfo is None
    assert parsed == datetime(2024, 4, 10, tzinfo=timezone.utc).astimezone().replace(tzinfo=None)
    assert to_local_naive(datetime(2024, 4, 10, 8, 0)) == datetime(2024, 4, 10, 8, 0)
    with pytest.raises(InvalidArgumentError):
        parse_iso_datetime(20240410, "endDate")
