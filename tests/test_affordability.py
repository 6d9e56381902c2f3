import pytest

from buyermatch.domain.affordability import (
    ENTRY_FACTOR,
    FIXED_TOTAL,
    has_valid_down_payment,
    max_affordable_price,
)


def test_constants():
    assert FIXED_TOTAL == 10300
    assert ENTRY_FACTOR == pytest.approx(0.226)


def test_ceiling_for_fifty_thousand_down():
    # (50000 - 10300) / 0.226 + 15000 = 190,663.7 -> nearest 1,000
    assert max_affordable_price(50000) == 191000


def test_ceiling_is_monotonic_in_down_payment():
    assert max_affordable_price(10300) <= max_affordable_price(50000)
    prev = max_affordable_price(0)
    for dp in range(0, 200001, 5000):
        cur = max_affordable_price(dp)
        assert cur >= prev
        prev = cur


def test_ceiling_is_total_below_fixed_floor():
    # defined, just not meaningful; callers treat <= 0 as "cannot evaluate"
    assert max_affordable_price(0) == -31000
    assert max_affordable_price(-5000) < 0


def test_valid_down_payment_boundary():
    assert has_valid_down_payment(10300) is False
    assert has_valid_down_payment(10301) is True
    assert has_valid_down_payment(None) is False
