# buyermatch/domain/affordability.py
from __future__ import annotations

import math

# Fixed upfront costs
FIXED_OTHER = 8310.0  # red-box costs, no closing
FIXED_FEES = 1990.0  # loan fees
FIXED_TOTAL = FIXED_OTHER + FIXED_FEES  # 10,300

# Share of price needed upfront: 20% down + 1% closing + 80% of 2% points = 22.6%
DOWN_PAYMENT_PCT = 0.20
CLOSING_PCT = 0.01
POINTS_PCT = 0.02
ENTRY_FACTOR = DOWN_PAYMENT_PCT + CLOSING_PCT + POINTS_PCT * 0.80

PRICE_BUFFER = 15000.0
ROUND_TO = 1000.0


def max_affordable_price(down_payment: float) -> float:
    """
    Ceiling price a buyer can reach with `down_payment` cash.

    max = (down_payment - fixed) / entry_factor + buffer, rounded to the nearest $1,000.
    Defined for every input; a down payment below the fixed-cost floor gives a
    non-positive or tiny ceiling that callers treat as "cannot evaluate".
    """
    raw = (float(down_payment) - FIXED_TOTAL) / ENTRY_FACTOR + PRICE_BUFFER
    return math.floor(raw / ROUND_TO + 0.5) * ROUND_TO


def has_valid_down_payment(amount: float | None) -> bool:
    return amount is not None and amount > FIXED_TOTAL
