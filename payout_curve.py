"""
Payout Curve — time-decayed payout schedule for settled positions.

Breakout pays most when the move happens early; Stay-In pays most when the
price holds inside its band for the full horizon. The engine only defines the
five anchor points; anything between them is a presentation concern.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Dict, List, Tuple

from execution.models import PositionType

HORIZON_HOURS = 24
SAMPLE_HOURS: Tuple[int, ...] = (0, 6, 12, 18, 24)

_SCHEDULES: Dict[PositionType, Tuple[int, ...]] = {
    PositionType.BREAKOUT: (200, 150, 100, 50, 0),
    PositionType.STAY_IN: (0, 50, 100, 150, 200),
}


def payout_percentage(position_type: PositionType, hours_elapsed: int) -> int:
    """Percentage of principal paid at an anchor hour."""
    try:
        idx = SAMPLE_HOURS.index(hours_elapsed)
    except ValueError:
        raise ValueError(
            f"hours_elapsed must be one of {SAMPLE_HOURS}, got {hours_elapsed}") from None
    return _SCHEDULES[PositionType(position_type)][idx]


def payout_schedule(position_type: PositionType) -> List[Tuple[int, int]]:
    """[(hours, percentage), ...] for all anchors."""
    return list(zip(SAMPLE_HOURS, _SCHEDULES[PositionType(position_type)]))


def payout_amount(principal: Decimal, percentage) -> Decimal:
    """principal × percentage / 100, exact in Decimal."""
    return Decimal(principal) * Decimal(percentage) / Decimal(100)


def is_win(percentage) -> bool:
    """Above 100 % of principal is a profit; 100 or below is breakeven/loss."""
    return Decimal(percentage) > 100


def payout_table(position_type: PositionType,
                 principal: Decimal) -> List[Tuple[int, int, Decimal]]:
    """(hours, percentage, amount) rows for display."""
    return [(h, pct, payout_amount(principal, pct)) for h, pct in payout_schedule(position_type)]
