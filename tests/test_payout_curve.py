from decimal import Decimal

import pytest

import payout_curve
from execution.models import PositionType


def test_breakout_decays_from_double_to_zero():
    assert [payout_curve.payout_percentage(PositionType.BREAKOUT, h)
            for h in payout_curve.SAMPLE_HOURS] == [200, 150, 100, 50, 0]


def test_stay_in_grows_to_double():
    assert payout_curve.payout_schedule(PositionType.STAY_IN) == [
        (0, 0), (6, 50), (12, 100), (18, 150), (24, 200)]


def test_curves_are_mirror_images():
    for hours in payout_curve.SAMPLE_HOURS:
        assert (payout_curve.payout_percentage(PositionType.BREAKOUT, hours)
                + payout_curve.payout_percentage(PositionType.STAY_IN, hours)) == 200


def test_accepts_raw_position_type_value():
    assert payout_curve.payout_percentage(1, 6) == 150


@pytest.mark.parametrize("hours", [-1, 3, 25])
def test_non_anchor_hours_rejected(hours):
    with pytest.raises(ValueError):
        payout_curve.payout_percentage(PositionType.STAY_IN, hours)


def test_payout_amount_is_exact_decimal():
    assert payout_curve.payout_amount(Decimal("5"), 150) == Decimal("7.5")
    assert payout_curve.payout_amount(Decimal("0.3"), 50) == Decimal("0.15")


def test_win_is_strictly_above_principal():
    assert payout_curve.is_win(150)
    assert not payout_curve.is_win(100)
    assert not payout_curve.is_win(0)


def test_payout_table_rows():
    rows = payout_curve.payout_table(PositionType.BREAKOUT, Decimal("2"))
    assert rows[0] == (0, 200, Decimal("4"))
    assert rows[-1] == (24, 0, Decimal("0"))
