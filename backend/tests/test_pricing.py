"""
Tests for the monetary breakdown of a registration.
"""

from ticketing.domain import compute_amounts, compute_discount


def test_final_amount_subtracts_points_and_discount():
    amounts = compute_amounts(price=500000, quantity=1, points_used=10000, discount_amount=100000)
    assert amounts.total_amount == 500000
    assert amounts.final_amount == 390000


def test_total_is_price_times_quantity():
    amounts = compute_amounts(price=75000, quantity=4, points_used=0)
    assert amounts.total_amount == 300000
    assert amounts.final_amount == 300000
    assert amounts.discount_amount == 0


def test_final_amount_floored_at_zero():
    amounts = compute_amounts(price=10000, quantity=1, points_used=8000, discount_amount=5000)
    assert amounts.final_amount == 0
    # The breakdown itself is kept as given
    assert amounts.points_used == 8000
    assert amounts.discount_amount == 5000


def test_free_event():
    amounts = compute_amounts(price=0, quantity=2, points_used=0)
    assert amounts.total_amount == 0
    assert amounts.final_amount == 0


def test_discount_rounds_down():
    assert compute_discount(500000, 20) == 100000
    assert compute_discount(999, 10) == 99
    assert compute_discount(150001, 15) == 22500


def test_zero_percent_discount():
    assert compute_discount(500000, 0) == 0
