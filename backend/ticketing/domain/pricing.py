"""
Monetary breakdown of a registration.

All amounts are integers in the smallest currency unit; one loyalty point is
worth one unit.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Amounts:
    total_amount: int
    points_used: int
    discount_amount: int
    final_amount: int


def compute_discount(total_amount: int, discount_percent: int) -> int:
    """Promotion discount, rounded down."""
    return total_amount * discount_percent // 100


def compute_amounts(price: int, quantity: int, points_used: int, discount_amount: int = 0) -> Amounts:
    total_amount = price * quantity
    final_amount = max(0, total_amount - points_used - discount_amount)
    return Amounts(
        total_amount=total_amount,
        points_used=points_used,
        discount_amount=discount_amount,
        final_amount=final_amount,
    )
