"""
Order Validation

Decides whether an order carries the minimum fields needed to be
persisted: recipient name, address, product name and a positive quantity.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List

if TYPE_CHECKING:
    from .data_models import Order

REQUIRED_TEXT_FIELDS = ("recipient_name", "address", "product_name")


def _has_positive_quantity(order: "Order") -> bool:
    quantity = getattr(order, "quantity", None)
    if isinstance(quantity, bool):
        return False
    try:
        return quantity is not None and quantity > 0
    except TypeError:
        return False


def is_valid_order(order: "Order") -> bool:
    """
    Check whether an order can be persisted.

    Pure predicate; never raises.

    Args:
        order: Order to check

    Returns:
        True if every required text field is non-empty and quantity > 0
    """
    if order is None:
        return False
    for name in REQUIRED_TEXT_FIELDS:
        if not getattr(order, name, None):
            return False
    return _has_positive_quantity(order)


def missing_fields(order: "Order") -> List[str]:
    """Names of the required fields an order fails on."""
    if order is None:
        return list(REQUIRED_TEXT_FIELDS) + ["quantity"]

    missing = [name for name in REQUIRED_TEXT_FIELDS if not getattr(order, name, None)]
    if not _has_positive_quantity(order):
        missing.append("quantity")
    return missing
