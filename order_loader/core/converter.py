"""
Order to InvoiceDto conversion.

Conversion never raises: a failure yields an explicit invalid DTO so the
batch can count it instead of aborting.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from .data_models import DEFAULT_LOCATION, InvoiceDto, Order

logger = logging.getLogger(__name__)


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _collected_at(order: Order) -> datetime:
    raw = order.extra.get("collected_at")
    if raw is None or raw == "":
        return datetime.now()
    if isinstance(raw, datetime):
        return raw
    return datetime.fromisoformat(str(raw).strip())


def _optional_text(order: Order, key: str, default: str) -> str:
    value = _clean(order.extra.get(key))
    return value or default


def convert_order(order: Order) -> InvoiceDto:
    """
    Build an InvoiceDto from an order.

    Raises on malformed input (non-numeric quantity, unparseable
    ``collected_at``); use ``to_storage_dto`` for the non-raising form.
    """
    return InvoiceDto(
        order_number=_clean(order.order_number),
        order_date=_clean(order.order_date),
        recipient_name=_clean(order.recipient_name),
        recipient_phone=_clean(order.recipient_phone),
        zip_code=_clean(order.zip_code),
        address=_clean(order.address),
        detail_address=_clean(order.detail_address),
        product_code=_clean(order.product_code),
        product_name=_clean(order.product_name),
        option_name=_clean(order.option_name),
        quantity=int(order.quantity),
        unit_price=float(order.unit_price or 0),
        total_price=float(order.total_price or 0),
        shipping_type=_clean(order.shipping_type),
        shipping_center=_clean(order.shipping_center),
        payment_method=_clean(order.payment_method),
        shipping_cost=float(order.shipping_cost or 0),
        box_size=_clean(order.box_size),
        special_note=_clean(order.special_note),
        order_status=_clean(order.processing_status),
        store_name=_clean(order.store_name),
        collected_at=_collected_at(order),
        print_count=_optional_text(order, "print_count", "1"),
        invoice_quantity=_optional_text(order, "invoice_quantity", "1"),
        location=_optional_text(order, "location", DEFAULT_LOCATION),
    )


def to_storage_dto(order: Optional[Order]) -> InvoiceDto:
    """
    Convert an order, returning an invalid sentinel DTO on failure.

    Args:
        order: Order to convert

    Returns:
        InvoiceDto; ``dto.is_valid()`` is False when conversion failed
    """
    if order is None:
        return InvoiceDto.invalid("order is None")

    try:
        return convert_order(order)
    except Exception as e:
        logger.warning(
            f"Order conversion failed - order number: "
            f"{order.order_number or '(none)'}, error: {e}"
        )
        return InvoiceDto.invalid(str(e))
