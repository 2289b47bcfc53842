"""
Order SMS notifications to the shop owner.

No SMS gateway is wired up yet: the message is built and logged, and the
caller is told it was queued.
"""

import logging
from typing import Any, Dict, Optional, Union

import config

logger = logging.getLogger(__name__)

Number = Union[int, float]


def _amount(value: Number) -> Number:
    value = value or 0
    return int(value) if float(value).is_integer() else value


def format_order_sms(order: Dict[str, Any]) -> str:
    customer = order.get("customer") or {}
    items = ", ".join(
        f"{item.get('name')} x{item.get('quantity')} = Rs{_amount(item.get('price', 0) * item.get('quantity', 0))}"
        for item in order.get("items") or []
    )
    return (
        f"New Order #{order.get('id')}\n"
        f"Customer: {customer.get('name')}\n"
        f"Phone: {customer.get('phone')}\n"
        f"Address: {customer.get('address')}\n"
        f"Items: {items}\n"
        f"Total: Rs{_amount(order.get('total'))}\n"
        f"Payment: {order.get('paymentMethod')}"
    )


class SmsNotifier:
    def __init__(self, default_phone: Optional[str] = None):
        self.default_phone = config.OWNER_PHONE if default_phone is None else default_phone

    def send_order_sms(self, order: Dict[str, Any], owner_phone: Optional[str] = None) -> Dict[str, Any]:
        message = format_order_sms(order)
        # TODO: hand the message to an SMS gateway (Fast2SMS, Twilio or MSG91)
        logger.info("New order SMS to %s:\n%s", owner_phone or self.default_phone, message)
        return {
            "success": True,
            "message": "Order received and SMS queued",
            "orderId": order.get("id"),
        }
