"""IronSail domain schemas"""

from typing import Optional

from pydantic import BaseModel

from ...models_order import ShippingOrder


class SetupRequest(BaseModel):
    setup_token: Optional[str] = None
    name: Optional[str] = None


class ShippingOrderStatusUpdate(BaseModel):
    status: str


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_shipping_order(shipping_order: ShippingOrder) -> dict:
    order = shipping_order.order
    user = order.user if order else None
    return {
        "id": shipping_order.id,
        "orderId": shipping_order.order_id,
        "status": shipping_order.status,
        "pharmacy": shipping_order.pharmacy,
        "pharmacyOrderId": shipping_order.pharmacy_order_id,
        "trackingNumber": shipping_order.tracking_number,
        "trackingUrl": shipping_order.tracking_url,
        "shippedAt": _iso(shipping_order.shipped_at),
        "deliveredAt": _iso(shipping_order.delivered_at),
        "retryCount": shipping_order.retry_count,
        "lastRetryAt": _iso(shipping_order.last_retry_at),
        "nextRetryAt": _iso(shipping_order.next_retry_at),
        "retryError": shipping_order.retry_error,
        "createdAt": _iso(shipping_order.created_at),
        "updatedAt": _iso(shipping_order.updated_at),
        "order": {
            "id": order.id,
            "orderNumber": order.order_number,
            "status": order.status,
            "createdAt": _iso(order.created_at),
            "user": {
                "id": user.id,
                "firstName": user.first_name,
                "lastName": user.last_name,
                "email": user.email,
            }
            if user
            else None,
        }
        if order
        else None,
    }
