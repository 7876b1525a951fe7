"""
IronSail order submission

Builds IronSail patient and order payloads from a paid order and its MD
Integrations offering, then submits them. Failures are returned as
{"success": False, "error": ...} so the retry service can classify them.
"""

import logging
import re
import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy.orm import Session

from ... import config
from ...models import User
from ...models_order import Order, ShippingAddress
from ...shared.pharmacy import PharmacyAPIError
from .client import IronSailClient
from .repository import IronSailRepository

logger = logging.getLogger(__name__)

NAME_MAX = 35
ORDER_ID_MAX = 100
MEMO_MAX = 1024
CLINICAL_NOTES_MAX = 2048
DEFAULT_DAYS_SUPPLY = 30


def normalize_phone(phone: Optional[str]) -> str:
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) != 10:
        logger.warning("⚠️ Patient phone is not 10 digits, using placeholder")
        return "0000000000"
    return digits


def normalize_dob(dob: Optional[str], today: Optional[date] = None) -> str:
    """YYYY-MM-DD in the past; falls back to 18 years ago"""
    today = today or date.today()
    try:
        parsed = datetime.strptime((dob or "")[:10], "%Y-%m-%d").date()
    except ValueError:
        parsed = None

    if parsed is None or parsed >= today:
        logger.warning("⚠️ Patient DOB missing or not in the past, using default")
        try:
            parsed = today.replace(year=today.year - 18)
        except ValueError:
            # Feb 29
            parsed = today.replace(year=today.year - 18, day=28)
    return parsed.isoformat()


def normalize_gender(gender: Optional[str]) -> str:
    value = (gender or "").strip().upper()
    if value in ("M", "MALE"):
        return "M"
    if value in ("F", "FEMALE"):
        return "F"
    return "U"


def normalize_state(state: Optional[str]) -> str:
    code = (state or "").strip()[:2].upper()
    if len(code) != 2:
        raise ValueError(f"Invalid state code: {state}")
    return code


def normalize_zip(zip_code: Optional[str]) -> str:
    digits = re.sub(r"\D", "", zip_code or "")[:9]
    if len(digits) < 5:
        raise ValueError(f"Invalid ZIP code: {zip_code}")
    return digits


def build_patient_payload(user: User, address: Optional[ShippingAddress]) -> dict:
    street = (address.address if address else "") or ""
    apartment = address.apartment if address else None
    payload = {
        "first_name": (user.first_name or "")[:NAME_MAX],
        "last_name": (user.last_name or "")[:NAME_MAX],
        "email": user.email,
        "phone_number": normalize_phone(user.phone_number),
        "date_of_birth": normalize_dob(user.dob),
        "gender": normalize_gender(user.gender),
        "address": {
            "street": street[:255],
            "city": ((address.city if address else "") or "")[:100],
            "state": normalize_state(address.state if address else None),
            "zip": normalize_zip(address.zip_code if address else None),
            "country": "USA",
        },
    }
    if apartment:
        payload["address"]["street_2"] = apartment[:255]
    return payload


def resolve_offering(order: Order) -> tuple[dict, dict]:
    """
    The offering and product to fulfil: the first MD offering, or the
    first order item's catalog product when the order has no offerings.
    """
    offerings = order.md_offerings or []
    if offerings:
        offering = offerings[0] or {}
        product = offering.get("product")
        if not product:
            raise ValueError("No product data found in MDI offering")
        return offering, product

    item = order.items[0] if order.items else None
    if not item or not item.product:
        raise ValueError("No MDI offerings or order items found. Cannot create IronSail order.")

    catalog = item.product
    return {"directions": catalog.placeholder_sig}, {
        "name": catalog.name,
        "quantity": str(item.quantity or 1),
        "days_supply": DEFAULT_DAYS_SUPPLY,
        "pharmacy_id": catalog.ironsail_pharmacy_id,
        "medication_id": catalog.ironsail_medication_id or item.pharmacy_product_id,
    }


def build_order_payload(order: Order, patient_id: str, offering: dict, product: dict) -> dict:
    pharmacy_id = product.get("pharmacy_id") or config.IRONSAIL_DEFAULT_PHARMACY_ID
    medication_id = product.get("medication_id")
    if not pharmacy_id:
        raise ValueError("No pharmacy_id found in offering. Cannot route order to IronSail.")
    if not medication_id:
        raise ValueError("No medication_id found in offering. Cannot identify medication in IronSail.")

    try:
        quantity = int(str(product.get("quantity") or "1").strip())
    except ValueError:
        quantity = 0
    if not 1 <= quantity <= 1000:
        raise ValueError(f"Invalid dispense_quantity: {product.get('quantity')}. Must be between 1 and 1000.")

    days_supply = product.get("days_supply") or DEFAULT_DAYS_SUPPLY
    if not 1 <= int(days_supply) <= 365:
        raise ValueError(f"Invalid days_supply: {days_supply}. Must be between 1 and 365.")

    notes = []
    if product.get("pharmacy_notes"):
        notes.append(f"Pharmacy Notes: {product['pharmacy_notes']}")
    if offering.get("directions"):
        notes.append(f"Directions: {offering['directions']}")
    if offering.get("clinical_note"):
        notes.append(f"Clinical Note: {offering['clinical_note']}")

    payload = {
        "patient_id": patient_id,
        "pharmacy_id": pharmacy_id,
        "medication_id": medication_id,
        "dispense_quantity": quantity,
        "days_supply": int(days_supply),
        "order_id": order.order_number[:ORDER_ID_MAX],
        "customer_id": order.user_id[:ORDER_ID_MAX],
        "memo": f"MDI Prescription - Order {order.order_number}"[:MEMO_MAX],
    }
    clinical_notes = "\n\n".join(notes)[:CLINICAL_NOTES_MAX]
    if clinical_notes:
        payload["clinical_notes"] = clinical_notes
    if config.IRONSAIL_WEBHOOK_URL:
        payload["webhook_urls"] = [config.IRONSAIL_WEBHOOK_URL]
    return payload


class IronSailOrderService:
    """Submits orders to IronSail and records the resulting ShippingOrder"""

    def __init__(self, db: Session, client: Optional[IronSailClient] = None):
        self.db = db
        self.client = client or IronSailClient()
        self.repo = IronSailRepository()

    async def get_or_create_patient(self, user: User, address: Optional[ShippingAddress]) -> str:
        existing = await self.client.find_patient_by_email(user.email)
        if existing and existing.get("uuid"):
            logger.info(f"✅ Found existing IronSail patient for user {user.id}")
            return existing["uuid"]

        patient_uuid = await self.client.create_patient(build_patient_payload(user, address))
        logger.info(f"✅ IronSail patient created for user {user.id}")
        return patient_uuid

    async def submit_order(self, order: Order, create_shipping_order: bool = True) -> dict:
        """
        Send one order to IronSail.

        Returns {"success": True, "data": {...}} with the IRONSAIL- pharmacy
        order id, or {"success": False, "error": message}.
        """
        logger.info(f"📦 Submitting order {order.order_number} to IronSail")
        try:
            if not order.user:
                raise ValueError("Order or user not found")
            offering, product = resolve_offering(order)
            patient_id = await self.get_or_create_patient(order.user, order.shipping_address)
            remote = await self.client.create_order(build_order_payload(order, patient_id, offering, product))
        except (PharmacyAPIError, ValueError) as e:
            logger.error(f"❌ IronSail submission failed for order {order.order_number}: {e}")
            return {"success": False, "error": str(e)}

        remote_id = remote.get("uuid") or remote.get("id") or str(uuid.uuid4())
        pharmacy_order_id = f"IRONSAIL-{remote_id}"

        if create_shipping_order:
            self.repo.create_shipping_order(
                self.db,
                order_id=order.id,
                shipping_address_id=order.shipping_address_id,
                status="processing",
                pharmacy_order_id=pharmacy_order_id,
                pharmacy="ironsail",
            )

        logger.info(f"✅ IronSail order created for {order.order_number}: {pharmacy_order_id}")
        return {
            "success": True,
            "data": {
                "ironSailOrderUuid": remote_id,
                "pharmacyOrderId": pharmacy_order_id,
                "status": remote.get("status"),
                "orderId": remote.get("order_id"),
            },
        }
