"""
Tests for the MD Integrations and Olympia Pharmacy webhooks.
"""

import json
from unittest.mock import AsyncMock, patch

import pytest

from patient_api import config
from patient_api.domain.ironsail.retry_service import IronSailRetryService
from patient_api.models_order import Prescription, ShippingOrder
from patient_api.webhook_security import (
    WebhookSignatureError,
    compute_hmac_sha256,
    compute_hmac_sha256_base64,
    verify_bearer_secret,
    verify_md_signature,
)

MD_SECRET = "md-webhook-secret"
OLYMPIA_SECRET = "olympia-webhook-secret"


def md_post(client, payload: dict, signature: str = None):
    body = json.dumps(payload).encode()
    headers = {"Content-Type": "application/json"}
    if signature is not None:
        headers["x-md-signature"] = signature
    return client.post("/md/webhooks", content=body, headers=headers), body


class TestSignatureHelpers:
    def test_hex_and_prefixed_signatures(self):
        body = b'{"event_type": "case_approved"}'
        digest = compute_hmac_sha256(MD_SECRET, body)

        assert verify_md_signature(body, digest, MD_SECRET)
        assert verify_md_signature(body, f"sha256={digest.upper()}", MD_SECRET)
        assert verify_md_signature(body, compute_hmac_sha256_base64(MD_SECRET, body), MD_SECRET)

    def test_rejects_missing_or_wrong_signature(self):
        body = b"{}"

        assert not verify_md_signature(body, None, MD_SECRET)
        assert not verify_md_signature(body, compute_hmac_sha256("other", body), MD_SECRET)

    @pytest.mark.parametrize(
        "authorization, secret, status_code",
        [
            (None, OLYMPIA_SECRET, 401),
            ("Bearer anything", None, 500),
            ("Bearer wrong", OLYMPIA_SECRET, 403),
        ],
    )
    def test_bearer_failures(self, authorization, secret, status_code):
        with pytest.raises(WebhookSignatureError) as exc:
            verify_bearer_secret(authorization, secret)

        assert exc.value.status_code == status_code

    def test_bearer_success(self):
        verify_bearer_secret(f"Bearer {OLYMPIA_SECRET}", OLYMPIA_SECRET)


class TestMDWebhook:
    def test_bad_signature_is_rejected_without_changes(self, client, db, monkeypatch, make_user, make_order):
        monkeypatch.setattr(config, "MD_INTEGRATIONS_WEBHOOK_SECRET", MD_SECRET)
        order = make_order(make_user(), md_case_id="case-1")

        response, _ = md_post(client, {"event_type": "case_approved", "case_id": "case-1"}, signature="deadbeef")

        assert response.status_code == 401
        db.refresh(order)
        assert order.status == "paid"
        assert order.md_case_status is None

    def test_valid_signature_approves_order(self, client, db, monkeypatch, make_user, make_order):
        monkeypatch.setattr(config, "MD_INTEGRATIONS_WEBHOOK_SECRET", MD_SECRET)
        doctor = make_user(role="doctor")
        order = make_order(make_user(), md_case_id="case-2", physician_id=doctor.id)
        payload = {"event_type": "case_approved", "case_id": "case-2"}
        signature = compute_hmac_sha256(MD_SECRET, json.dumps(payload).encode())

        response, _ = md_post(client, payload, signature=signature)

        assert response.status_code == 200
        assert response.json() == {"received": True}
        db.refresh(order)
        assert order.status == "processing"
        assert order.md_case_status == "case_approved"
        assert order.approved_by_doctor_id == doctor.id

    def test_unsigned_accepted_without_secret(self, client, db, make_user, make_order):
        order = make_order(make_user(), md_case_id="case-3")

        response, _ = md_post(client, {"event_type": "case_cancelled", "case_id": "case-3"})

        assert response.status_code == 200
        db.refresh(order)
        assert order.status == "cancelled"

    def test_unknown_case_is_acknowledged(self, client):
        response, _ = md_post(client, {"event_type": "case_approved", "case_id": "nope"})

        assert response.status_code == 200

    def test_approval_leaves_shipped_order_alone(self, client, db, make_user, make_order):
        order = make_order(make_user(), md_case_id="case-4", status="shipped")

        md_post(client, {"event_type": "case_completed", "case_id": "case-4"})

        db.refresh(order)
        assert order.status == "shipped"

    def test_prescriptions_are_deduplicated(self, client, db, make_user, make_order):
        order = make_order(make_user(), md_case_id="case-5")
        payload = {
            "event_type": "prescription_submitted",
            "case_id": "case-5",
            "prescriptions": [
                {"id": "rx-1", "name": "Semaglutide 0.25mg", "created_at": "2024-05-01T10:00:00Z"},
                {"id": "rx-1", "name": "Semaglutide 0.25mg"},
            ],
        }

        md_post(client, payload)
        md_post(client, payload)

        rows = db.query(Prescription).filter(Prescription.order_id == order.id).all()
        assert len(rows) == 1
        assert rows[0].name == "Semaglutide 0.25mg"
        assert rows[0].md_prescription_id == "rx-1"
        db.refresh(order)
        assert len(order.md_prescriptions) == 1

    def test_form_encoded_payload(self, client, db, make_user, make_order):
        order = make_order(make_user(), md_case_id="case-6")

        response = client.post(
            "/md/webhooks",
            content=b"event_type=case_cancelled&case_id=case-6",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

        assert response.status_code == 200
        db.refresh(order)
        assert order.status == "cancelled"

    def test_prescriptions_keyed_by_prescription_id(self, client, db, make_user, make_order):
        order = make_order(make_user(), md_case_id="case-7")
        payload = {
            "event_type": "prescription_submitted",
            "case_id": "case-7",
            "prescriptions": [{"prescription_id": "rx-9", "name": "Tirzepatide 2.5mg"}],
        }

        first, _ = md_post(client, payload)
        second, _ = md_post(client, payload)

        assert first.status_code == 200
        assert second.status_code == 200
        rows = db.query(Prescription).filter(Prescription.order_id == order.id).all()
        assert [row.md_prescription_id for row in rows] == ["rx-9"]


class TestMDApprovalSubmission:
    @pytest.fixture
    def ironsail_configured(self, monkeypatch):
        monkeypatch.setattr(config, "IRONSAIL_CLIENT_ID", "client-id")
        monkeypatch.setattr(config, "IRONSAIL_CLIENT_SECRET", "client-secret")

    @pytest.fixture
    def submit(self):
        result = {"success": True, "shippingOrderId": "so-1"}
        with patch.object(IronSailRetryService, "submit_order_with_retry", AsyncMock(return_value=result)) as mock:
            yield mock

    def test_approved_case_with_offerings_is_submitted(
        self, client, db, ironsail_configured, submit, make_user, make_order
    ):
        order = make_order(make_user(), md_case_id="case-10")
        offerings = [{"id": "off-1", "title": "Semaglutide"}]

        response, _ = md_post(
            client, {"event_type": "case_approved", "case_id": "case-10", "offerings": offerings}
        )

        assert response.status_code == 200
        submit.assert_awaited_once()
        submitted = submit.await_args.args[0]
        assert submitted.id == order.id
        db.refresh(order)
        assert order.md_offerings == offerings

    def test_not_submitted_without_offerings(self, client, ironsail_configured, submit, make_user, make_order):
        make_order(make_user(), md_case_id="case-11")

        md_post(client, {"event_type": "case_approved", "case_id": "case-11"})

        submit.assert_not_awaited()

    def test_not_submitted_without_credentials(self, client, submit, make_user, make_order):
        make_order(make_user(), md_case_id="case-12")

        md_post(
            client,
            {"event_type": "case_approved", "case_id": "case-12", "offerings": [{"id": "off-1"}]},
        )

        submit.assert_not_awaited()

    def test_not_submitted_twice(self, client, db, ironsail_configured, submit, make_user, make_order):
        order = make_order(make_user(), md_case_id="case-13")
        db.add(ShippingOrder(order_id=order.id, pharmacy="ironsail", pharmacy_order_id="IRONSAIL-1"))
        db.commit()

        md_post(
            client,
            {"event_type": "case_approved", "case_id": "case-13", "offerings": [{"id": "off-1"}]},
        )

        submit.assert_not_awaited()


class TestOlympiaWebhook:
    @pytest.fixture(autouse=True)
    def webhook_secret(self, monkeypatch):
        monkeypatch.setattr(config, "OLYMPIA_PHARMACY_WEBHOOK_SECRET", OLYMPIA_SECRET)

    def headers(self, secret: str = OLYMPIA_SECRET) -> dict:
        return {"Authorization": f"Bearer {secret}", "Content-Type": "application/json"}

    def test_missing_authorization(self, client):
        response = client.post("/webhook/olympia-pharmacy", json={"vendor_order_id": "x", "status": "shipped"})

        assert response.status_code == 401

    def test_wrong_secret(self, client):
        response = client.post(
            "/webhook/olympia-pharmacy",
            json={"vendor_order_id": "x", "status": "shipped"},
            headers=self.headers("nope"),
        )

        assert response.status_code == 403

    def test_invalid_json(self, client):
        response = client.post("/webhook/olympia-pharmacy", content=b"{not json", headers=self.headers())

        assert response.status_code == 400
        assert response.json()["message"] == "Invalid JSON payload"

    def test_missing_fields(self, client):
        response = client.post("/webhook/olympia-pharmacy", json={"status": "shipped"}, headers=self.headers())

        assert response.status_code == 400

    def test_tracking_update(self, client, db, make_user, make_order):
        order = make_order(make_user())
        shipping_order = ShippingOrder(order_id=order.id, pharmacy="olympia", pharmacy_order_id="OLY-100")
        db.add(shipping_order)
        db.commit()

        response = client.post(
            "/webhook/olympia-pharmacy",
            json={"vendor_order_id": "OLY-100", "status": "Shipped", "tracking_number": "1Z999", "carrier": "UPS"},
            headers=self.headers(),
        )

        assert response.status_code == 200
        db.refresh(shipping_order)
        assert shipping_order.status == "shipped"
        assert shipping_order.tracking_number == "1Z999"
        assert shipping_order.tracking_url == "https://www.ups.com/track?tracknum=1Z999"
        assert shipping_order.shipped_at is not None

    def test_unknown_vendor_order_is_acknowledged(self, client):
        response = client.post(
            "/webhook/olympia-pharmacy",
            json={"vendor_order_id": "OLY-404", "status": "shipped"},
            headers=self.headers(),
        )

        assert response.status_code == 200
