"""
Tests for refunds, refund requests and brand coverage.

Stripe is mocked at stripe.Refund.create and stripe.Transfer.create.
"""

from unittest.mock import MagicMock, patch

import pytest
import stripe

from patient_api import config
from patient_api.models_billing import ClinicBalance, RefundRequest

PAYMENT = {"stripe_payment_intent_id": "pi_123"}


def stripe_object(id: str, status: str = "succeeded"):
    obj = MagicMock()
    obj.id = id
    obj.status = status
    return obj


@pytest.fixture
def stripe_keys(monkeypatch):
    monkeypatch.setattr(config, "STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setattr(config, "STRIPE_PLATFORM_ACCOUNT_ID", "acct_platform")


@pytest.fixture
def brand_clinic(make_clinic):
    return make_clinic("Glow Health", stripe_account_id="acct_brand")


@pytest.fixture
def brand_user(make_user, brand_clinic):
    return make_user(role="brand", clinic=brand_clinic)


@pytest.fixture
def paid_order(make_order, make_user, brand_clinic):
    return make_order(make_user(), clinic=brand_clinic, payment=PAYMENT, total_amount=100.0, brand_amount=70.0)


class TestDirectRefund:
    def test_refund_with_brand_coverage(self, client, db, admin, auth_headers, stripe_keys, paid_order):
        with patch("stripe.Refund.create", return_value=stripe_object("re_1")) as refund_create, patch(
            "stripe.Transfer.create", return_value=stripe_object("tr_1")
        ) as transfer_create:
            response = client.post("/refunds", json={"orderId": paid_order.id}, headers=auth_headers(admin))

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["refund"] == {"id": "re_1", "amount": 100.0, "status": "succeeded"}
        assert data["brandCoverage"]["amount"] == 30.0
        assert data["brandCoverage"]["paid"] is True
        assert data["brandCoverage"]["transferId"] == "tr_1"

        refund_create.assert_called_once_with(payment_intent="pi_123", reverse_transfer=True)
        transfer_kwargs = transfer_create.call_args.kwargs
        assert transfer_kwargs["amount"] == 3000
        assert transfer_kwargs["destination"] == "acct_platform"
        assert transfer_kwargs["stripe_account"] == "acct_brand"

        db.refresh(paid_order)
        assert paid_order.status == "refunded"
        assert paid_order.payment.status == "refunded"
        balance = db.query(ClinicBalance).one()
        assert balance.status == "paid"
        assert balance.amount == 30.0

    def test_partial_refund_amount_in_cents(self, client, admin, auth_headers, stripe_keys, paid_order):
        with patch("stripe.Refund.create", return_value=stripe_object("re_2")) as refund_create, patch(
            "stripe.Transfer.create", return_value=stripe_object("tr_2")
        ):
            response = client.post(
                "/refunds", json={"orderId": paid_order.id, "amount": 25.5}, headers=auth_headers(admin)
            )

        assert response.status_code == 200
        refund_create.assert_called_once_with(payment_intent="pi_123", reverse_transfer=True, amount=2550)
        # Brand received more than the refund, nothing to cover
        assert response.json()["data"]["brandCoverage"]["amount"] < 0
        assert response.json()["data"]["brandCoverage"]["paid"] is False

    def test_retries_without_reverse_transfer(self, client, admin, auth_headers, stripe_keys, paid_order):
        no_transfer = stripe.InvalidRequestError(
            "This charge does not have an associated transfer to reverse.", "reverse_transfer"
        )
        with patch(
            "stripe.Refund.create", side_effect=[no_transfer, stripe_object("re_3")]
        ) as refund_create, patch("stripe.Transfer.create", return_value=stripe_object("tr_3")):
            response = client.post("/refunds", json={"orderId": paid_order.id}, headers=auth_headers(admin))

        assert response.status_code == 200
        assert refund_create.call_count == 2
        assert refund_create.call_args.kwargs == {"payment_intent": "pi_123"}

    def test_failed_transfer_becomes_pending_debt(self, client, db, admin, auth_headers, stripe_keys, paid_order):
        with patch("stripe.Refund.create", return_value=stripe_object("re_4")), patch(
            "stripe.Transfer.create", side_effect=stripe.StripeError("Insufficient funds")
        ):
            response = client.post("/refunds", json={"orderId": paid_order.id}, headers=auth_headers(admin))

        assert response.status_code == 200
        coverage = response.json()["data"]["brandCoverage"]
        assert coverage["paid"] is False
        assert coverage["balanceRecordId"] is not None

        balance = db.query(ClinicBalance).one()
        assert balance.status == "pending"
        assert balance.amount == -30.0
        assert balance.notes == "Transfer failed: Insufficient funds"

    def test_missing_platform_account_records_debt(
        self, client, db, admin, auth_headers, stripe_keys, paid_order, monkeypatch
    ):
        monkeypatch.setattr(config, "STRIPE_PLATFORM_ACCOUNT_ID", None)
        with patch("stripe.Refund.create", return_value=stripe_object("re_5")), patch(
            "stripe.Transfer.create"
        ) as transfer_create:
            response = client.post("/refunds", json={"orderId": paid_order.id}, headers=auth_headers(admin))

        assert response.status_code == 200
        transfer_create.assert_not_called()
        assert db.query(ClinicBalance).one().status == "pending"

    def test_stripe_refund_failure(self, client, db, admin, auth_headers, stripe_keys, paid_order):
        with patch("stripe.Refund.create", side_effect=stripe.APIConnectionError("unreachable")):
            response = client.post("/refunds", json={"orderId": paid_order.id}, headers=auth_headers(admin))

        assert response.status_code == 502
        db.refresh(paid_order)
        assert paid_order.status == "paid"

    def test_stripe_not_configured(self, client, admin, auth_headers, paid_order):
        response = client.post("/refunds", json={"orderId": paid_order.id}, headers=auth_headers(admin))

        assert response.status_code == 500
        assert response.json()["message"] == "Payment provider not configured"

    def test_order_without_payment(self, client, admin, auth_headers, stripe_keys, make_order, make_user):
        order = make_order(make_user())

        response = client.post("/refunds", json={"orderId": order.id}, headers=auth_headers(admin))

        assert response.status_code == 400

    def test_non_positive_amount(self, client, admin, auth_headers, paid_order):
        response = client.post(
            "/refunds", json={"orderId": paid_order.id, "amount": 0}, headers=auth_headers(admin)
        )

        assert response.status_code == 400

    def test_requires_admin(self, client, brand_user, auth_headers, paid_order):
        response = client.post("/refunds", json={"orderId": paid_order.id}, headers=auth_headers(brand_user))

        assert response.status_code == 403


class TestRefundRequests:
    def create(self, client, user, auth_headers, order_id, reason="Patient changed their mind"):
        return client.post(
            "/refund-requests", json={"orderId": order_id, "reason": reason}, headers=auth_headers(user)
        )

    def test_brand_creates_request(self, client, brand_user, auth_headers, paid_order):
        response = self.create(client, brand_user, auth_headers, paid_order.id)

        assert response.status_code == 201
        refund_request = response.json()["data"]["refundRequest"]
        assert refund_request["status"] == "pending"
        assert refund_request["amount"] == 100.0
        assert refund_request["brandCoverageAmount"] == 100.0

    def test_duplicate_pending_request(self, client, brand_user, auth_headers, paid_order):
        self.create(client, brand_user, auth_headers, paid_order.id)

        response = self.create(client, brand_user, auth_headers, paid_order.id)

        assert response.status_code == 400
        assert response.json()["message"] == "A refund request is already pending for this order"

    def test_already_refunded_order(self, client, brand_user, auth_headers, make_order, make_user, brand_clinic):
        order = make_order(make_user(), clinic=brand_clinic, payment=PAYMENT, status="refunded")

        response = self.create(client, brand_user, auth_headers, order.id)

        assert response.status_code == 400
        assert response.json()["message"] == "This order has already been refunded"

    def test_other_clinic_order_is_forbidden(self, client, make_user, make_clinic, auth_headers, paid_order):
        outsider = make_user(role="brand", clinic=make_clinic())

        response = self.create(client, outsider, auth_headers, paid_order.id)

        assert response.status_code == 403

    def test_unknown_order(self, client, brand_user, auth_headers):
        assert self.create(client, brand_user, auth_headers, "missing").status_code == 404

    def test_list_for_clinic_with_status_filter(self, client, brand_user, brand_clinic, auth_headers, paid_order):
        self.create(client, brand_user, auth_headers, paid_order.id)

        pending = client.get(
            f"/refund-requests/clinic/{brand_clinic.id}?status=pending", headers=auth_headers(brand_user)
        )
        denied = client.get(
            f"/refund-requests/clinic/{brand_clinic.id}?status=denied", headers=auth_headers(brand_user)
        )

        assert pending.status_code == 200
        assert len(pending.json()["data"]) == 1
        assert pending.json()["data"][0]["order"]["orderNumber"] == paid_order.order_number
        assert denied.json()["data"] == []

    def test_list_all_requires_admin(self, client, brand_user, admin, auth_headers, paid_order):
        self.create(client, brand_user, auth_headers, paid_order.id)

        assert client.get("/refund-requests/clinic/all", headers=auth_headers(brand_user)).status_code == 403
        response = client.get("/refund-requests/clinic/all?status=all", headers=auth_headers(admin))
        assert response.status_code == 200
        assert len(response.json()["data"]) == 1

    def test_list_other_clinic_is_forbidden(self, client, brand_user, make_clinic, auth_headers):
        other = make_clinic()

        response = client.get(f"/refund-requests/clinic/{other.id}", headers=auth_headers(brand_user))

        assert response.status_code == 403

    def test_request_for_order(self, client, brand_user, auth_headers, paid_order):
        empty = client.get(f"/refund-requests/order/{paid_order.id}", headers=auth_headers(brand_user))
        self.create(client, brand_user, auth_headers, paid_order.id)
        found = client.get(f"/refund-requests/order/{paid_order.id}", headers=auth_headers(brand_user))

        assert empty.json()["data"] is None
        assert found.json()["data"]["status"] == "pending"

    def test_approve_processes_refund(
        self, client, db, admin, brand_user, auth_headers, stripe_keys, paid_order
    ):
        request_id = self.create(client, brand_user, auth_headers, paid_order.id).json()["data"]["refundRequest"]["id"]

        with patch("stripe.Refund.create", return_value=stripe_object("re_9")) as refund_create, patch(
            "stripe.Transfer.create", return_value=stripe_object("tr_9")
        ):
            response = client.post(
                f"/refund-requests/{request_id}/approve",
                json={"reviewNotes": "Approved per policy"},
                headers=auth_headers(admin),
            )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["refundRequest"]["status"] == "approved"
        assert data["refund"]["id"] == "re_9"
        refund_create.assert_called_once_with(payment_intent="pi_123", reverse_transfer=True, amount=10000)

        refund_request = db.get(RefundRequest, request_id)
        db.refresh(refund_request)
        assert refund_request.stripe_refund_id == "re_9"
        assert refund_request.reviewed_by == admin.id
        assert refund_request.review_notes == "Approved per policy"

        again = client.post(f"/refund-requests/{request_id}/approve", headers=auth_headers(admin))
        assert again.status_code == 400
        assert again.json()["message"] == "Refund request has already been approved"

    def test_failed_stripe_refund_keeps_request_pending(
        self, client, db, admin, brand_user, auth_headers, stripe_keys, paid_order
    ):
        request_id = self.create(client, brand_user, auth_headers, paid_order.id).json()["data"]["refundRequest"]["id"]

        with patch("stripe.Refund.create", side_effect=stripe.APIError("stripe down")):
            response = client.post(f"/refund-requests/{request_id}/approve", headers=auth_headers(admin))

        assert response.status_code == 502
        refund_request = db.get(RefundRequest, request_id)
        db.refresh(refund_request)
        assert refund_request.status == "pending"

    def test_deny(self, client, db, admin, brand_user, auth_headers, paid_order):
        request_id = self.create(client, brand_user, auth_headers, paid_order.id).json()["data"]["refundRequest"]["id"]

        response = client.post(
            f"/refund-requests/{request_id}/deny",
            json={"reviewNotes": "Outside refund window"},
            headers=auth_headers(admin),
        )

        assert response.status_code == 200
        assert response.json()["data"]["refundRequest"]["reviewNotes"] == "Outside refund window"
        db.refresh(paid_order)
        assert paid_order.status == "paid"

    def test_brand_cannot_approve(self, client, brand_user, auth_headers, paid_order):
        request_id = self.create(client, brand_user, auth_headers, paid_order.id).json()["data"]["refundRequest"]["id"]

        response = client.post(f"/refund-requests/{request_id}/approve", headers=auth_headers(brand_user))

        assert response.status_code == 403

    def test_unknown_request(self, client, admin, auth_headers):
        response = client.post("/refund-requests/missing/deny", headers=auth_headers(admin))

        assert response.status_code == 404
