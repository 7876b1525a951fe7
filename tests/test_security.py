"""
Tests for PHI masking, security headers, tokens and rate limiting.
"""

import logging
import time
import uuid
from datetime import timedelta
from unittest.mock import MagicMock

import redis
from starlette.requests import Request

from patient_api import config, rate_limiter
from patient_api.phi import REDACTED, PHIRedactionFilter, mask_email, mask_phi, mask_phone
from patient_api.rate_limiter import check_rate_limit, client_ip
from patient_api.security_headers import get_security_headers_dict
from patient_api.security_utils import create_jwt_token, hash_password, verify_jwt_token, verify_password


class TestPHIMasking:
    def test_mask_email(self):
        assert mask_email("jane.doe@example.com") == "j***@***.com"
        assert mask_email("not-an-email") == "***@***.***"

    def test_mask_phone(self):
        assert mask_phone("(512) 555-0100") == "***-***-0100"
        assert mask_phone("12") == "***-***-****"

    def test_mask_phi_nested(self):
        payload = {
            "sessions": [
                {
                    "firstName": "Jane",
                    "lastName": None,
                    "email": "jane@example.com",
                    "phoneNumber": "5125550100",
                    "converted": True,
                    "address": "1 Main St",
                }
            ]
        }

        masked = mask_phi(payload)

        session = masked["sessions"][0]
        assert session == {
            "firstName": REDACTED,
            "lastName": None,
            "email": "j***@***.com",
            "phoneNumber": "***-***-0100",
            "converted": True,
            "address": REDACTED,
        }
        assert payload["sessions"][0]["firstName"] == "Jane"

    def test_log_filter_redacts_contact_details(self):
        record = logging.LogRecord(
            "test", logging.INFO, __file__, 1, "Lookup for %s at %s", ("jane@example.com", "512-555-0100"), None
        )

        assert PHIRedactionFilter().filter(record) is True
        assert record.getMessage() == "Lookup for j***@***.com at ***-***-0100"


class TestSecurityHeaders:
    def test_headers_outside_production(self):
        headers = get_security_headers_dict(production=False)

        assert headers["X-Frame-Options"] == "DENY"
        assert headers["Cache-Control"] == "no-store"
        assert "Strict-Transport-Security" not in headers

    def test_hsts_in_production(self):
        assert "Strict-Transport-Security" in get_security_headers_dict(production=True)

    def test_responses_carry_headers(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["Referrer-Policy"] == "no-referrer"


class TestTokens:
    def test_password_round_trip(self):
        hashed = hash_password("Password123!")

        assert verify_password("Password123!", hashed)
        assert not verify_password("wrong", hashed)
        assert not verify_password("Password123!", "not-a-hash")

    def test_expired_token(self):
        token = create_jwt_token({"sub": "u1"}, expires_delta=timedelta(seconds=-1))

        assert verify_jwt_token(token) is None

    def test_tampered_token(self):
        header, _, signature = create_jwt_token({"sub": "u1"}).split(".")
        forged_payload = create_jwt_token({"sub": "admin"}).split(".")[1]

        assert verify_jwt_token(f"{header}.{forged_payload}.{signature}") is None

    def test_unknown_user_token(self, client):
        token = create_jwt_token({"sub": "ghost"})

        response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401


class TestRateLimit:
    def redis_stub(self):
        client = MagicMock()
        client.get.return_value = None
        client.ttl.return_value = -2
        return client

    def test_blocks_after_limit(self):
        key = f"test:{uuid.uuid4()}"
        client = self.redis_stub()

        results = [check_rate_limit(key, 3, 60, client)[0] for _ in range(4)]

        assert results == [True, True, True, False]

    def test_resumes_window_stored_in_redis(self):
        key = f"test:{uuid.uuid4()}"
        client = self.redis_stub()
        client.get.return_value = b"3"
        client.ttl.return_value = 30

        allowed, count, ttl = check_rate_limit(key, 3, 60, client)

        assert allowed is False
        assert count == 3
        assert 0 < ttl <= 30

    def test_redis_errors_fall_back_to_memory(self):
        key = f"test:{uuid.uuid4()}"
        client = self.redis_stub()
        client.get.side_effect = redis.ConnectionError("down")
        client.set.side_effect = redis.ConnectionError("down")

        allowed, count, _ = check_rate_limit(key, 5, 60, client)

        assert allowed is True
        assert count == 1

    def test_expired_windows_are_evicted(self, monkeypatch):
        now = int(time.time())
        monkeypatch.setattr(rate_limiter, "_last_cleanup", 0)
        monkeypatch.setitem(rate_limiter._windows, "test:stale", {"count": 5, "reset_time": now - 1, "last_sync": now})
        monkeypatch.setitem(rate_limiter._windows, "test:live", {"count": 1, "reset_time": now + 60, "last_sync": now})

        check_rate_limit(f"test:{uuid.uuid4()}", 3, 60, self.redis_stub())

        assert "test:stale" not in rate_limiter._windows
        assert "test:live" in rate_limiter._windows


def make_request(peer: str, forwarded: str = None) -> Request:
    headers = [(b"x-forwarded-for", forwarded.encode())] if forwarded else []
    return Request({"type": "http", "headers": headers, "client": (peer, 50000)})


class TestClientIP:
    def test_forwarded_header_ignored_from_untrusted_peer(self, monkeypatch):
        monkeypatch.setattr(config, "TRUSTED_PROXY_IPS", set())

        assert client_ip(make_request("198.51.100.4", "203.0.113.9")) == "198.51.100.4"

    def test_trusted_proxy_uses_nearest_untrusted_hop(self, monkeypatch):
        monkeypatch.setattr(config, "TRUSTED_PROXY_IPS", {"10.0.0.2", "10.0.0.3"})

        request = make_request("10.0.0.2", "1.2.3.4, 203.0.113.9, 10.0.0.3")

        assert client_ip(request) == "203.0.113.9"

    def test_trusted_proxy_without_header(self, monkeypatch):
        monkeypatch.setattr(config, "TRUSTED_PROXY_IPS", {"10.0.0.2"})

        assert client_ip(make_request("10.0.0.2")) == "10.0.0.2"
