"""Security tests: validators, token handling, role enforcement, settings guards."""

from datetime import timedelta
from decimal import Decimal

import pytest

from tabsettle.core.config import Settings
from tabsettle.core.rbac import Caller, UserRole
from tabsettle.core.security import create_access_token, decode_access_token
from tabsettle.models.validators import non_negative, percentage, positive


# ============== Validator Tests ==============

class TestNonNegative:
    def test_zero_allowed(self):
        assert non_negative("qty", Decimal("0")) == Decimal("0")

    def test_negative_rejected(self):
        with pytest.raises(ValueError, match="cannot be negative"):
            non_negative("subtotal", Decimal("-1"))

    def test_none_allowed(self):
        assert non_negative("qty", None) is None


class TestPositive:
    def test_zero_rejected(self):
        with pytest.raises(ValueError, match="must be positive"):
            positive("quantity", 0)

    def test_positive_allowed(self):
        assert positive("quantity", 3) == 3


class TestPercentage:
    def test_bounds(self):
        assert percentage("rate", 0) == 0
        assert percentage("rate", Decimal("100")) == Decimal("100")

    def test_over_100_rejected(self):
        with pytest.raises(ValueError, match="between 0 and 100"):
            percentage("rate", Decimal("100.5"))


# ============== Token Tests ==============

class TestTokens:
    def test_round_trip(self, settings):
        token = create_access_token({"sub": "12", "role": "staff"}, settings=settings)
        payload = decode_access_token(token, settings)
        assert payload["sub"] == "12"
        assert payload["role"] == "staff"
        assert "jti" in payload

    def test_expired(self, settings):
        token = create_access_token(
            {"sub": "12", "role": "staff"}, settings=settings, expires_delta=timedelta(seconds=-10)
        )
        assert decode_access_token(token, settings) is None

    def test_missing_subject(self, settings):
        token = create_access_token({"role": "staff"}, settings=settings)
        assert decode_access_token(token, settings) is None

    def test_garbage(self, settings):
        assert decode_access_token("invalid.token.here", settings) is None


class TestRoles:
    def test_hierarchy(self):
        assert Caller(1, UserRole.OWNER).has_role(UserRole.MANAGER)
        assert Caller(1, UserRole.MANAGER).has_role(UserRole.STAFF)
        assert not Caller(1, UserRole.STAFF).has_role(UserRole.MANAGER)


class TestInvalidToken:
    """Invalid or incomplete tokens are rejected by every route."""

    def test_tampered_token(self, client):
        headers = {"Authorization": "Bearer invalid.token.here"}
        assert client.get("/api/v1/orders", headers=headers).status_code == 401

    def test_missing_role(self, client, settings):
        token = create_access_token({"sub": "1"}, settings=settings)
        resp = client.get("/api/v1/orders", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_unknown_role(self, client, settings):
        token = create_access_token({"sub": "1", "role": "guest"}, settings=settings)
        resp = client.get("/api/v1/orders", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_non_numeric_subject(self, client, settings):
        token = create_access_token({"sub": "alice", "role": "staff"}, settings=settings)
        resp = client.get("/api/v1/orders", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401


# ============== Settings Tests ==============

class TestProductionSettings:
    def test_default_secret_refused(self):
        with pytest.raises(ValueError, match="default SECRET_KEY"):
            Settings(debug=False, secret_key="change-me-in-production")

    def test_short_secret_refused(self):
        with pytest.raises(ValueError, match="at least 32 characters"):
            Settings(debug=False, secret_key="short")

    def test_tax_rate_bounds(self):
        with pytest.raises(ValueError):
            Settings(tax_rate_percent=Decimal("120"))

    def test_cors_list(self):
        settings = Settings(cors_origins="http://a.test, http://b.test")
        assert settings.cors_origins_list == ["http://a.test", "http://b.test"]
