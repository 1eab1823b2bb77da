"""Tests for the catalog endpoints."""

from decimal import Decimal


class TestPackages:
    def test_list_active(self, client, auth_headers, db_session, buffet_package, premium_package):
        premium_package.is_active = False
        db_session.commit()

        response = client.get("/api/v1/catalog/packages", headers=auth_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["name"] == "Lau Nam"
        assert Decimal(data["items"][0]["price"]) == Decimal("199000")

    def test_get(self, client, auth_headers, buffet_package):
        response = client.get(f"/api/v1/catalog/packages/{buffet_package.id}", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["duration_minutes"] == 90

    def test_get_missing(self, client, auth_headers):
        response = client.get("/api/v1/catalog/packages/999", headers=auth_headers)
        assert response.status_code == 404


class TestServices:
    def test_filter_by_category(self, client, auth_headers, coke, beer, massage):
        response = client.get("/api/v1/catalog/services?category=drink", headers=auth_headers)
        assert response.status_code == 200
        names = [s["name"] for s in response.json()["items"]]
        assert names == ["Beer", "Coke"]

    def test_commission_rate_is_exposed(self, client, auth_headers, massage):
        response = client.get(f"/api/v1/catalog/services/{massage.id}", headers=auth_headers)
        assert Decimal(response.json()["commission_rate"]) == Decimal("5")

    def test_requires_token(self, client):
        assert client.get("/api/v1/catalog/services").status_code == 401
