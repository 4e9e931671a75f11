"""
Tests for the deal endpoints.

Tests cover:
- Creation defaults (stage 0, currency "$")
- Required fields, including the falsy amount=0 case
- Listing order (newest id first)
- Partial updates, empty patches and unknown ids
- Deletion with message cascade
- Storage errors surfacing as 500
"""

import pytest


DEMO_PHONE = "79001234567"
OTHER_DEMO_PHONE = "79009876543"


def count_deals(client) -> int:
    return len(client.get("/api/deals").json()["deals"])


class TestCreateDeal:
    """Test POST /api/deals."""

    def test_create_deal_defaults(self, client):
        response = client.post(
            "/api/deals",
            json={"name": "Test", "amount": 100, "created_by": DEMO_PHONE},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        deal = data["deal"]
        assert isinstance(deal["id"], int)
        assert deal["id"] > 0
        assert deal["name"] == "Test"
        assert deal["amount"] == 100
        assert deal["currency"] == "$"
        assert deal["stage_index"] == 0
        assert deal["transfer"] == 0
        assert deal["buyer_phone"] is None
        assert deal["supplier_phone"] is None
        assert deal["created_by"] == DEMO_PHONE
        assert deal["created_at"] is not None

    def test_create_deal_with_currency(self, client):
        response = client.post(
            "/api/deals",
            json={"name": "Euro deal", "amount": 50.5, "currency": "€", "created_by": DEMO_PHONE},
        )

        assert response.status_code == 200
        assert response.json()["deal"]["currency"] == "€"
        assert response.json()["deal"]["amount"] == 50.5

    def test_empty_currency_falls_back(self, client):
        response = client.post(
            "/api/deals",
            json={"name": "Test", "amount": 1, "currency": "", "created_by": DEMO_PHONE},
        )

        assert response.json()["deal"]["currency"] == "$"

    def test_stage_index_input_ignored(self, client):
        response = client.post(
            "/api/deals",
            json={"name": "Test", "amount": 1, "created_by": DEMO_PHONE, "stage_index": 4},
        )

        assert response.status_code == 200
        assert response.json()["deal"]["stage_index"] == 0

    def test_numeric_creator_phone(self, client):
        response = client.post(
            "/api/deals",
            json={"name": "Test", "amount": 100, "created_by": 79001234567},
        )

        assert response.status_code == 200
        assert response.json()["deal"]["created_by"] == DEMO_PHONE

    @pytest.mark.parametrize("missing", ["name", "amount", "created_by"])
    def test_missing_required_field(self, client, missing):
        body = {"name": "Test", "amount": 100, "created_by": DEMO_PHONE}
        del body[missing]

        response = client.post("/api/deals", json=body)

        assert response.status_code == 400
        assert missing in response.json()["error"]
        assert count_deals(client) == 0

    def test_zero_amount_rejected(self, client):
        """amount=0 is treated as missing."""
        response = client.post(
            "/api/deals",
            json={"name": "Test", "amount": 0, "created_by": DEMO_PHONE},
        )

        assert response.status_code == 400
        assert count_deals(client) == 0

    def test_non_numeric_amount(self, client):
        response = client.post(
            "/api/deals",
            json={"name": "Test", "amount": "lots", "created_by": DEMO_PHONE},
        )

        assert response.status_code == 400
        assert count_deals(client) == 0

    def test_unknown_creator_is_storage_error(self, client):
        """created_by is a foreign key; the store rejects unknown users."""
        response = client.post(
            "/api/deals",
            json={"name": "Test", "amount": 100, "created_by": "70000000000"},
        )

        assert response.status_code == 500
        assert "FOREIGN KEY" in response.json()["error"]
        assert count_deals(client) == 0

    def test_storage_error_message_can_be_hidden(self, client, monkeypatch):
        from app.config import settings

        monkeypatch.setattr(settings, "EXPOSE_STORAGE_ERRORS", False)
        response = client.post(
            "/api/deals",
            json={"name": "Test", "amount": 100, "created_by": "70000000000"},
        )

        assert response.status_code == 500
        assert response.json() == {"error": "storage error"}


class TestListDeals:
    """Test GET /api/deals."""

    def test_empty(self, client):
        response = client.get("/api/deals")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "deals": []}

    def test_newest_first(self, client):
        for name in ("first", "second", "third"):
            client.post("/api/deals", json={"name": name, "amount": 1, "created_by": DEMO_PHONE})

        deals = client.get("/api/deals").json()["deals"]

        assert [d["name"] for d in deals] == ["third", "second", "first"]
        ids = [d["id"] for d in deals]
        assert ids == sorted(ids, reverse=True)


class TestUpdateDeal:
    """Test PUT /api/deals/{id}."""

    def test_update_stage_only(self, client, deal):
        response = client.put(f"/api/deals/{deal['id']}", json={"stage_index": 2})

        assert response.status_code == 200
        updated = response.json()["deal"]
        assert updated["stage_index"] == 2
        assert updated["name"] == deal["name"]
        assert updated["amount"] == deal["amount"]
        assert updated["currency"] == deal["currency"]

    def test_update_several_fields(self, client, deal):
        response = client.put(
            f"/api/deals/{deal['id']}",
            json={
                "name": "Renamed",
                "amount": 250,
                "currency": "₽",
                "buyer_phone": DEMO_PHONE,
                "supplier_phone": OTHER_DEMO_PHONE,
            },
        )

        assert response.status_code == 200
        updated = response.json()["deal"]
        assert updated["name"] == "Renamed"
        assert updated["amount"] == 250
        assert updated["currency"] == "₽"
        assert updated["buyer_phone"] == DEMO_PHONE
        assert updated["supplier_phone"] == OTHER_DEMO_PHONE
        assert updated["stage_index"] == 0

    def test_zero_stage_is_applied(self, client, deal):
        """Presence, not truthiness, decides which fields are written."""
        client.put(f"/api/deals/{deal['id']}", json={"stage_index": 3})
        response = client.put(f"/api/deals/{deal['id']}", json={"stage_index": 0})

        assert response.status_code == 200
        assert response.json()["deal"]["stage_index"] == 0

    def test_explicit_null_clears_field(self, client, deal):
        client.put(f"/api/deals/{deal['id']}", json={"buyer_phone": DEMO_PHONE})
        response = client.put(f"/api/deals/{deal['id']}", json={"buyer_phone": None})

        assert response.status_code == 200
        assert response.json()["deal"]["buyer_phone"] is None

    def test_phone_references_not_validated(self, client, deal):
        response = client.put(f"/api/deals/{deal['id']}", json={"supplier_phone": "nobody"})

        assert response.status_code == 200
        assert response.json()["deal"]["supplier_phone"] == "nobody"

    def test_stage_range_not_enforced(self, client, deal):
        response = client.put(f"/api/deals/{deal['id']}", json={"stage_index": -7})

        assert response.status_code == 200
        assert response.json()["deal"]["stage_index"] == -7

    def test_empty_patch(self, client, deal):
        response = client.put(f"/api/deals/{deal['id']}", json={})

        assert response.status_code == 400
        assert "error" in response.json()

    def test_unknown_fields_only_is_empty_patch(self, client, deal):
        response = client.put(f"/api/deals/{deal['id']}", json={"transfer": 1})

        assert response.status_code == 400

    def test_unknown_deal(self, client):
        response = client.put("/api/deals/9999", json={"name": "Ghost"})

        assert response.status_code == 404
        assert "error" in response.json()

    def test_empty_patch_checked_before_existence(self, client):
        response = client.put("/api/deals/9999", json={})

        assert response.status_code == 400

    def test_null_name_violates_constraint(self, client, deal):
        response = client.put(f"/api/deals/{deal['id']}", json={"name": None})

        assert response.status_code == 500
        assert "NOT NULL" in response.json()["error"]

    def test_non_integer_id(self, client):
        response = client.put("/api/deals/abc", json={"name": "x"})

        assert response.status_code == 400


class TestDeleteDeal:
    """Test DELETE /api/deals/{id}."""

    def test_delete_deal(self, client, deal):
        response = client.delete(f"/api/deals/{deal['id']}")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "id": deal["id"]}
        assert count_deals(client) == 0

    def test_delete_removes_messages(self, client, deal):
        for text in ("hello", "anyone?"):
            client.post(
                "/api/messages",
                json={"deal_id": deal["id"], "sender": DEMO_PHONE, "text": text},
            )
        assert len(client.get(f"/api/messages/{deal['id']}").json()["messages"]) == 2

        client.delete(f"/api/deals/{deal['id']}")

        response = client.get(f"/api/messages/{deal['id']}")
        assert response.status_code == 200
        assert response.json()["messages"] == []

    def test_repeated_delete(self, client, deal):
        assert client.delete(f"/api/deals/{deal['id']}").status_code == 200

        response = client.delete(f"/api/deals/{deal['id']}")

        assert response.status_code == 404
        assert "error" in response.json()

    def test_delete_leaves_other_deals(self, client, deal):
        other = client.post(
            "/api/deals",
            json={"name": "Other", "amount": 5, "created_by": OTHER_DEMO_PHONE},
        ).json()["deal"]
        client.post(
            "/api/messages",
            json={"deal_id": other["id"], "sender": OTHER_DEMO_PHONE, "text": "keep me"},
        )

        client.delete(f"/api/deals/{deal['id']}")

        deals = client.get("/api/deals").json()["deals"]
        assert [d["id"] for d in deals] == [other["id"]]
        assert len(client.get(f"/api/messages/{other['id']}").json()["messages"]) == 1
