"""
API route tests.

Verifies:
- Missing or unknown identity returns 401
- Roles without the permission get 403
- Domain errors map to 400 / 404 / 409 with an actionable body
- The request -> approval -> fulfillment -> invoice flow over HTTP
"""

import pytest

from conftest import headers
from salesflow.services import datastore


# =============================================================================
# SYSTEM AND IDENTITY
# =============================================================================


class TestSystem:

    def test_health(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json["status"] == "healthy"
        assert resp.json["checks"]["database"]["status"] == "healthy"

    def test_me(self, client, ds_manager):
        resp = client.get("/api/me", headers=headers(ds_manager))
        assert resp.status_code == 200
        assert resp.json["identity"]["role"] == "DirectShowroomManager"
        assert resp.json["can_sell"] is True
        assert resp.json["approves_roles"] == ["DirectShowroomStaff"]
        assert "MANAGE_CATALOG" in resp.json["permissions"]


class TestIdentityRequired:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/me"),
            ("GET", "/api/requests"),
            ("POST", "/api/requests"),
            ("GET", "/api/requests/pending"),
            ("GET", "/api/invoices"),
            ("POST", "/api/invoices"),
            ("GET", "/api/catalog/inventory"),
            ("GET", "/api/activities"),
            ("POST", "/api/admin/reconcile"),
        ],
    )
    def test_missing_identity(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_unknown_user(self, client, db_session):
        resp = client.get("/api/me", headers={"X-User-Id": "nobody"})
        assert resp.status_code == 401

    def test_deactivated_user(self, client, db_session, rep):
        datastore.update_at(f"users/{rep.user_id}", {"is_active": False})
        resp = client.get("/api/me", headers=headers(rep))
        assert resp.status_code == 401


class TestPermissionDenied:

    def test_rep_cannot_list_pending(self, client, rep):
        resp = client.get("/api/requests/pending", headers=headers(rep))
        assert resp.status_code == 403
        assert resp.json["required_permission"] == "APPROVE_REQUESTS"

    def test_director_cannot_invoice(self, client, director):
        resp = client.post("/api/invoices", json={}, headers=headers(director))
        assert resp.status_code == 403

    def test_rep_cannot_reconcile(self, client, rep):
        resp = client.post("/api/admin/reconcile", headers=headers(rep))
        assert resp.status_code == 403

    def test_rep_cannot_adjust_stock(self, client, stocked, rep):
        resp = client.post(f"/api/catalog/inventory/{stocked[0]}/adjust", json={"delta": 1}, headers=headers(rep))
        assert resp.status_code == 403


# =============================================================================
# REQUEST WORKFLOW
# =============================================================================


class TestRequestFlow:

    def _create(self, client, who, quantity=5):
        resp = client.post(
            "/api/requests",
            json={"items": [{"product_id": "P1", "quantity": quantity}], "priority": "high"},
            headers=headers(who),
        )
        assert resp.status_code == 201, resp.json
        return resp.json

    def test_create_validation(self, client, products, rep):
        resp = client.post("/api/requests", json={"items": []}, headers=headers(rep))
        assert resp.status_code == 400
        assert resp.json["type"] == "ValidationError"

    def test_full_flow(self, client, stocked, rep, head_ops, director):
        created = self._create(client, rep)
        assert created["status"] == "pending"

        pending = client.get("/api/requests/pending", headers=headers(head_ops)).json["requests"]
        assert [r["id"] for r in pending] == [created["id"]]

        resp = client.post(f"/api/requests/{created['id']}/approve", json={"notes": "ok"}, headers=headers(head_ops))
        assert resp.status_code == 200
        assert resp.json["approved_by_user_id"] == head_ops.user_id

        resp = client.post(f"/api/requests/{created['id']}/reject", json={"reason": "late"}, headers=headers(director))
        assert resp.status_code == 409
        assert resp.json["type"] == "InvalidStateError"

        resp = client.post(f"/api/requests/{created['id']}/fulfill", json={}, headers=headers(rep))
        assert resp.status_code == 200
        assert resp.json["request"]["status"] == "completed"
        inventory_ids = resp.json["inventory_ids"]
        assert inventory_ids == [stocked[0]]

        again = client.post(f"/api/requests/{created['id']}/fulfill", json={}, headers=headers(rep))
        assert again.status_code == 200
        assert again.json["inventory_ids"] == inventory_ids

        availability = client.get("/api/catalog/products/P1/availability?location=DS-SHOWROOM", headers=headers(rep))
        assert availability.json["available"] == 8

        summary = client.get(f"/api/requests/{created['id']}", headers=headers(rep)).json
        assert [e["type"] for e in summary["timeline"]] == [
            "request.created",
            "request.approved",
            "request.fulfilled",
        ]

    def test_fulfill_pending_conflicts(self, client, products, rep):
        created = self._create(client, rep)
        resp = client.post(f"/api/requests/{created['id']}/fulfill", json={}, headers=headers(rep))
        assert resp.status_code == 409

    def test_out_of_scope_approver(self, client, products, rep, ds_manager):
        created = self._create(client, rep)
        resp = client.post(f"/api/requests/{created['id']}/approve", json={}, headers=headers(ds_manager))
        assert resp.status_code == 403

    def test_unknown_request(self, client, head_ops):
        resp = client.post("/api/requests/missing/approve", json={}, headers=headers(head_ops))
        assert resp.status_code == 404

    def test_history_and_search(self, client, products, rep):
        created = self._create(client, rep)
        mine = client.get("/api/requests", headers=headers(rep)).json["requests"]
        assert [r["id"] for r in mine] == [created["id"]]

        found = client.get(f"/api/requests?q={created['request_number']}", headers=headers(rep)).json["requests"]
        assert [r["id"] for r in found] == [created["id"]]


# =============================================================================
# INVOICES
# =============================================================================


class TestInvoiceRoutes:

    def _invoice(self, client, who, items, **extra):
        body = {"customer": {"name": "Perera Stores"}, "items": items}
        body.update(extra)
        return client.post("/api/invoices", json=body, headers=headers(who))

    def test_insufficient_stock(self, client, stocked, rep):
        resp = self._invoice(client, rep, [{"product_id": "P1", "quantity": 5}])
        assert resp.status_code == 409
        assert resp.json["details"] == {"product_id": "P1", "requested": 5, "available": 3}

        listing = client.get("/api/invoices", headers=headers(rep)).json["invoices"]
        assert listing == []

    def test_create_and_replay(self, client, stocked, rep):
        first = client.post(
            "/api/invoices",
            json={
                "customer": {"name": "Perera Stores"},
                "items": [{"product_id": "P1", "quantity": 2}],
                "discount_bps": 1000,
                "tax_rate_bps": 1000,
            },
            headers={**headers(rep), "Idempotency-Key": "till-1-0042"},
        )
        assert first.status_code == 201
        assert first.json["total_cents"] == 19800
        assert first.json["payment_status"] == "paid"

        replay = client.post(
            "/api/invoices",
            json={"customer": {"name": "Perera Stores"}, "items": [{"product_id": "P1", "quantity": 2}]},
            headers={**headers(rep), "Idempotency-Key": "till-1-0042"},
        )
        assert replay.json["id"] == first.json["id"]

        availability = client.get("/api/catalog/products/P1/availability?location=DS-SHOWROOM", headers=headers(rep))
        assert availability.json["available"] == 1

    def test_credit_payments(self, client, stocked, rep):
        invoice = self._invoice(client, rep, [{"product_id": "P2", "quantity": 2}], payment_method="credit").json

        resp = client.post(f"/api/invoices/{invoice['id']}/payments", json={}, headers=headers(rep))
        assert resp.status_code == 400

        resp = client.post(f"/api/invoices/{invoice['id']}/payments", json={"amount_cents": 99999}, headers=headers(rep))
        assert resp.status_code == 400

        resp = client.post(f"/api/invoices/{invoice['id']}/payments", json={"amount_cents": 9000}, headers=headers(rep))
        assert resp.status_code == 200
        assert resp.json["payment_status"] == "paid"

        resp = client.post(f"/api/invoices/{invoice['id']}/payments", json={"amount_cents": 1}, headers=headers(rep))
        assert resp.status_code == 409

        detail = client.get(f"/api/invoices/{invoice['id']}", headers=headers(rep)).json
        assert [p["amount_cents"] for p in detail["payments"]] == [9000]

    def test_payment_idempotency_header(self, client, stocked, rep):
        invoice = self._invoice(client, rep, [{"product_id": "P2", "quantity": 2}], payment_method="credit").json
        keyed = {**headers(rep), "Idempotency-Key": "pay-7"}

        for _ in range(2):
            resp = client.post(f"/api/invoices/{invoice['id']}/payments", json={"amount_cents": 3000}, headers=keyed)
            assert resp.status_code == 200
            assert resp.json["remaining_cents"] == 6000

        detail = client.get(f"/api/invoices/{invoice['id']}", headers=headers(rep)).json
        assert [p["amount_cents"] for p in detail["payments"]] == [3000]

    def test_quote_then_finalize(self, client, stocked, rep):
        quote = self._invoice(client, rep, [{"product_id": "P2", "quantity": 4}], mode="quote").json
        assert quote["status"] == "draft"

        resp = client.post(f"/api/invoices/{quote['id']}/finalize", headers=headers(rep))
        assert resp.status_code == 200
        assert resp.json["status"] == "completed"

        resp = client.post(f"/api/invoices/{quote['id']}/finalize", headers=headers(rep))
        assert resp.status_code == 409

    def test_summary(self, client, stocked, rep):
        self._invoice(client, rep, [{"product_id": "P2", "quantity": 1}], payment_method="credit")
        stats = client.get("/api/invoices/summary?mine=1", headers=headers(rep)).json
        assert stats["invoice_count"] == 1
        assert stats["outstanding_cents"] == 4500

    def test_unknown_invoice(self, client, rep):
        assert client.get("/api/invoices/missing", headers=headers(rep)).status_code == 404


# =============================================================================
# CATALOG, ACTIVITY, ADMIN
# =============================================================================


class TestCatalogRoutes:

    def test_inventory_defaults_to_caller_location(self, client, stocked, admin, distributor_rep):
        client.put(
            "/api/catalog/inventory",
            json={"product_id": "P1", "location": "KANDY", "quantity": 9},
            headers=headers(admin),
        )
        kandy = client.get("/api/catalog/inventory", headers=headers(distributor_rep)).json["inventory"]
        assert [(r["product_id"], r["quantity"], r["status"]) for r in kandy] == [("P1", 9, "low")]

        everything = client.get("/api/catalog/inventory?location=all", headers=headers(admin)).json["inventory"]
        assert len(everything) == 3

    def test_upsert_validation(self, client, products, admin):
        resp = client.put("/api/catalog/inventory", json={"product_id": "P1"}, headers=headers(admin))
        assert resp.status_code == 400

        resp = client.put(
            "/api/catalog/inventory",
            json={"product_id": "P1", "location": "GALLE", "quantity": 1, "expiry_date": "31/12/2027"},
            headers=headers(admin),
        )
        assert resp.status_code == 400

    def test_adjust_negative_conflicts(self, client, stocked, ds_manager):
        resp = client.post(
            f"/api/catalog/inventory/{stocked[0]}/adjust",
            json={"delta": -4},
            headers=headers(ds_manager),
        )
        assert resp.status_code == 409
        assert resp.json["type"] == "NegativeStockError"

        resp = client.post(
            f"/api/catalog/inventory/{stocked[0]}/adjust",
            json={"delta": -1, "note": "breakage"},
            headers=headers(ds_manager),
        )
        assert resp.status_code == 200
        assert resp.json["quantity"] == 2

        movements = client.get(f"/api/catalog/inventory/{stocked[0]}/movements", headers=headers(ds_manager)).json
        assert [m["quantity_delta"] for m in movements["movements"]] == [3, -1]

    def test_create_product(self, client, db_session, head_ops, rep):
        resp = client.post("/api/catalog/products", json={"name": "Clove Oil", "price_cents": 7000}, headers=headers(head_ops))
        assert resp.status_code == 201
        resp = client.post("/api/catalog/products", json={"name": "Clove Oil"}, headers=headers(rep))
        assert resp.status_code == 403


class TestActivityAndAdmin:

    def test_activity_feed(self, client, products, rep, ds_manager):
        client.post("/api/requests", json={"items": [{"product_id": "P1", "quantity": 1}]}, headers=headers(rep))
        resp = client.get("/api/activities?type=request.created", headers=headers(ds_manager))
        assert resp.status_code == 200
        assert [a["actor"]["user_id"] for a in resp.json["activities"]] == [rep.user_id]

    def test_reconcile_empty(self, client, db_session, admin):
        assert client.get("/api/admin/intents", headers=headers(admin)).json == {"intents": []}
        resp = client.post("/api/admin/reconcile", headers=headers(admin))
        assert resp.status_code == 200
        assert resp.json == {"checked": 0, "completed": [], "failed": []}
