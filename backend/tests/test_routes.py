# Overview: Pytest coverage for the HTTP API: tenant header, status codes and response shapes.

from datetime import date

import pytest

from cylinder_ledger.models import RecomputeTask


def _body(driver, products, **overrides):
    body = {
        "driver_id": driver.id,
        "customer_name": "Rahim Store",
        "payment_type": "CREDIT",
        "sale_date": "2026-04-10",
        "discount_cents": 10000,
        "cash_deposited_cents": 100000,
        "cylinder_deposits": {"12L": 2},
        "items": [
            {"product_id": products["A"].id, "package_qty": 2, "refill_qty": 3,
             "package_price_cents": 50000, "refill_price_cents": 30000},
            {"product_id": products["B"].id, "refill_qty": 1, "refill_price_cents": 30000},
        ],
    }
    body.update(overrides)
    return body


class TestTenantHeader:
    @pytest.mark.parametrize("value", [None, "", "abc"])
    def test_missing_or_malformed_header(self, client, db_session, value):
        headers = {} if value is None else {"X-Org-Id": value}
        response = client.get("/api/receivables/summary", headers=headers)
        assert response.status_code == 401

    def test_unknown_org(self, client, db_session):
        response = client.get("/api/receivables/summary", headers={"X-Org-Id": "999"})
        assert response.status_code == 401

    def test_other_tenant_driver_is_not_found(self, client, db_session, org_a, driver_b, headers):
        response = client.get(f"/api/receivables/drivers/{driver_b.id}", headers=headers)
        assert response.status_code == 404


class TestSettlementRoutes:
    def test_submit_returns_created(self, client, db_session, driver, stocked, headers):
        response = client.post("/api/settlements", json=_body(driver, stocked), headers=headers)
        assert response.status_code == 201
        data = response.get_json()
        assert data["summary"]["cash_receivable_cents"] == 110000
        assert data["summary"]["cylinder_receivables_by_size"] == {"12L": 2}
        assert len(data["sale_records"]) == 3
        assert data["recompute_task_id"] is not None
        assert "_key" not in data

    def test_actor_header_recorded(self, client, db_session, driver, stocked, headers):
        response = client.post(
            "/api/settlements", json=_body(driver, stocked), headers={**headers, "X-Actor": "cashier-2"},
        )
        assert response.get_json()["settlement"]["created_by"] == "cashier-2"

    def test_validation_error_is_400_with_field(self, client, db_session, driver, stocked, headers):
        response = client.post(
            "/api/settlements", json=_body(driver, stocked, discount_cents=-5), headers=headers,
        )
        assert response.status_code == 400
        assert response.get_json()["details"]["field"] == "discount_cents"

    def test_insufficient_inventory_is_409(self, client, db_session, driver, products, headers):
        response = client.post("/api/settlements", json=_body(driver, products), headers=headers)
        assert response.status_code == 409
        items = response.get_json()["details"]["items"]
        assert {i["product_id"] for i in items} == {products["A"].id, products["B"].id}

    def test_unknown_product_is_404(self, client, db_session, driver, stocked, headers):
        body = _body(driver, stocked, items=[{"product_id": 9999, "package_qty": 1, "package_price_cents": 100}])
        response = client.post("/api/settlements", json=body, headers=headers)
        assert response.status_code == 404

    def test_non_json_body_is_400(self, client, db_session, headers):
        response = client.post("/api/settlements", data="nope", headers=headers)
        assert response.status_code == 400

    def test_get_settlement(self, client, db_session, driver, stocked, headers, org_b):
        created = client.post("/api/settlements", json=_body(driver, stocked), headers=headers).get_json()
        sid = created["settlement_id"]

        response = client.get(f"/api/settlements/{sid}", headers=headers)
        assert response.status_code == 200
        assert len(response.get_json()["customer_receivables"]) == 2

        other = client.get(f"/api/settlements/{sid}", headers={"X-Org-Id": str(org_b.id)})
        assert other.status_code == 404


class TestReceivableRoutes:
    def test_snapshot_after_settlement(self, client, db_session, driver, stocked, headers):
        client.post("/api/settlements", json=_body(driver, stocked), headers=headers)

        response = client.get(f"/api/receivables/drivers/{driver.id}", headers=headers)
        snap = response.get_json()["snapshot"]
        assert snap["date"] == "2026-04-10"
        assert snap["total_cash_receivables_cents"] == 110000
        assert snap["total_cylinder_receivables"] == 2

        before = client.get(f"/api/receivables/drivers/{driver.id}?date=2026-04-09", headers=headers)
        assert before.get_json()["snapshot"]["total_cash_receivables_cents"] == 0

    def test_bad_date_is_400(self, client, db_session, driver, headers):
        response = client.get(f"/api/receivables/drivers/{driver.id}?date=10/04/2026", headers=headers)
        assert response.status_code == 400

    def test_history(self, client, db_session, driver, stocked, headers):
        client.post("/api/settlements", json=_body(driver, stocked), headers=headers)
        client.post("/api/settlements", json=_body(driver, stocked, sale_date="2026-04-11"), headers=headers)

        response = client.get(
            f"/api/receivables/drivers/{driver.id}/history?start_date=2026-04-11", headers=headers,
        )
        history = response.get_json()["history"]
        assert [h["date"] for h in history] == ["2026-04-11"]

    def test_summary_totals(self, client, db_session, driver, stocked, headers):
        client.post("/api/settlements", json=_body(driver, stocked), headers=headers)
        data = client.get("/api/receivables/summary", headers=headers).get_json()
        assert data["total_cash_receivables_cents"] == 110000
        assert [d["driver_id"] for d in data["drivers"]] == [driver.id]

    def test_customers(self, client, db_session, driver, stocked, headers):
        client.post("/api/settlements", json=_body(driver, stocked), headers=headers)
        data = client.get("/api/receivables/customers", headers=headers).get_json()
        assert data["customers"][0]["customer_name"] == "Rahim Store"
        assert data["customers"][0]["cylinder_receivables_by_size"] == {"12L": 2}

        bad = client.get("/api/receivables/customers?status=LOST", headers=headers)
        assert bad.status_code == 400

    def test_cylinder_sizes(self, client, db_session, driver, stocked, headers):
        client.post("/api/settlements", json=_body(driver, stocked), headers=headers)
        data = client.get("/api/receivables/cylinder-sizes", headers=headers).get_json()
        assert data["empty_cylinder_receivables"] == {"12L": 2}
        assert data["total"] == 2

    def test_reconciliation(self, client, db_session, driver, stocked, headers):
        client.post("/api/settlements", json=_body(driver, stocked), headers=headers)
        data = client.get(f"/api/receivables/drivers/{driver.id}/reconciliation", headers=headers).get_json()
        assert data["cash_within_bound"] is True
        assert data["cash_difference_cents"] == 0

    def test_manual_recompute(self, client, db_session, driver, headers):
        response = client.post(
            "/api/receivables/recompute", json={"driver_id": driver.id, "date": "2026-04-10"}, headers=headers,
        )
        assert response.status_code == 202
        task = db_session.get(RecomputeTask, response.get_json()["task_id"])
        assert task.reason == "MANUAL"
        assert task.status == "DONE"


class TestOnboardingRoutes:
    def test_seed_then_duplicate(self, client, db_session, driver, products, headers):
        body = {"onboarding_date": "2026-04-01",
                "drivers": [{"driver_id": driver.id, "opening_cash_cents": 5000, "cylinders": {"12L": 5}}]}
        first = client.post("/api/onboarding/baselines", json=body, headers=headers)
        assert first.status_code == 201

        second = client.post("/api/onboarding/baselines", json=body, headers=headers)
        assert second.status_code == 409

        listed = client.get("/api/onboarding/baselines", headers=headers).get_json()["baselines"]
        assert [(b["size"], b["baseline_quantity"]) for b in listed] == [("12L", 5)]


class TestHealth:
    def test_healthy(self, client, db_session):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "healthy"
        assert data["checks"]["ledger_worker"]["details"]["eager"] is True

    def test_degraded_when_tasks_exhausted(self, client, db_session, org_a, driver):
        db_session.add(RecomputeTask(
            org_id=org_a.id, driver_id=driver.id, ledger_date=date(2026, 4, 10),
            reason="MANUAL", status="FAILED", attempts=3,
        ))
        db_session.commit()

        data = client.get("/health").get_json()
        assert data["status"] == "degraded"
        assert data["checks"]["ledger_worker"]["details"]["exhausted"] == 1
