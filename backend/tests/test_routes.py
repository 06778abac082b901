# Overview: Pytest coverage for the HTTP API.

from datetime import timedelta

from crediario.time_utils import to_utc_z, utcnow


def _promised():
    return to_utc_z(utcnow() + timedelta(days=7))


class TestHealth:
    def test_health(self, client, db_session):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json["status"] == "healthy"
        assert response.json["checks"]["ledger"]["status"] == "healthy"


class TestStockRoutes:
    def test_get_product_and_history(self, client, product):
        response = client.get(f"/api/stock/products/{product.id}")
        assert response.status_code == 200
        assert response.json["stock_quantity"] == 20

        response = client.post("/api/stock/adjust", json={"product_id": product.id, "delta": -3, "reason": "DAMAGED"})
        assert response.status_code == 200
        assert response.json["stock_quantity"] == 17

        response = client.get(f"/api/stock/products/{product.id}/history")
        assert response.status_code == 200
        [movement] = response.json["movements"]
        assert movement["quantity_delta"] == -3
        assert movement["reason"] == "DAMAGED"

    def test_unknown_product(self, client, db_session):
        response = client.get("/api/stock/products/99999")
        assert response.status_code == 404
        assert response.json["code"] == "product_not_found"

    def test_adjust_validation(self, client, product):
        assert client.post("/api/stock/adjust", json={"delta": 1}).status_code == 400
        response = client.post("/api/stock/adjust", json={"product_id": product.id, "delta": 0})
        assert response.status_code == 400
        assert response.json["code"] == "invalid_quantity"


class TestReservationRoutes:
    def test_reservation_lifecycle(self, client, product):
        response = client.post("/api/reservations", json={
            "product_id": product.id,
            "customer_name": "Maria",
            "quantity": 5,
            "promised_payment_date": _promised(),
        })
        assert response.status_code == 201
        reservation_id = response.json["id"]
        assert response.json["status"] == "ACTIVE"
        assert response.json["unit_price_cents"] == 5000

        assert client.get(f"/api/stock/products/{product.id}").json["stock_quantity"] == 15

        response = client.post(f"/api/reservations/{reservation_id}/cancel")
        assert response.status_code == 200
        assert response.json["status"] == "CANCELLED"
        assert response.json["completed_at"] is not None
        assert client.get(f"/api/stock/products/{product.id}").json["stock_quantity"] == 20

        response = client.post(f"/api/reservations/{reservation_id}/cancel")
        assert response.status_code == 409
        assert response.json["code"] == "reservation_not_active"

    def test_insufficient_stock(self, client, low_stock_product):
        response = client.post("/api/reservations", json={
            "product_id": low_stock_product.id,
            "customer_name": "Maria",
            "quantity": 5,
            "promised_payment_date": _promised(),
        })
        assert response.status_code == 409
        assert response.json["code"] == "insufficient_stock"

    def test_payload_validation(self, client, product):
        response = client.post("/api/reservations", json={"product_id": product.id, "quantity": 1})
        assert response.status_code == 400
        assert "promised_payment_date" in response.json["error"]

        response = client.post("/api/reservations", json={
            "product_id": product.id,
            "customer_name": "Maria",
            "quantity": 1.5,
            "promised_payment_date": _promised(),
        })
        assert response.status_code == 400

        response = client.post("/api/reservations", json={
            "product_id": product.id,
            "customer_name": "Maria",
            "quantity": 1,
            "promised_payment_date": _promised(),
            "unit_price_cents": 1,
        })
        assert response.status_code == 400
        assert "not allowed" in response.json["error"]

    def test_convert_and_list(self, client, product, customer):
        reservation_id = client.post("/api/reservations", json={
            "product_id": product.id,
            "customer_name": "Maria",
            "quantity": 2,
            "promised_payment_date": _promised(),
        }).json["id"]

        response = client.post(f"/api/reservations/{reservation_id}/convert", json={
            "customer_id": customer.id,
            "installments": 2,
            "payment_frequency": "weekly",
        })
        assert response.status_code == 201
        assert response.json["created"] is True
        assert response.json["account"]["total_amount_cents"] == 10000
        assert response.json["account"]["payment_frequency"] == "WEEKLY"
        assert response.json["reservation"]["reservation_type"] == "CREDIT_ACCOUNT"

        listed = client.get(f"/api/reservations?customer_id={customer.id}").json["reservations"]
        assert [r["id"] for r in listed] == [reservation_id]

        response = client.post(f"/api/reservations/{reservation_id}/cancel")
        assert response.status_code == 409
        assert response.json["code"] == "reservation_linked_to_account"


class TestCreditAccountRoutes:
    def _open(self, client, customer, product, **extra):
        body = {
            "customer_id": customer.id,
            "line_items": [{"product_id": product.id, "quantity": 2}],
            "installments": 2,
        }
        body.update(extra)
        return client.post("/api/credit-accounts", json=body)

    def test_open_pay_and_pay_off(self, client, customer, product):
        response = self._open(client, customer, product)
        assert response.status_code == 201
        account_id = response.json["account"]["id"]
        assert response.json["account"]["account_number"] == "CR0001"
        assert response.json["remaining_amount_cents"] == 10000
        assert len(response.json["schedule"]) == 2

        response = client.post(f"/api/credit-accounts/{account_id}/payments/preview", json={"amount_cents": 6000})
        assert response.status_code == 200
        assert response.json["will_be_paid_off"] is False

        response = client.post(f"/api/credit-accounts/{account_id}/payments", json={
            "amount_cents": 6000,
            "payment_method": "pix",
        })
        assert response.status_code == 201
        assert response.json["account"]["remaining_amount_cents"] == 4000
        assert response.json["payment"]["payment_method"] == "PIX"

        response = client.post(f"/api/credit-accounts/{account_id}/payments", json={
            "amount_cents": 15000,
            "payment_method": "PIX",
        })
        assert response.status_code == 409
        assert response.json["code"] == "amount_exceeds_balance"

        response = client.post(f"/api/credit-accounts/{account_id}/pay-off", json={"payment_method": "CASH"})
        assert response.status_code == 201
        assert response.json["paid_off"] is True
        assert response.json["account"]["status"] == "PAID_OFF"

        payments = client.get(f"/api/credit-accounts/{account_id}/payments").json["payments"]
        assert [p["amount_cents"] for p in payments] == [6000, 4000]

        response = client.get(f"/api/credit-accounts/{account_id}")
        assert response.status_code == 200
        assert response.json["installments_paid"] == 2

    def test_payment_validation(self, client, customer, product):
        account_id = self._open(client, customer, product).json["account"]["id"]

        response = client.post(f"/api/credit-accounts/{account_id}/payments", json={
            "amount_cents": 0, "payment_method": "CASH",
        })
        assert response.status_code == 400
        assert response.json["code"] == "invalid_amount"

        response = client.post(f"/api/credit-accounts/{account_id}/payments", json={
            "amount_cents": 10.5, "payment_method": "CASH",
        })
        assert response.status_code == 400

        response = client.post(f"/api/credit-accounts/{account_id}/payments", json={
            "amount_cents": 100, "payment_method": "BITCOIN",
        })
        assert response.status_code == 400

        response = client.post("/api/credit-accounts/99999/payments", json={
            "amount_cents": 100, "payment_method": "CASH",
        })
        assert response.status_code == 404
        assert response.json["code"] == "account_not_found"

    def test_preview_accepts_what_payments_accept(self, client, customer, product):
        account_id = self._open(client, customer, product).json["account"]["id"]

        response = client.post(f"/api/credit-accounts/{account_id}/payments/preview", json={"amount_cents": "100"})
        assert response.status_code == 200
        assert response.json["amount_cents"] == 100
        assert response.json["new_remaining_cents"] == 9900

        response = client.post(f"/api/credit-accounts/{account_id}/payments", json={
            "amount_cents": "100", "payment_method": "CASH",
        })
        assert response.status_code == 201

        response = client.post(f"/api/credit-accounts/{account_id}/payments/preview", json={"amount_cents": 10.5})
        assert response.status_code == 400

        response = client.post(f"/api/credit-accounts/{account_id}/payments/preview", json={"amount_cents": 0})
        assert response.status_code == 400
        assert response.json["code"] == "invalid_amount"

    def test_open_rejects_non_positive_installments(self, client, customer, product):
        for installments in (0, -1):
            response = self._open(client, customer, product, installments=installments)
            assert response.status_code == 400
            assert response.json["code"] == "validation_error"

        assert client.get("/api/credit-accounts").json["accounts"] == []

    def test_open_validation(self, client, customer):
        response = client.post("/api/credit-accounts", json={"customer_id": customer.id, "line_items": []})
        assert response.status_code == 400
        assert response.json["code"] == "empty_line_items"

        response = client.post("/api/credit-accounts", json={"line_items": [{"product_name": "X", "unit_price_cents": 1}]})
        assert response.status_code == 400

    def test_from_order(self, client, customer, order):
        response = client.post("/api/credit-accounts/from-order", json={"order_number": order.order_number, "installments": 4})
        assert response.status_code == 201
        assert response.json["created"] is True
        account_id = response.json["account"]["id"]
        assert response.json["account"]["order_reference"] == "ORD-0001"

        response = client.post("/api/credit-accounts/from-order", json={"order_id": order.id})
        assert response.status_code == 200
        assert response.json["account"]["id"] == account_id

        response = client.post("/api/credit-accounts/from-order", json={"order_number": "NOPE"})
        assert response.status_code == 404

        response = client.post(f"/api/credit-accounts/{account_id}/pay-off", json={"payment_method": "PIX"})
        assert response.status_code == 201
        assert response.json["warnings"] == []

        response = client.post(f"/api/credit-accounts/{account_id}/sync-payoff")
        assert response.status_code == 200
        assert response.json["order_completed"] is False

    def test_items_suspend_recompute(self, client, customer, product):
        account_id = self._open(client, customer, product).json["account"]["id"]

        response = client.post(f"/api/credit-accounts/{account_id}/items", json={
            "line_items": [{"product_name": "Warranty", "quantity": 1, "unit_price_cents": 2000}],
        })
        assert response.status_code == 200
        assert response.json["total_amount_cents"] == 12000

        response = client.post(f"/api/credit-accounts/{account_id}/suspend", json={"reason": "late"})
        assert response.status_code == 200
        assert response.json["status"] == "SUSPENDED"

        response = client.post(f"/api/credit-accounts/{account_id}/items", json={
            "line_items": [{"product_name": "Cable", "quantity": 1, "unit_price_cents": 100}],
        })
        assert response.status_code == 409

        assert client.post(f"/api/credit-accounts/{account_id}/reactivate").json["status"] == "ACTIVE"

        response = client.post(f"/api/credit-accounts/{account_id}/recompute")
        assert response.status_code == 200
        assert response.json["repaired"] is False

        listed = client.get("/api/credit-accounts?status=ACTIVE").json["accounts"]
        assert [a["id"] for a in listed] == [account_id]
