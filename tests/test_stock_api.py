from sqlalchemy import select

from stockroom import models


def test_stock_in_returns_movement(client, staff_headers, make_product, stored_quantity):
    product = make_product(quantity=10)

    response = client.post(
        "/api/stock/in",
        json={"product_id": product.id, "quantity": 5, "reference_number": "PO-77"},
        headers=staff_headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    tx = body["transaction"]
    assert tx["product_code"] == product.code
    assert tx["previous_quantity"] == 10
    assert tx["added_quantity"] == 5
    assert tx["new_quantity"] == 15
    assert stored_quantity(product.id) == 15


def test_stock_out_beyond_stock_is_rejected(client, staff_headers, make_product, stored_quantity, ledger_totals):
    product = make_product(quantity=100)

    response = client.post(
        "/api/stock/out", json={"product_id": product.id, "quantity": 150}, headers=staff_headers
    )

    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "Insufficient stock. Available: 100"}
    assert stored_quantity(product.id) == 100
    assert ledger_totals(product.id) == (100, 0, 1)


def test_stock_out_records_removed_quantity(client, staff_headers, make_product):
    product = make_product(quantity=9)
    response = client.post(
        "/api/stock/out", json={"product_id": product.id, "quantity": 9}, headers=staff_headers
    )
    assert response.status_code == 200
    tx = response.json()["transaction"]
    assert tx["removed_quantity"] == 9
    assert tx["new_quantity"] == 0


def test_actor_defaults_to_authenticated_user(client, db, staff_headers, make_product):
    product = make_product(quantity=0)

    client.post("/api/stock/in", json={"product_id": product.id, "quantity": 1}, headers=staff_headers)
    client.post(
        "/api/stock/in",
        json={"product_id": product.id, "quantity": 1, "created_by": "warehouse-2"},
        headers=staff_headers,
    )

    db.expire_all()
    actors = db.execute(
        select(models.StockTransaction.created_by)
        .where(models.StockTransaction.product_id == product.id)
        .order_by(models.StockTransaction.id)
    ).scalars().all()
    assert actors == ["staff", "warehouse-2"]


def test_invalid_body_is_reported_per_field(client, staff_headers, make_product):
    product = make_product(quantity=1)
    response = client.post(
        "/api/stock/in", json={"product_id": product.id, "quantity": 0}, headers=staff_headers
    )

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Invalid request"
    assert body["errors"][0]["field"] == "quantity"


def test_unknown_product_is_404(client, staff_headers):
    response = client.post("/api/stock/in", json={"product_id": 999, "quantity": 1}, headers=staff_headers)
    assert response.status_code == 404
    assert response.json()["message"] == "Product not found"


def test_stock_routes_require_authentication(client, make_product):
    product = make_product(quantity=1)
    response = client.post("/api/stock/in", json={"product_id": product.id, "quantity": 1})
    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "Not authenticated"}


def test_plain_users_cannot_move_stock(client, user_headers, make_product, stored_quantity):
    product = make_product(quantity=5)
    response = client.post(
        "/api/stock/out", json={"product_id": product.id, "quantity": 1}, headers=user_headers
    )
    assert response.status_code == 403
    assert response.json()["success"] is False
    assert stored_quantity(product.id) == 5


# ====================
# BULK
# ====================

def test_bulk_success_shape(client, staff_headers, make_product, stored_quantity):
    a = make_product(quantity=10)
    b = make_product(quantity=2)

    response = client.post(
        "/api/stock/bulk",
        json={"operations": [
            {"product_id": a.id, "type": "out", "quantity": 3},
            {"product_id": b.id, "type": "IN", "quantity": 4},
        ]},
        headers=staff_headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "2 operation(s) completed successfully"
    assert (body["total"], body["successful"], body["failed"]) == (2, 2, 0)
    assert [r["index"] for r in body["results"]] == [0, 1]
    assert body["results"][0]["type"] == "out"
    assert body["results"][0]["previous_quantity"] == 10
    assert body["results"][0]["new_quantity"] == 7
    assert body["results"][1]["new_quantity"] == 6
    assert stored_quantity(a.id) == 7
    assert stored_quantity(b.id) == 6


def test_bulk_accepts_single_object(client, staff_headers, make_product, stored_quantity):
    product = make_product(quantity=0)
    response = client.post(
        "/api/stock/bulk",
        json={"operations": {"product_id": product.id, "type": "in", "quantity": 3}},
        headers=staff_headers,
    )
    assert response.status_code == 200
    assert response.json()["total"] == 1
    assert stored_quantity(product.id) == 3


def test_bulk_failure_rejects_whole_batch(client, staff_headers, make_product, stored_quantity):
    product = make_product(quantity=10)

    response = client.post(
        "/api/stock/bulk",
        json={"operations": [
            {"product_id": product.id, "type": "out", "quantity": 6},
            {"product_id": product.id, "type": "out", "quantity": 6},
        ]},
        headers=staff_headers,
    )

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "1 operation(s) failed"
    assert body["errors"][0]["index"] == 1
    assert stored_quantity(product.id) == 10


def test_bulk_reports_malformed_entries_by_index(client, staff_headers, make_product, stored_quantity):
    product = make_product(quantity=10)

    response = client.post(
        "/api/stock/bulk",
        json={"operations": [
            {"product_id": product.id, "type": "in", "quantity": 1},
            {"product_id": product.id, "type": "in", "quantity": 1, "reference_number": 42},
            7,
            {"product_id": product.id, "type": "in", "quantity": "³"},
        ]},
        headers=staff_headers,
    )

    assert response.status_code == 400
    body = response.json()
    assert body["message"] == "3 operation(s) failed"
    assert body["errors"] == [
        {"index": 1, "product_id": product.id, "error": "Invalid operation data"},
        {"index": 2, "product_id": None, "error": "Invalid operation data"},
        {"index": 3, "product_id": product.id, "error": "Invalid operation data"},
    ]
    assert stored_quantity(product.id) == 10


def test_bulk_without_operations_is_rejected(client, staff_headers):
    response = client.post("/api/stock/bulk", json={"operations": []}, headers=staff_headers)
    assert response.status_code == 400
    assert response.json()["message"] == "Operations array is required"


# ====================
# READ / DELETE
# ====================

def test_transactions_list_and_summary(client, staff_headers, user_headers, make_product):
    product = make_product(quantity=10)
    client.post("/api/stock/out", json={"product_id": product.id, "quantity": 4}, headers=staff_headers)

    response = client.get(f"/api/stock/transactions?product_id={product.id}&type=OUT", headers=user_headers)
    assert response.status_code == 200
    transactions = response.json()["transactions"]
    assert len(transactions) == 1
    assert transactions[0]["transaction_type"] == "out"
    assert transactions[0]["product_name"] == product.name

    response = client.get(f"/api/stock/summary/{product.id}", headers=user_headers)
    summary = response.json()["summary"]
    assert summary["current_quantity"] == 6
    assert summary["total_stock_in"] == 10
    assert summary["total_stock_out"] == 4
    assert summary["total_transactions"] == 2


def test_transactions_list_rejects_unknown_type(client, user_headers):
    response = client.get("/api/stock/transactions?type=sideways", headers=user_headers)
    assert response.status_code == 400
    assert response.json()["message"] == "Invalid transaction type"


def test_summary_of_unknown_product_is_404(client, user_headers):
    assert client.get("/api/stock/summary/404", headers=user_headers).status_code == 404


def test_admin_deletes_transaction_with_reversal(client, admin_headers, staff_headers, make_product, stored_quantity):
    product = make_product(quantity=10)
    tx_id = client.post(
        "/api/stock/in", json={"product_id": product.id, "quantity": 5}, headers=staff_headers
    ).json()["transaction"]["id"]

    response = client.delete(f"/api/stock/transactions/{tx_id}", headers=staff_headers)
    assert response.status_code == 403

    response = client.delete(f"/api/stock/transactions/{tx_id}", headers=admin_headers)
    assert response.status_code == 200
    tx = response.json()["transaction"]
    assert tx == {
        "id": tx_id,
        "product_id": product.id,
        "type": "in",
        "quantity": 5,
        "previous_quantity": 15,
        "new_quantity": 10,
    }
    assert stored_quantity(product.id) == 10

    response = client.delete(f"/api/stock/transactions/{tx_id}", headers=admin_headers)
    assert response.status_code == 404


def test_delete_that_would_go_negative_is_409(client, db, admin_headers, staff_headers, make_product, stored_quantity):
    product = make_product(quantity=10)
    opening_id = db.execute(
        select(models.StockTransaction.id).where(models.StockTransaction.product_id == product.id)
    ).scalar_one()
    client.post("/api/stock/out", json={"product_id": product.id, "quantity": 8}, headers=staff_headers)

    response = client.delete(f"/api/stock/transactions/{opening_id}", headers=admin_headers)

    assert response.status_code == 409
    assert response.json()["message"] == "Cannot delete transaction: reversal would make stock negative"
    assert stored_quantity(product.id) == 2
