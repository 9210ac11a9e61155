from datetime import datetime, timezone
from decimal import Decimal

import pytest

from stockroom.crud.ledger import stock_ledger


@pytest.fixture
def catalog(db, make_product):
    """Three products across two types with some sales history."""
    empty = make_product(quantity=0, name="Router AX", code="RTR-1", type="Router", brand="Netgear", price=Decimal("80.00"))
    low = make_product(quantity=30, name="Router AC", code="RTR-2", type="Router", brand="TP-Link", price=Decimal("40.00"))
    plenty = make_product(quantity=200, name="Mouse Pro", code="MSE-1", type="Mouse", brand="Logitech", price=Decimal("25.50"))

    stock_ledger.record_out(db, low.id, 20, actor="tester")
    stock_ledger.record_out(db, plenty.id, 50, actor="tester")
    stock_ledger.record_in(db, empty.id, 5, actor="tester")
    stock_ledger.record_out(db, empty.id, 5, actor="tester")
    return {"empty": empty, "low": low, "plenty": plenty}


def test_dashboard_stats(client, user_headers, catalog):
    response = client.get("/api/dashboard/stats", headers=user_headers)
    assert response.status_code == 200
    stats = response.json()["stats"]

    # low: 10 x 40.00, plenty: 150 x 25.50
    assert stats["totalStockValue"] == pytest.approx(400.0 + 3825.0)
    assert stats["totalProducts"] == 3
    assert stats["lowStockCount"] == 2
    assert [p["code"] for p in stats["lowStockItems"]] == ["RTR-1", "RTR-2"]


def test_dashboard_alerts(client, user_headers, catalog):
    alerts = client.get("/api/dashboard/alerts", headers=user_headers).json()["alerts"]
    assert [(a["alert_type"], a["product_id"]) for a in alerts] == [
        ("STOCK_OUT", catalog["empty"].id),
        ("STOCK_LOW", catalog["low"].id),
    ]


def test_recent_movements_and_top_selling(client, user_headers, catalog):
    movements = client.get("/api/dashboard/recent-movements?limit=3", headers=user_headers).json()["movements"]
    assert len(movements) == 3
    assert movements[0]["product_code"] == "RTR-1"
    assert movements[0]["transaction_type"] == "out"

    top = client.get("/api/dashboard/top-selling?limit=2", headers=user_headers).json()["topSelling"]
    assert [(p["code"], p["total_sold"]) for p in top] == [("MSE-1", 50), ("RTR-2", 20)]


def test_monthly_movements(client, user_headers, catalog):
    data = client.get("/api/dashboard/monthly-movements", headers=user_headers).json()["data"]
    this_month = datetime.now(timezone.utc).strftime("%Y-%m")

    assert this_month in data["months"]
    i = data["months"].index(this_month)
    assert data["stockIn"][i] == 30 + 200 + 5
    assert data["stockOut"][i] == 20 + 50 + 5


def test_stock_summary(client, user_headers, catalog):
    body = client.get("/api/reports/stock-summary", headers=user_headers).json()
    assert body["overall"]["total_products"] == 3
    assert body["overall"]["total_quantity"] == 160
    by_type = {row["type"]: row for row in body["summary"]}
    assert by_type["Router"]["product_count"] == 2
    assert by_type["Router"]["min_quantity"] == 0
    assert by_type["Mouse"]["total_value"] == pytest.approx(3825.0)


def test_stock_movement_report_filters(client, user_headers, catalog):
    today = datetime.now(timezone.utc).date().isoformat()

    body = client.get(
        f"/api/reports/stock-movement?startDate={today}&endDate={today}&type=Router", headers=user_headers
    ).json()
    assert {m["product_type"] for m in body["movements"]} == {"Router"}
    summary = {row["transaction_type"]: row for row in body["summary"]}
    assert summary["out"]["total_quantity"] == 25
    assert summary["in"]["transaction_count"] == 2
    assert body["dailyTrend"][0]["date"] == today

    body = client.get("/api/reports/stock-movement?startDate=2000-01-01&endDate=2000-01-31", headers=user_headers).json()
    assert body["movements"] == []


def test_low_stock_report(client, user_headers, catalog):
    body = client.get("/api/reports/low-stock?threshold=50", headers=user_headers).json()
    assert body["threshold"] == 50
    assert body["totalLowStockItems"] == 2

    items = {item["code"]: item for item in body["lowStockItems"]}
    assert items["RTR-1"]["suggested_order_qty"] == 100
    assert items["RTR-1"]["out_last_30_days"] == 5
    assert items["RTR-1"]["last_restock_date"] is not None
    assert items["RTR-2"]["quantity"] == 10
    assert items["RTR-2"]["suggested_order_qty"] == 90


def test_low_stock_pdf(client, user_headers, catalog):
    response = client.get("/api/reports/low-stock.pdf", headers=user_headers)
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.content.startswith(b"%PDF")


def test_sales_analysis(client, user_headers, catalog):
    body = client.get("/api/reports/sales-analysis", headers=user_headers).json()
    assert [p["code"] for p in body["topSelling"]] == ["MSE-1", "RTR-2", "RTR-1"]
    assert body["topSelling"][0]["total_sales_value"] == pytest.approx(1275.0)
    assert body["monthlySales"][-1]["unique_products"] == 3
    # every product is brand new, so nothing counts as slow moving yet
    assert body["slowMoving"] == []


def test_inventory_valuation(client, user_headers, catalog):
    body = client.get("/api/reports/inventory-valuation", headers=user_headers).json()
    assert body["current"]["overall"]["total_value"] == pytest.approx(4225.0)
    assert body["topValueProducts"][0]["code"] == "MSE-1"
    change = {row["type"]: row for row in body["monthlyChange"]}
    assert change["Router"]["net_change_quantity"] == 10


def test_filters(client, user_headers, catalog):
    body = client.get("/api/reports/filters", headers=user_headers).json()
    assert body["types"] == ["Mouse", "Router"]
    assert body["brands"] == ["Logitech", "Netgear", "TP-Link"]


def test_reports_require_authentication(client):
    assert client.get("/api/reports/stock-summary").status_code == 401
    assert client.get("/api/dashboard/stats").status_code == 401


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["database"] == "connected"
