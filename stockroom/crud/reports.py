"""
Read-side aggregates for the dashboard and the reports pages.
Nothing here writes. Grouping by calendar month or day is done in Python so
the same queries run on PostgreSQL and SQLite.
"""
from collections import OrderedDict, defaultdict
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from sqlalchemy import select, func, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import logging
from typing import Any, Dict, List, Optional

from stockroom.config import settings
from stockroom.models import Product, StockTransaction
from stockroom.exceptions import InfrastructureError
from stockroom.schemas.stock import TransactionType
from stockroom.utils.alerts import suggested_order_quantity

logger = logging.getLogger(__name__)

IN = TransactionType.IN.value
OUT = TransactionType.OUT.value

stock_value = Product.price * Product.quantity


def _money(value: Any) -> float:
    return float(round(Decimal(str(value or 0)), 2))


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive timestamps that were written in UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _days_ago(days: int) -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=days)


def _product_dict(product: Product) -> Dict[str, Any]:
    return {
        "id": product.id,
        "name": product.name,
        "code": product.code,
        "type": product.type,
        "brand": product.brand,
        "price": _money(product.price),
        "quantity": product.quantity,
        "image": product.image,
    }


class ReportAggregator:

    def _execute(self, db: Session, stmt, what: str):
        try:
            return db.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(f"Error building {what}: {e}")
            raise InfrastructureError(f"Failed to build {what}") from e

    def _out_totals(self, db: Session) -> List[Dict[str, Any]]:
        """Every product with its total OUT quantity and OUT transaction count."""
        total_sold = func.coalesce(func.sum(StockTransaction.quantity), 0).label("total_sold")
        tx_count = func.count(StockTransaction.id).label("transaction_count")
        stmt = (
            select(Product, total_sold, tx_count)
            .outerjoin(
                StockTransaction,
                and_(StockTransaction.product_id == Product.id, StockTransaction.transaction_type == OUT),
            )
            .group_by(Product.id)
            .order_by(Product.id)
        )
        rows = self._execute(db, stmt, "sales totals").all()
        return [
            {"product": product, "total_sold": int(sold or 0), "transaction_count": int(count or 0)}
            for product, sold, count in rows
        ]

    # ====================
    # DASHBOARD
    # ====================

    def dashboard_stats(self, db: Session, threshold: Optional[int] = None) -> Dict[str, Any]:
        threshold = settings.LOW_STOCK_THRESHOLD if threshold is None else threshold

        total_value = self._execute(
            db, select(func.coalesce(func.sum(stock_value), 0)), "dashboard stats"
        ).scalar()
        total_products = self._execute(db, select(func.count(Product.id)), "dashboard stats").scalar()
        low_count = self._execute(
            db, select(func.count(Product.id)).where(Product.quantity < threshold), "dashboard stats"
        ).scalar()
        low_items = self._execute(
            db,
            select(Product)
            .where(Product.quantity < threshold)
            .order_by(Product.quantity.asc(), Product.id.asc())
            .limit(10),
            "dashboard stats",
        ).scalars().all()

        return {
            "totalStockValue": _money(total_value),
            "totalProducts": int(total_products or 0),
            "lowStockCount": int(low_count or 0),
            "lowStockItems": [_product_dict(p) for p in low_items],
        }

    def recent_movements(self, db: Session, limit: int = 10) -> List[Dict[str, Any]]:
        stmt = (
            select(StockTransaction, Product)
            .join(Product, StockTransaction.product_id == Product.id)
            .order_by(StockTransaction.created_at.desc(), StockTransaction.id.desc())
            .limit(limit)
        )
        return [
            {
                "id": tx.id,
                "product_id": tx.product_id,
                "transaction_type": tx.transaction_type,
                "quantity": tx.quantity,
                "reference_number": tx.reference_number,
                "notes": tx.notes,
                "created_at": tx.created_at,
                "created_by": tx.created_by,
                "product_name": product.name,
                "product_code": product.code,
                "product_type": product.type,
                "product_brand": product.brand,
                "product_price": _money(product.price),
                "product_image": product.image,
            }
            for tx, product in self._execute(db, stmt, "recent movements").all()
        ]

    def top_selling(self, db: Session, limit: int = 10) -> List[Dict[str, Any]]:
        """Products ranked by total quantity moved out."""
        totals = sorted(self._out_totals(db), key=lambda r: (-r["total_sold"], r["product"].id))
        return [
            {**_product_dict(r["product"]), "total_sold": r["total_sold"]}
            for r in totals[:limit]
        ]

    def monthly_movements(self, db: Session, months: int = 12) -> Dict[str, List]:
        """IN and OUT totals per YYYY-MM over the last `months` months."""
        stmt = (
            select(StockTransaction.created_at, StockTransaction.transaction_type, StockTransaction.quantity)
            .where(StockTransaction.created_at >= _days_ago(months * 31))
        )
        stock_in: Dict[str, int] = defaultdict(int)
        stock_out: Dict[str, int] = defaultdict(int)
        for created_at, tx_type, quantity in self._execute(db, stmt, "monthly movements").all():
            month = _as_utc(created_at).strftime("%Y-%m")
            if tx_type == IN:
                stock_in[month] += quantity
            else:
                stock_out[month] += quantity

        labels = sorted(set(stock_in) | set(stock_out))[-months:]
        return {
            "months": labels,
            "stockIn": [stock_in.get(m, 0) for m in labels],
            "stockOut": [stock_out.get(m, 0) for m in labels],
        }

    # ====================
    # REPORTS
    # ====================

    def stock_summary(self, db: Session) -> Dict[str, Any]:
        """Stock totals per product type, plus overall totals."""
        total_value = func.sum(stock_value).label("total_value")
        stmt = (
            select(
                Product.type,
                func.count(Product.id).label("product_count"),
                func.sum(Product.quantity).label("total_quantity"),
                total_value,
                func.avg(Product.price).label("avg_price"),
                func.min(Product.quantity).label("min_quantity"),
                func.max(Product.quantity).label("max_quantity"),
            )
            .group_by(Product.type)
            .order_by(total_value.desc())
        )
        summary = [
            {
                "type": row.type,
                "product_count": int(row.product_count),
                "total_quantity": int(row.total_quantity or 0),
                "total_value": _money(row.total_value),
                "avg_price": _money(row.avg_price),
                "min_quantity": int(row.min_quantity or 0),
                "max_quantity": int(row.max_quantity or 0),
            }
            for row in self._execute(db, stmt, "stock summary").all()
        ]

        overall = self._execute(
            db,
            select(
                func.count(Product.id),
                func.coalesce(func.sum(Product.quantity), 0),
                func.coalesce(func.sum(stock_value), 0),
            ),
            "stock summary",
        ).one()

        return {
            "summary": summary,
            "overall": {
                "total_products": int(overall[0] or 0),
                "total_quantity": int(overall[1] or 0),
                "total_value": _money(overall[2]),
            },
        }

    def stock_movement(
        self,
        db: Session,
        *,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        product_type: Optional[str] = None,
        brand: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Movements in a date range (inclusive), with totals per direction, per product type and per day."""
        stmt = (
            select(StockTransaction, Product)
            .join(Product, StockTransaction.product_id == Product.id)
            .order_by(StockTransaction.created_at.desc(), StockTransaction.id.desc())
        )
        if start_date:
            stmt = stmt.where(
                StockTransaction.created_at >= datetime.combine(start_date, time.min, tzinfo=timezone.utc)
            )
        if end_date:
            stmt = stmt.where(
                StockTransaction.created_at
                < datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=timezone.utc)
            )
        if product_type:
            stmt = stmt.where(Product.type == product_type)
        if brand:
            stmt = stmt.where(Product.brand == brand)

        movements = []
        summary: Dict[str, Dict[str, Any]] = OrderedDict()
        by_type: Dict[tuple, Dict[str, Any]] = {}
        daily: Dict[tuple, int] = defaultdict(int)

        for tx, product in self._execute(db, stmt, "stock movement report").all():
            value = Decimal(str(product.price)) * tx.quantity
            movements.append({
                "id": tx.id,
                "transaction_type": tx.transaction_type,
                "quantity": tx.quantity,
                "reference_number": tx.reference_number,
                "notes": tx.notes,
                "created_at": tx.created_at,
                "created_by": tx.created_by,
                "product_name": product.name,
                "product_code": product.code,
                "product_type": product.type,
                "product_brand": product.brand,
                "product_price": _money(product.price),
                "transaction_value": _money(value),
            })

            entry = summary.setdefault(tx.transaction_type, {
                "transaction_type": tx.transaction_type,
                "transaction_count": 0,
                "total_quantity": 0,
                "total_value": Decimal("0"),
            })
            entry["transaction_count"] += 1
            entry["total_quantity"] += tx.quantity
            entry["total_value"] += value

            type_entry = by_type.setdefault((product.type, tx.transaction_type), {
                "type": product.type,
                "transaction_type": tx.transaction_type,
                "transaction_count": 0,
                "total_quantity": 0,
                "total_value": Decimal("0"),
            })
            type_entry["transaction_count"] += 1
            type_entry["total_quantity"] += tx.quantity
            type_entry["total_value"] += value

            daily[(_as_utc(tx.created_at).date().isoformat(), tx.transaction_type)] += tx.quantity

        for entry in list(summary.values()) + list(by_type.values()):
            entry["total_value"] = _money(entry["total_value"])

        return {
            "movements": movements,
            "summary": list(summary.values()),
            "byType": [by_type[key] for key in sorted(by_type)],
            "dailyTrend": [
                {"date": day, "transaction_type": tx_type, "total_quantity": total}
                for (day, tx_type), total in sorted(daily.items())
            ],
        }

    def low_stock(self, db: Session, threshold: Optional[int] = None) -> Dict[str, Any]:
        """Products below the threshold with restock history and a suggested order quantity."""
        threshold = settings.LOW_STOCK_THRESHOLD if threshold is None else threshold

        last_restock = (
            select(func.max(StockTransaction.created_at))
            .where(StockTransaction.product_id == Product.id, StockTransaction.transaction_type == IN)
            .correlate(Product)
            .scalar_subquery()
        )
        out_last_30_days = (
            select(func.coalesce(func.sum(StockTransaction.quantity), 0))
            .where(
                StockTransaction.product_id == Product.id,
                StockTransaction.transaction_type == OUT,
                StockTransaction.created_at >= _days_ago(30),
            )
            .correlate(Product)
            .scalar_subquery()
        )
        stmt = (
            select(Product, last_restock.label("last_restock_date"), out_last_30_days.label("out_last_30_days"))
            .where(Product.quantity < threshold)
            .order_by(Product.quantity.asc(), Product.type.asc(), Product.id.asc())
        )

        items = []
        by_type: Dict[str, Dict[str, Any]] = OrderedDict()
        for product, restocked_at, out_30 in self._execute(db, stmt, "low stock report").all():
            items.append({
                **_product_dict(product),
                "created_at": product.created_at,
                "suggested_order_qty": suggested_order_quantity(product.quantity),
                "last_restock_date": restocked_at,
                "out_last_30_days": int(out_30 or 0),
            })
            entry = by_type.setdefault(product.type, {
                "type": product.type,
                "low_stock_count": 0,
                "total_quantity": 0,
                "total_value": Decimal("0"),
            })
            entry["low_stock_count"] += 1
            entry["total_quantity"] += product.quantity
            entry["total_value"] += Decimal(str(product.price)) * product.quantity

        summary_by_type = sorted(by_type.values(), key=lambda e: -e["low_stock_count"])
        for entry in summary_by_type:
            entry["total_value"] = _money(entry["total_value"])

        return {
            "threshold": threshold,
            "lowStockItems": items,
            "summaryByType": summary_by_type,
            "totalLowStockItems": len(items),
        }

    def sales_analysis(self, db: Session, limit: int = 20) -> Dict[str, Any]:
        """OUT movements treated as sales: best and slowest movers, monthly value and breakdowns."""
        now = datetime.now(timezone.utc)
        totals = self._out_totals(db)

        top_selling = []
        for r in sorted(totals, key=lambda r: (-r["total_sold"], r["product"].id)):
            if r["total_sold"] <= 0:
                continue
            product = r["product"]
            top_selling.append({
                **_product_dict(product),
                "current_stock": product.quantity,
                "total_sold": r["total_sold"],
                "total_sales_value": _money(Decimal(str(product.price)) * r["total_sold"]),
                "transaction_count": r["transaction_count"],
            })

        slow_moving = []
        for r in totals:
            created_at = _as_utc(r["product"].created_at)
            days = (now - created_at).days if created_at else 0
            if r["total_sold"] < 10 and days > 30:
                slow_moving.append({**_product_dict(r["product"]), "total_sold": r["total_sold"], "days_in_inventory": days})
        slow_moving.sort(key=lambda e: (e["total_sold"], -e["days_in_inventory"]))

        by_type: Dict[str, Dict[str, Any]] = {}
        by_brand: Dict[tuple, Dict[str, Any]] = {}
        for r in totals:
            product = r["product"]
            value = Decimal(str(product.price)) * r["total_sold"]
            entry = by_type.setdefault(product.type, {
                "type": product.type, "product_count": 0, "total_sold": 0, "total_value": Decimal("0"),
            })
            entry["product_count"] += 1
            entry["total_sold"] += r["total_sold"]
            entry["total_value"] += value

            if product.brand:
                brand_entry = by_brand.setdefault((product.type, product.brand), {
                    "type": product.type, "brand": product.brand,
                    "product_count": 0, "total_sold": 0, "total_value": Decimal("0"),
                })
                brand_entry["product_count"] += 1
                brand_entry["total_sold"] += r["total_sold"]
                brand_entry["total_value"] += value

        sales_by_type = sorted(by_type.values(), key=lambda e: -e["total_value"])
        top_brands = sorted(by_brand.values(), key=lambda e: (e["type"], -e["total_value"]))
        for entry in sales_by_type + top_brands:
            entry["total_value"] = _money(entry["total_value"])

        stmt = (
            select(StockTransaction.created_at, StockTransaction.quantity, StockTransaction.product_id, Product.price)
            .join(Product, StockTransaction.product_id == Product.id)
            .where(StockTransaction.transaction_type == OUT, StockTransaction.created_at >= _days_ago(365))
        )
        monthly: Dict[str, Dict[str, Any]] = {}
        for created_at, quantity, product_id, price in self._execute(db, stmt, "sales analysis").all():
            month = _as_utc(created_at).strftime("%Y-%m")
            entry = monthly.setdefault(month, {
                "month": month, "total_quantity": 0, "total_value": Decimal("0"), "products": set(),
            })
            entry["total_quantity"] += quantity
            entry["total_value"] += Decimal(str(price)) * quantity
            entry["products"].add(product_id)

        monthly_sales = [
            {
                "month": month,
                "total_quantity": entry["total_quantity"],
                "total_value": _money(entry["total_value"]),
                "unique_products": len(entry["products"]),
            }
            for month, entry in sorted(monthly.items())
        ]

        return {
            "topSelling": top_selling[:limit],
            "slowMoving": slow_moving[:limit],
            "monthlySales": monthly_sales,
            "salesByType": sales_by_type,
            "topBrandsByCategory": top_brands,
        }

    def inventory_valuation(self, db: Session) -> Dict[str, Any]:
        """Current stock value by type and overall, net change over 30 days, most valuable products."""
        total_value = func.sum(stock_value).label("total_value")
        stmt = (
            select(
                Product.type,
                func.count(Product.id).label("product_count"),
                func.sum(Product.quantity).label("total_quantity"),
                total_value,
                func.avg(Product.price).label("avg_price"),
                func.min(stock_value).label("min_value"),
                func.max(stock_value).label("max_value"),
            )
            .group_by(Product.type)
            .order_by(total_value.desc())
        )
        by_type = [
            {
                "type": row.type,
                "product_count": int(row.product_count),
                "total_quantity": int(row.total_quantity or 0),
                "total_value": _money(row.total_value),
                "avg_price": _money(row.avg_price),
                "min_value": _money(row.min_value),
                "max_value": _money(row.max_value),
            }
            for row in self._execute(db, stmt, "inventory valuation").all()
        ]

        overall = self._execute(
            db,
            select(
                func.count(Product.id),
                func.coalesce(func.sum(Product.quantity), 0),
                func.coalesce(func.sum(stock_value), 0),
                func.avg(Product.price),
            ),
            "inventory valuation",
        ).one()

        change_stmt = (
            select(Product.type, Product.price, StockTransaction.transaction_type, StockTransaction.quantity)
            .join(Product, StockTransaction.product_id == Product.id)
            .where(StockTransaction.created_at >= _days_ago(30))
        )
        changes: Dict[str, Dict[str, Any]] = OrderedDict()
        for product_type, price, tx_type, quantity in self._execute(db, change_stmt, "inventory valuation").all():
            signed = quantity if tx_type == IN else -quantity
            entry = changes.setdefault(product_type, {
                "type": product_type, "net_change_quantity": 0, "net_change_value": Decimal("0"),
            })
            entry["net_change_quantity"] += signed
            entry["net_change_value"] += Decimal(str(price)) * signed
        for entry in changes.values():
            entry["net_change_value"] = _money(entry["net_change_value"])

        top_stmt = (
            select(Product, stock_value.label("total_value"))
            .order_by(stock_value.desc(), Product.id.asc())
            .limit(20)
        )
        top_value = [
            {**_product_dict(product), "total_value": _money(value)}
            for product, value in self._execute(db, top_stmt, "inventory valuation").all()
        ]

        return {
            "current": {
                "byType": by_type,
                "overall": {
                    "total_products": int(overall[0] or 0),
                    "total_quantity": int(overall[1] or 0),
                    "total_value": _money(overall[2]),
                    "avg_price": _money(overall[3]),
                },
            },
            "monthlyChange": list(changes.values()),
            "topValueProducts": top_value,
        }

    def filters(self, db: Session) -> Dict[str, List[str]]:
        """Distinct non-empty product types and brands."""
        types = self._execute(
            db,
            select(Product.type).where(Product.type.is_not(None), Product.type != "").distinct().order_by(Product.type),
            "report filters",
        ).scalars().all()
        brands = self._execute(
            db,
            select(Product.brand).where(Product.brand.is_not(None), Product.brand != "").distinct().order_by(Product.brand),
            "report filters",
        ).scalars().all()
        return {"types": list(types), "brands": list(brands)}


report_aggregator = ReportAggregator()
