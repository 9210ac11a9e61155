"""
Low-stock policy: status of a quantity against the threshold, the suggested
reorder quantity, and stock alerts for the dashboard.
"""
from sqlalchemy.orm import Session
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
import logging
from typing import List, Optional

from stockroom.config import settings
from stockroom.models import Product
from stockroom.schemas.dashboard import AlertType, AlertLevel, StockAlert

logger = logging.getLogger(__name__)

REORDER_TARGET = 100
CRITICAL_QUANTITY = 20
DEFAULT_REORDER = 50

def suggested_order_quantity(quantity: int) -> int:
    """Bring an empty or critical item up to the reorder target, otherwise order a standard lot."""
    if quantity <= 0:
        return REORDER_TARGET
    if quantity < CRITICAL_QUANTITY:
        return REORDER_TARGET - quantity
    return DEFAULT_REORDER

def stock_status(quantity: int, threshold: Optional[int] = None) -> str:
    threshold = settings.LOW_STOCK_THRESHOLD if threshold is None else threshold
    if quantity <= 0:
        return "OUT"
    if quantity < CRITICAL_QUANTITY:
        return "CRITICAL"
    if quantity < threshold:
        return "LOW"
    return "NORMAL"

def check_stock_alerts(db: Session, threshold: Optional[int] = None) -> List[dict]:
    """One alert per product below the low-stock threshold, emptiest first."""
    threshold = settings.LOW_STOCK_THRESHOLD if threshold is None else threshold
    alerts = []

    try:
        stmt = (
            select(Product)
            .where(Product.quantity < threshold)
            .order_by(Product.quantity.asc(), Product.id.asc())
        )
        products = db.execute(stmt).scalars().all()
    except SQLAlchemyError as e:
        # Alerts are advisory; the dashboard still renders without them
        logger.error(f"Error checking stock alerts: {e}")
        return []

    for product in products:
        if product.quantity <= 0:
            alert = StockAlert(
                alert_type=AlertType.STOCK_OUT,
                level=AlertLevel.CRITICAL,
                message=f"{product.name} ({product.code}) is out of stock",
                product_id=product.id,
            )
        else:
            alert = StockAlert(
                alert_type=AlertType.STOCK_LOW,
                level=AlertLevel.CRITICAL if product.quantity < CRITICAL_QUANTITY else AlertLevel.WARNING,
                message=f"{product.name} ({product.code}) stock is LOW: {product.quantity} (threshold: {threshold})",
                product_id=product.id,
            )
        alerts.append(alert.model_dump(mode="json"))

    return alerts
