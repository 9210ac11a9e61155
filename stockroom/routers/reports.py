"""
Reports router.
All reports are read-only views over products and stock_transactions.
"""
from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session
from datetime import date, datetime
from typing import Any, Dict, Optional
import logging

from stockroom.database import get_db
from stockroom.security import get_current_user
from stockroom import models
from stockroom.config import settings
from stockroom.crud.reports import report_aggregator
from stockroom.utils.pdf_reports import pdf_generator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["reports"])

@router.get("/stock-summary")
def stock_summary(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    return {"success": True, **report_aggregator.stock_summary(db)}

@router.get("/stock-movement")
def stock_movement(
    startDate: Optional[date] = None,
    endDate: Optional[date] = None,
    type: Optional[str] = None,
    brand: Optional[str] = None,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Movements between startDate and endDate (inclusive), optionally for one product type or brand."""
    report = report_aggregator.stock_movement(
        db, start_date=startDate, end_date=endDate, product_type=type, brand=brand
    )
    return {"success": True, **report}

@router.get("/low-stock")
def low_stock(
    threshold: int = Query(settings.LOW_STOCK_THRESHOLD, ge=1),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    return {"success": True, **report_aggregator.low_stock(db, threshold=threshold)}

@router.get("/low-stock.pdf")
def low_stock_pdf(
    threshold: int = Query(settings.LOW_STOCK_THRESHOLD, ge=1),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Response:
    report = report_aggregator.low_stock(db, threshold=threshold)
    pdf_bytes = pdf_generator.generate_low_stock_report(report)
    logger.info(f"Low stock PDF generated for {current_user.username}: {report['totalLowStockItems']} item(s)")

    filename = f"low-stock-{datetime.now().strftime('%Y%m%d')}.pdf"
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )

@router.get("/sales-analysis")
def sales_analysis(
    limit: int = Query(20, ge=1, le=200),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    return {"success": True, **report_aggregator.sales_analysis(db, limit=limit)}

@router.get("/inventory-valuation")
def inventory_valuation(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    return {"success": True, **report_aggregator.inventory_valuation(db)}

@router.get("/filters")
def report_filters(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Distinct product types and brands for the report filter dropdowns."""
    return {"success": True, **report_aggregator.filters(db)}
