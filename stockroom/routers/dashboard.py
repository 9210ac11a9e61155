"""
Dashboard router: headline stock figures, recent movements and chart data.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Any, Dict

from stockroom.database import get_db
from stockroom.security import get_current_user
from stockroom import models
from stockroom.crud.reports import report_aggregator
from stockroom.utils.alerts import check_stock_alerts

router = APIRouter(prefix="/dashboard", tags=["dashboard"])

@router.get("/stats")
def get_stats(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    return {"success": True, "stats": report_aggregator.dashboard_stats(db)}

@router.get("/alerts")
def get_alerts(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Low and out-of-stock alerts."""
    alerts = check_stock_alerts(db)
    return {"success": True, "alerts": alerts, "count": len(alerts)}

@router.get("/recent-movements")
def get_recent_movements(
    limit: int = Query(10, ge=1, le=100),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    return {"success": True, "movements": report_aggregator.recent_movements(db, limit=limit)}

@router.get("/top-selling")
def get_top_selling(
    limit: int = Query(10, ge=1, le=100),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    return {"success": True, "topSelling": report_aggregator.top_selling(db, limit=limit)}

@router.get("/monthly-movements")
def get_monthly_movements(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """IN/OUT totals for the last 12 months, keyed by YYYY-MM."""
    return {"success": True, "data": report_aggregator.monthly_movements(db)}
