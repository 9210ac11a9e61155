"""
Dashboard and alert schemas.
"""
from pydantic import BaseModel
from typing import Optional
from enum import Enum

class AlertLevel(str, Enum):
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"

class AlertType(str, Enum):
    STOCK_LOW = "STOCK_LOW"
    STOCK_OUT = "STOCK_OUT"

class StockAlert(BaseModel):
    alert_type: AlertType
    level: AlertLevel
    message: str
    product_id: Optional[int] = None
