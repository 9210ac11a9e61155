"""
Routers for the Stockroom API
"""

from .auth import router as auth_router
from .products import router as products_router
from .stock import router as stock_router
from .dashboard import router as dashboard_router
from .reports import router as reports_router

__all__ = ["auth_router", "products_router", "stock_router", "dashboard_router", "reports_router"]
