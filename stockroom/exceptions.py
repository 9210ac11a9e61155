"""
Error taxonomy shared by the catalog, the stock ledger and the routers.
Every error carries the HTTP status it is reported with; the handlers in
stockroom.main turn them into {"success": false, "message": ...} bodies.
"""
from typing import Any, Dict, List, Optional


class StockroomError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def payload(self) -> Dict[str, Any]:
        return {"success": False, "message": self.message}


class ValidationError(StockroomError):
    """Missing or malformed input."""
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field

    def payload(self) -> Dict[str, Any]:
        body = super().payload()
        if self.field:
            body["field"] = self.field
        return body


class NotFoundError(StockroomError):
    status_code = 404


class InsufficientStockError(StockroomError):
    status_code = 400

    def __init__(self, available: int, product_name: Optional[str] = None):
        super().__init__(f"Insufficient stock. Available: {available}")
        self.available = available
        self.product_name = product_name


class ConflictError(StockroomError):
    status_code = 409


class BatchRejectedError(StockroomError):
    """One or more entries of a bulk request failed; nothing was applied."""
    status_code = 400

    def __init__(self, errors: List[Dict[str, Any]]):
        super().__init__(f"{len(errors)} operation(s) failed")
        self.errors = errors

    def payload(self) -> Dict[str, Any]:
        body = super().payload()
        body["errors"] = self.errors
        return body


class InfrastructureError(StockroomError):
    """The store failed or aborted the unit of work. Safe to retry as a whole."""
    status_code = 500
