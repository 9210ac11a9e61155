"""
Stock ledger schemas.
Single stock-in/out bodies are strictly typed; bulk entries stay loose so
that each bad entry can be reported by its index instead of failing the
whole body.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional, Union
from datetime import datetime
from enum import Enum

class TransactionType(str, Enum):
    IN = "in"
    OUT = "out"

class StockMovementRequest(BaseModel):
    product_id: int = Field(..., gt=0)
    quantity: int = Field(..., gt=0)
    reference_number: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    created_by: Optional[str] = Field(None, max_length=50)

class BulkOperationIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    product_id: Any = None
    type: Any = None
    quantity: Any = None
    reference_number: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None

class BulkStockRequest(BaseModel):
    # A single object is a batch of one; entries are checked per index in the ledger
    operations: Union[List[Any], Dict[str, Any], None] = None
    created_by: Optional[str] = Field(None, max_length=50)

class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    transaction_type: TransactionType
    quantity: int
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    product_name: Optional[str] = None
    product_code: Optional[str] = None
    product_brand: Optional[str] = None

class ProductStockSummary(BaseModel):
    id: int
    name: str
    code: str
    brand: Optional[str] = None
    current_quantity: int
    total_stock_in: int
    total_stock_out: int
    total_transactions: int
