"""
Request validators for ledger operations.
Bulk requests arrive either as one operation object or as a list; both are
normalized to a list of plain dicts before reaching the ledger, and each
entry is checked on its own so failures can be reported by index.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ValidationError as SchemaValidationError

from stockroom.exceptions import ValidationError
from stockroom.schemas.stock import TransactionType, BulkOperationIn


@dataclass(frozen=True)
class StockOperation:
    product_id: int
    type: TransactionType
    quantity: int
    reference_number: Optional[str] = None
    notes: Optional[str] = None


def normalize_operations(operations: Union[None, BaseModel, dict, List[Any]]) -> List[Dict[str, Any]]:
    """Turn a single operation or a batch into a non-empty list of dicts."""
    if operations is None:
        raise ValidationError("Operations array is required", field="operations")

    if not isinstance(operations, list):
        operations = [operations]

    if not operations:
        raise ValidationError("Operations array is required", field="operations")

    normalized = []
    for op in operations:
        if isinstance(op, BaseModel):
            op = op.model_dump()
        elif not isinstance(op, dict):
            op = {}
        normalized.append(op)
    return normalized


def positive_int(value: Any) -> Optional[int]:
    """Return value as a positive int, or None when it is not one."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        value = int(value)
    if isinstance(value, str):
        value = value.strip()
        if not (value.isascii() and value.isdigit()):
            return None
        value = int(value)
    if not isinstance(value, int) or value <= 0:
        return None
    return value


def parse_transaction_type(value: Any) -> Optional[TransactionType]:
    if isinstance(value, TransactionType):
        return value
    if not isinstance(value, str):
        return None
    try:
        return TransactionType(value.strip().lower())
    except ValueError:
        return None


def validate_operation(index: int, raw: Dict[str, Any]) -> Tuple[Optional[StockOperation], Optional[Dict[str, Any]]]:
    """
    Check the shape of one bulk entry.
    Returns (operation, None) when valid, or (None, error_entry) otherwise.
    """
    invalid = {"index": index, "product_id": raw.get("product_id"), "error": "Invalid operation data"}
    try:
        entry = BulkOperationIn.model_validate(raw)
    except SchemaValidationError:
        return None, invalid

    product_id = positive_int(entry.product_id)
    quantity = positive_int(entry.quantity)

    if product_id is None or quantity is None or entry.type in (None, ""):
        return None, invalid

    tx_type = parse_transaction_type(entry.type)
    if tx_type is None:
        return None, {"index": index, "product_id": product_id, "error": "Invalid transaction type"}

    return StockOperation(
        product_id=product_id,
        type=tx_type,
        quantity=quantity,
        reference_number=entry.reference_number or None,
        notes=entry.notes or None,
    ), None


def require_positive_quantity(quantity: Any) -> int:
    value = positive_int(quantity)
    if value is None:
        raise ValidationError("Quantity must be a positive integer", field="quantity")
    return value


def require_product_id(product_id: Any) -> int:
    value = positive_int(product_id)
    if value is None:
        raise ValidationError("Product ID is required", field="product_id")
    return value
