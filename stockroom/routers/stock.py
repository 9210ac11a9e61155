"""
Stock ledger router: stock-in, stock-out, bulk batches and transaction
reversal, plus the transaction list and per-product summary.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Any, Dict, Optional

from stockroom.database import get_db
from stockroom.security import get_current_user, require_staff, require_admin, audit_log_action
from stockroom import models
from stockroom.crud.ledger import stock_ledger, LedgerResult
from stockroom.exceptions import ValidationError
from stockroom.schemas.stock import (
    StockMovementRequest, BulkStockRequest, TransactionResponse, ProductStockSummary
)
from stockroom.validators import parse_transaction_type

router = APIRouter(prefix="/stock", tags=["stock"])

def _actor(created_by: Optional[str], current_user: models.User) -> str:
    """Who the transaction is attributed to."""
    return (created_by or "").strip() or current_user.username

def _movement_payload(result: LedgerResult, quantity_key: str) -> Dict[str, Any]:
    return {
        "id": result.transaction.id,
        "product_name": result.product.name,
        "product_code": result.product.code,
        "previous_quantity": result.previous_quantity,
        quantity_key: result.quantity,
        "new_quantity": result.new_quantity,
    }

def _audit_movement(db: Session, current_user: models.User, action: str, result: LedgerResult, actor: str):
    audit_log_action(
        db=db,
        user_id=current_user.id,
        action=action,
        table_name="stock_transactions",
        record_id=result.transaction.id,
        new_values={
            "product_id": result.product.id,
            "quantity": result.quantity,
            "previous_quantity": result.previous_quantity,
            "new_quantity": result.new_quantity,
            "created_by": actor,
        },
    )

# ====================
# READ
# ====================

@router.get("/transactions")
def list_transactions(
    product_id: Optional[int] = None,
    type: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    tx_type = None
    if type:
        tx_type = parse_transaction_type(type)
        if tx_type is None:
            raise ValidationError("Invalid transaction type", field="type")

    rows = stock_ledger.list_transactions(db, product_id=product_id, tx_type=tx_type, limit=limit)
    return {
        "success": True,
        "transactions": [TransactionResponse(**row).model_dump(mode="json") for row in rows]
    }

@router.get("/summary/{product_id}")
def get_summary(
    product_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    summary = ProductStockSummary(**stock_ledger.summary(db, product_id))
    return {"success": True, "summary": summary.model_dump()}

# ====================
# WRITE
# ====================

@router.post("/in")
def stock_in(
    payload: StockMovementRequest,
    current_user: models.User = Depends(require_staff),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    actor = _actor(payload.created_by, current_user)
    result = stock_ledger.record_in(
        db,
        payload.product_id,
        payload.quantity,
        reference_number=payload.reference_number,
        notes=payload.notes,
        actor=actor,
    )
    _audit_movement(db, current_user, "STOCK_IN", result, actor)

    return {
        "success": True,
        "message": "Stock in successful",
        "transaction": _movement_payload(result, "added_quantity"),
    }

@router.post("/out")
def stock_out(
    payload: StockMovementRequest,
    current_user: models.User = Depends(require_staff),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    actor = _actor(payload.created_by, current_user)
    result = stock_ledger.record_out(
        db,
        payload.product_id,
        payload.quantity,
        reference_number=payload.reference_number,
        notes=payload.notes,
        actor=actor,
    )
    _audit_movement(db, current_user, "STOCK_OUT", result, actor)

    return {
        "success": True,
        "message": "Stock out successful",
        "transaction": _movement_payload(result, "removed_quantity"),
    }

@router.post("/bulk")
def stock_bulk(
    payload: BulkStockRequest,
    current_user: models.User = Depends(require_staff),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Apply a batch of stock movements all-or-nothing.
    `operations` may be a single object or a list.
    """
    actor = _actor(payload.created_by, current_user)
    results = stock_ledger.record_bulk(db, payload.operations, actor=actor)

    audit_log_action(
        db=db,
        user_id=current_user.id,
        action="STOCK_BULK",
        table_name="stock_transactions",
        new_values={"transaction_ids": [r.transaction.id for r in results], "created_by": actor},
        notes=f"{len(results)} bulk stock operation(s) by {actor}"
    )

    return {
        "success": True,
        "message": f"{len(results)} operation(s) completed successfully",
        "results": [
            {
                "index": index,
                "transaction_id": r.transaction.id,
                "product_id": r.product.id,
                "product_name": r.product.name,
                "type": r.transaction.transaction_type,
                "quantity": r.quantity,
                "previous_quantity": r.previous_quantity,
                "new_quantity": r.new_quantity,
            }
            for index, r in enumerate(results)
        ],
        "total": len(results),
        "successful": len(results),
        "failed": 0,
    }

@router.delete("/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    current_user: models.User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Delete a transaction and reverse its effect on the product (admin only)."""
    result = stock_ledger.delete_transaction(db, transaction_id, actor=current_user.username)
    reversed_tx = {
        "id": transaction_id,
        "product_id": result.product.id,
        "type": result.transaction.transaction_type,
        "quantity": result.quantity,
        "previous_quantity": result.previous_quantity,
        "new_quantity": result.new_quantity,
    }

    audit_log_action(
        db=db,
        user_id=current_user.id,
        action="STOCK_TRANSACTION_DELETE",
        table_name="stock_transactions",
        record_id=transaction_id,
        old_values=reversed_tx,
        notes=f"Admin {current_user.username} deleted transaction {transaction_id}"
    )

    return {
        "success": True,
        "message": "Transaction deleted and stock reversed",
        "transaction": reversed_tx,
    }
