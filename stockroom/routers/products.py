"""
Product catalog router.
Staff and admins maintain products; quantity moves only through /stock.
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import Any, Dict, Optional

from stockroom.database import get_db
from stockroom.security import get_current_user, require_staff, require_admin, audit_log_action
from stockroom import models
from stockroom.crud.products import crud_product
from stockroom.exceptions import NotFoundError
from stockroom.schemas.inventory import ProductCreate, ProductUpdate, ProductResponse

router = APIRouter(prefix="/inventory", tags=["inventory"])

def _product_payload(product: models.Product) -> Dict[str, Any]:
    return ProductResponse.model_validate(product).model_dump(mode="json")

@router.get("/products")
def list_products(
    type: Optional[str] = None,
    brand: Optional[str] = None,
    search: Optional[str] = None,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    products = crud_product.list_products(db, type=type, brand=brand, search=search)
    return {"success": True, "products": [_product_payload(p) for p in products]}

@router.get("/products/{product_id}")
def get_product(
    product_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    product = crud_product.get(db, id=product_id)
    if not product:
        raise NotFoundError("Product not found")
    return {"success": True, "product": _product_payload(product)}

@router.post("/products", status_code=status.HTTP_201_CREATED)
def create_product(
    payload: ProductCreate,
    current_user: models.User = Depends(require_staff),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Create a product. A non-zero quantity is booked as an opening IN
    transaction so the ledger accounts for every unit on hand.
    """
    product, opening = crud_product.create_product(db, obj_in=payload, actor=current_user.username)

    audit_log_action(
        db=db,
        user_id=current_user.id,
        action="PRODUCT_CREATE",
        table_name="products",
        record_id=product.id,
        new_values=_product_payload(product),
        notes=f"{current_user.username} created product {product.code}"
    )

    return {
        "success": True,
        "message": "Product created successfully",
        "productId": product.id,
        "product": _product_payload(product),
        "opening_transaction_id": opening.transaction.id if opening else None,
    }

@router.put("/products/{product_id}")
def update_product(
    product_id: int,
    payload: ProductUpdate,
    current_user: models.User = Depends(require_staff),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    product, old_values = crud_product.update_product(db, id=product_id, obj_in=payload)

    if old_values:
        audit_log_action(
            db=db,
            user_id=current_user.id,
            action="PRODUCT_UPDATE",
            table_name="products",
            record_id=product.id,
            old_values={k: str(v) if v is not None else None for k, v in old_values.items()},
            new_values={k: str(getattr(product, k)) if getattr(product, k) is not None else None for k in old_values},
            notes=f"{current_user.username} updated product {product.code}"
        )

    return {"success": True, "message": "Product updated successfully", "product": _product_payload(product)}

@router.delete("/products/{product_id}")
def delete_product(
    product_id: int,
    current_user: models.User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Delete a product together with its stock transactions (admin only)."""
    product = crud_product.delete_product(db, id=product_id)

    audit_log_action(
        db=db,
        user_id=current_user.id,
        action="PRODUCT_DELETE",
        table_name="products",
        record_id=product_id,
        old_values={"code": product.code, "name": product.name, "quantity": product.quantity},
        notes=f"Admin {current_user.username} deleted product {product.code}"
    )
    return {"success": True, "message": "Product deleted successfully"}
