"""
Product catalog operations.
The catalog owns product metadata; on-hand quantity is only ever moved by
the stock ledger, including the opening balance of a new product.
"""
from sqlalchemy import select, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import logging
from typing import List, Optional, Tuple

from stockroom.models import Product
from stockroom.crud.base import CRUDBase, unit_of_work
from stockroom.crud.ledger import stock_ledger, LedgerResult
from stockroom.exceptions import ConflictError, NotFoundError, ValidationError, InfrastructureError
from stockroom.schemas.inventory import ProductCreate, ProductUpdate
from stockroom.schemas.stock import TransactionType

logger = logging.getLogger(__name__)

OPENING_REFERENCE = "OPENING"


class CRUDProduct(CRUDBase[Product]):
    def __init__(self):
        super().__init__(Product)

    def get_by_code(self, db: Session, code: str) -> Optional[Product]:
        """Get product by its business code"""
        try:
            stmt = select(Product).where(Product.code == code)
            return db.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error getting product by code {code}: {e}")
            raise InfrastructureError("Failed to fetch product") from e

    def list_products(
        self,
        db: Session,
        *,
        type: Optional[str] = None,
        brand: Optional[str] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 1000,
    ) -> List[Product]:
        """All products, newest first, optionally filtered"""
        stmt = select(Product).order_by(Product.created_at.desc(), Product.id.desc())
        if type:
            stmt = stmt.where(Product.type == type)
        if brand:
            stmt = stmt.where(Product.brand == brand)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(Product.name.ilike(pattern), Product.code.ilike(pattern)))
        stmt = stmt.offset(skip).limit(limit)

        try:
            return list(db.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error listing products: {e}")
            raise InfrastructureError("Failed to fetch products") from e

    def create_product(
        self, db: Session, *, obj_in: ProductCreate, actor: Optional[str] = None
    ) -> Tuple[Product, Optional[LedgerResult]]:
        """
        Insert a product with zero stock, then book any opening quantity as
        an IN transaction in the same unit of work.
        """
        if self.get_by_code(db, obj_in.code):
            raise ConflictError("Product code already exists")

        opening = None
        with unit_of_work(db, "Failed to create product", integrity_message="Product code already exists"):
            data = obj_in.model_dump(exclude={"quantity"})
            product = Product(**data, quantity=0)
            db.add(product)
            db.flush()

            if obj_in.quantity > 0:
                opening = stock_ledger.apply_movement(
                    db, product, TransactionType.IN, obj_in.quantity,
                    reference_number=OPENING_REFERENCE, notes="Opening balance", actor=actor,
                )

        logger.info(f"Product {product.code} created (id={product.id}, opening quantity={obj_in.quantity})")
        return product, opening

    def update_product(self, db: Session, *, id: int, obj_in: ProductUpdate) -> Tuple[Product, dict]:
        """
        Edit product metadata. Returns the product and the previous values
        of the changed fields.
        """
        product = self.get(db, id)
        if product is None:
            raise NotFoundError("Product not found")

        changes = obj_in.model_dump(exclude_unset=True)
        quantity = changes.pop("quantity", None)
        if quantity is not None and quantity != product.quantity:
            raise ValidationError(
                "Quantity cannot be edited directly; use the stock-in/stock-out endpoints",
                field="quantity",
            )

        for field in ("name", "code", "type", "price"):
            if field in changes and changes[field] is None:
                raise ValidationError(f"{field} must not be empty", field=field)

        if "code" in changes and changes["code"] != product.code:
            existing = self.get_by_code(db, changes["code"])
            if existing and existing.id != product.id:
                raise ConflictError("Product code already exists")

        old_values = {}
        with unit_of_work(db, "Failed to update product", integrity_message="Product code already exists"):
            for field, value in changes.items():
                current = getattr(product, field)
                if current != value:
                    old_values[field] = current
                    setattr(product, field, value)
            db.flush()

        return product, old_values

    def delete_product(self, db: Session, *, id: int) -> Product:
        """Delete product; its transactions are removed with it"""
        product = self.remove(db, id=id)
        if product is None:
            raise NotFoundError("Product not found")
        logger.info(f"Product {product.code} (id={id}) deleted with its transactions")
        return product


crud_product = CRUDProduct()
