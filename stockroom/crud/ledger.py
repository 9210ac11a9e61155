"""
Stock ledger:
- products.quantity is a cached projection of stock_transactions
- every movement updates the product row and appends one transaction row
  in the same database transaction, or does neither
- stock never goes negative through IN/OUT/bulk
- transactions are never updated, only deleted with compensation
"""
from dataclasses import dataclass
from sqlalchemy import select, update, func, case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import logging
from typing import Any, Dict, List, Optional

from stockroom.models import Product, StockTransaction
from stockroom.crud.base import unit_of_work
from stockroom.exceptions import (
    NotFoundError, InsufficientStockError, BatchRejectedError, InfrastructureError
)
from stockroom.schemas.stock import TransactionType
from stockroom.validators import (
    normalize_operations, validate_operation, require_positive_quantity, require_product_id
)

logger = logging.getLogger(__name__)


@dataclass
class LedgerResult:
    transaction: StockTransaction
    product: Product
    previous_quantity: int
    new_quantity: int

    @property
    def quantity(self) -> int:
        return self.transaction.quantity


class StockLedger:
    """Single write path for product quantities."""

    # ====================
    # LOCKING
    # ====================

    def _lock_product(self, db: Session, product_id: int) -> Optional[Product]:
        """Re-read the product row under a row lock (SELECT ... FOR UPDATE)."""
        stmt = (
            select(Product)
            .where(Product.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return db.execute(stmt).scalar_one_or_none()

    def _lock_products(self, db: Session, product_ids: List[int]) -> Dict[int, Product]:
        """Lock several product rows in ascending id order."""
        if not product_ids:
            return {}
        stmt = (
            select(Product)
            .where(Product.id.in_(sorted(set(product_ids))))
            .order_by(Product.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return {p.id: p for p in db.execute(stmt).scalars().all()}

    def _shift_quantity(self, db: Session, product: Product, delta: int, guarded: bool = True) -> bool:
        """
        Add delta to the stored quantity relative to its current value.
        A guarded decrement only matches while enough stock remains, so the
        row cannot be driven negative even by a writer that skipped the lock.
        Returns False when the guard did not match.
        """
        stmt = update(Product).where(Product.id == product.id)
        if guarded and delta < 0:
            stmt = stmt.where(Product.quantity >= -delta)
        stmt = stmt.values(quantity=Product.quantity + delta).execution_options(synchronize_session=False)
        result = db.execute(stmt)
        db.refresh(product, ["quantity"])
        return result.rowcount == 1

    # ====================
    # WRITE PATH
    # ====================

    def apply_movement(
        self,
        db: Session,
        product: Product,
        tx_type: TransactionType,
        quantity: int,
        *,
        reference_number: Optional[str] = None,
        notes: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> LedgerResult:
        """
        Move stock for an already locked (or freshly inserted) product and
        append the transaction row. The caller owns the unit of work.
        """
        previous = product.quantity
        delta = quantity if tx_type == TransactionType.IN else -quantity

        if not self._shift_quantity(db, product, delta):
            raise InsufficientStockError(available=product.quantity, product_name=product.name)

        transaction = StockTransaction(
            product_id=product.id,
            transaction_type=tx_type.value,
            quantity=quantity,
            reference_number=reference_number,
            notes=notes,
            created_by=actor,
        )
        db.add(transaction)
        db.flush()

        logger.info(
            f"Stock {tx_type.value.upper()} {quantity} for product {product.id} ({product.code}): "
            f"{previous} -> {product.quantity} by {actor or 'unknown'}"
        )
        return LedgerResult(
            transaction=transaction,
            product=product,
            previous_quantity=previous,
            new_quantity=product.quantity,
        )

    def _record(
        self,
        db: Session,
        tx_type: TransactionType,
        product_id: Any,
        quantity: Any,
        reference_number: Optional[str],
        notes: Optional[str],
        actor: Optional[str],
    ) -> LedgerResult:
        product_id = require_product_id(product_id)
        quantity = require_positive_quantity(quantity)

        with unit_of_work(db, f"Failed to process stock {tx_type.value}"):
            product = self._lock_product(db, product_id)
            if product is None:
                raise NotFoundError("Product not found")

            if tx_type == TransactionType.OUT and product.quantity < quantity:
                logger.warning(
                    f"Stock out rejected for product {product_id}: requested {quantity}, available {product.quantity}"
                )
                raise InsufficientStockError(available=product.quantity, product_name=product.name)

            result = self.apply_movement(
                db, product, tx_type, quantity,
                reference_number=reference_number, notes=notes, actor=actor,
            )
        return result

    def record_in(
        self,
        db: Session,
        product_id: Any,
        quantity: Any,
        reference_number: Optional[str] = None,
        notes: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> LedgerResult:
        """Add stock to a product."""
        return self._record(db, TransactionType.IN, product_id, quantity, reference_number, notes, actor)

    def record_out(
        self,
        db: Session,
        product_id: Any,
        quantity: Any,
        reference_number: Optional[str] = None,
        notes: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> LedgerResult:
        """Remove stock from a product. Fails without effect when stock is short."""
        return self._record(db, TransactionType.OUT, product_id, quantity, reference_number, notes, actor)

    def record_bulk(self, db: Session, operations: Any, actor: Optional[str] = None) -> List[LedgerResult]:
        """
        Apply a batch of IN/OUT operations all-or-nothing.
        Each entry is checked in order against the locked rows plus the
        effect of the earlier entries in the same batch. If any entry fails,
        BatchRejectedError lists every failure and nothing is written.
        """
        raw_operations = normalize_operations(operations)

        with unit_of_work(db, "Failed to process bulk operations"):
            errors: List[Dict[str, Any]] = []
            parsed = []
            for index, raw in enumerate(raw_operations):
                op, error = validate_operation(index, raw)
                if error:
                    errors.append(error)
                else:
                    parsed.append((index, op))

            products = self._lock_products(db, [op.product_id for _, op in parsed])
            projected = {pid: p.quantity for pid, p in products.items()}

            for index, op in parsed:
                product = products.get(op.product_id)
                if product is None:
                    errors.append({"index": index, "product_id": op.product_id, "error": "Product not found"})
                    continue

                available = projected[op.product_id]
                if op.type == TransactionType.OUT:
                    if available < op.quantity:
                        errors.append({
                            "index": index,
                            "product_id": op.product_id,
                            "product_name": product.name,
                            "error": f"Insufficient stock. Available: {available}",
                        })
                        continue
                    projected[op.product_id] = available - op.quantity
                else:
                    projected[op.product_id] = available + op.quantity

            if errors:
                errors.sort(key=lambda e: e["index"])
                logger.warning(f"Bulk stock batch of {len(raw_operations)} rejected: {len(errors)} failure(s)")
                raise BatchRejectedError(errors)

            results = [
                self.apply_movement(
                    db, products[op.product_id], op.type, op.quantity,
                    reference_number=op.reference_number, notes=op.notes, actor=actor,
                )
                for _, op in parsed
            ]
        return results

    def delete_transaction(self, db: Session, transaction_id: int, actor: Optional[str] = None) -> LedgerResult:
        """
        Remove a transaction and reverse its effect on the product quantity.
        The reversal is not checked against current stock; if the store's
        non-negative constraint rejects it, nothing changes and a
        ConflictError is raised.
        """
        with unit_of_work(
            db,
            "Failed to delete transaction",
            integrity_message="Cannot delete transaction: reversal would make stock negative",
        ):
            transaction = db.execute(
                select(StockTransaction)
                .where(StockTransaction.id == transaction_id)
                .with_for_update()
            ).scalar_one_or_none()
            product = self._lock_product(db, transaction.product_id) if transaction is not None else None
            if product is None or transaction is None:
                raise NotFoundError("Transaction not found")

            previous = product.quantity
            tx_type = transaction.transaction_type
            quantity = transaction.quantity
            delta = -quantity if tx_type == TransactionType.IN.value else quantity
            self._shift_quantity(db, product, delta, guarded=False)
            db.delete(transaction)
            db.flush()

        logger.info(
            f"Transaction {transaction_id} ({tx_type.upper()} {quantity}) deleted "
            f"for product {product.id}: {previous} -> {product.quantity} by {actor or 'unknown'}"
        )
        return LedgerResult(
            transaction=transaction,
            product=product,
            previous_quantity=previous,
            new_quantity=product.quantity,
        )

    # ====================
    # READ SIDE
    # ====================

    def list_transactions(
        self,
        db: Session,
        *,
        product_id: Optional[int] = None,
        tx_type: Optional[TransactionType] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        """Transactions joined with their product, newest first."""
        stmt = (
            select(
                StockTransaction,
                Product.name.label("product_name"),
                Product.code.label("product_code"),
                Product.brand.label("product_brand"),
            )
            .join(Product, StockTransaction.product_id == Product.id)
            .order_by(StockTransaction.created_at.desc(), StockTransaction.id.desc())
            .limit(limit)
        )
        if product_id is not None:
            stmt = stmt.where(StockTransaction.product_id == product_id)
        if tx_type is not None:
            stmt = stmt.where(StockTransaction.transaction_type == tx_type.value)

        try:
            rows = db.execute(stmt).all()
        except SQLAlchemyError as e:
            logger.error(f"Error fetching transactions: {e}")
            raise InfrastructureError("Failed to fetch transactions") from e

        return [
            {
                "id": tx.id,
                "product_id": tx.product_id,
                "transaction_type": tx.transaction_type,
                "quantity": tx.quantity,
                "reference_number": tx.reference_number,
                "notes": tx.notes,
                "created_by": tx.created_by,
                "created_at": tx.created_at,
                "product_name": product_name,
                "product_code": product_code,
                "product_brand": product_brand,
            }
            for tx, product_name, product_code, product_brand in rows
        ]

    def summary(self, db: Session, product_id: int) -> Dict[str, Any]:
        """Current quantity and IN/OUT totals for one product."""
        total_in = func.coalesce(func.sum(case(
            (StockTransaction.transaction_type == TransactionType.IN.value, StockTransaction.quantity),
            else_=0,
        )), 0)
        total_out = func.coalesce(func.sum(case(
            (StockTransaction.transaction_type == TransactionType.OUT.value, StockTransaction.quantity),
            else_=0,
        )), 0)
        stmt = (
            select(
                Product.id,
                Product.name,
                Product.code,
                Product.brand,
                Product.quantity.label("current_quantity"),
                total_in.label("total_stock_in"),
                total_out.label("total_stock_out"),
                func.count(StockTransaction.id).label("total_transactions"),
            )
            .outerjoin(StockTransaction, StockTransaction.product_id == Product.id)
            .where(Product.id == product_id)
            .group_by(Product.id, Product.name, Product.code, Product.brand, Product.quantity)
        )

        try:
            row = db.execute(stmt).one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error fetching summary for product {product_id}: {e}")
            raise InfrastructureError("Failed to fetch summary") from e

        if row is None:
            raise NotFoundError("Product not found")

        summary = dict(row._mapping)
        for key in ("total_stock_in", "total_stock_out", "total_transactions"):
            summary[key] = int(summary[key] or 0)
        return summary


stock_ledger = StockLedger()
