import pytest
from sqlalchemy import select

from stockroom import models
from stockroom.crud.ledger import stock_ledger
from stockroom.crud.products import OPENING_REFERENCE
from stockroom.schemas.stock import TransactionType
from stockroom.exceptions import (
    BatchRejectedError, ConflictError, InsufficientStockError, NotFoundError, ValidationError
)


def test_opening_quantity_is_booked_as_in_transaction(db, make_product, ledger_totals):
    product = make_product(quantity=25)

    tx = db.execute(
        select(models.StockTransaction).where(models.StockTransaction.product_id == product.id)
    ).scalar_one()
    assert tx.transaction_type == "in"
    assert tx.quantity == 25
    assert tx.reference_number == OPENING_REFERENCE
    assert ledger_totals(product.id) == (25, 0, 1)


def test_product_without_opening_quantity_has_no_transactions(make_product, ledger_totals):
    product = make_product(quantity=0)
    assert ledger_totals(product.id) == (0, 0, 0)


def test_record_in_and_out_move_quantity(db, make_product, stored_quantity):
    product = make_product(quantity=10)

    result = stock_ledger.record_in(db, product.id, 5, reference_number="PO-1", actor="alice")
    assert (result.previous_quantity, result.new_quantity) == (10, 15)
    assert result.transaction.created_by == "alice"

    result = stock_ledger.record_out(db, product.id, 12, actor="bob")
    assert (result.previous_quantity, result.new_quantity) == (15, 3)
    assert stored_quantity(product.id) == 3


def test_record_out_beyond_stock_changes_nothing(db, make_product, stored_quantity, ledger_totals):
    product = make_product(quantity=100)

    with pytest.raises(InsufficientStockError) as exc_info:
        stock_ledger.record_out(db, product.id, 150, actor="alice")

    assert exc_info.value.message == "Insufficient stock. Available: 100"
    assert exc_info.value.available == 100
    assert stored_quantity(product.id) == 100
    assert ledger_totals(product.id) == (100, 0, 1)


def test_record_out_of_exact_stock_reaches_zero(db, make_product, stored_quantity):
    product = make_product(quantity=4)
    stock_ledger.record_out(db, product.id, 4)
    assert stored_quantity(product.id) == 0


def test_unknown_product_is_not_found(db):
    with pytest.raises(NotFoundError):
        stock_ledger.record_in(db, 9999, 1)


@pytest.mark.parametrize("quantity", [0, -3, "x", "³", None])
def test_non_positive_quantity_is_rejected(db, make_product, quantity, ledger_totals):
    product = make_product(quantity=5)
    with pytest.raises(ValidationError):
        stock_ledger.record_in(db, product.id, quantity)
    assert ledger_totals(product.id) == (5, 0, 1)


def test_quantity_always_matches_ledger(db, make_product, stored_quantity, ledger_totals):
    product = make_product(quantity=20)
    moves = [("in", 7), ("out", 3), ("out", 30), ("in", 1), ("out", 25), ("out", 1)]

    for tx_type, qty in moves:
        try:
            if tx_type == "in":
                stock_ledger.record_in(db, product.id, qty)
            else:
                stock_ledger.record_out(db, product.id, qty)
        except InsufficientStockError:
            pass
        total_in, total_out, _ = ledger_totals(product.id)
        assert stored_quantity(product.id) == total_in - total_out
        assert stored_quantity(product.id) >= 0

    assert stored_quantity(product.id) == 0


# ====================
# BULK
# ====================

def test_bulk_applies_every_operation(db, make_product, stored_quantity):
    a = make_product(quantity=10)
    b = make_product(quantity=0)

    results = stock_ledger.record_bulk(db, [
        {"product_id": a.id, "type": "OUT", "quantity": 4},
        {"product_id": b.id, "type": "in", "quantity": 8},
        {"product_id": a.id, "type": "in", "quantity": 1},
    ], actor="carol")

    assert [r.new_quantity for r in results] == [6, 8, 7]
    assert [r.previous_quantity for r in results] == [10, 0, 6]
    assert stored_quantity(a.id) == 7
    assert stored_quantity(b.id) == 8


def test_bulk_checks_against_earlier_entries_in_the_batch(db, make_product, stored_quantity, ledger_totals):
    product = make_product(quantity=10)

    with pytest.raises(BatchRejectedError) as exc_info:
        stock_ledger.record_bulk(db, [
            {"product_id": product.id, "type": "out", "quantity": 6},
            {"product_id": product.id, "type": "out", "quantity": 6},
        ])

    errors = exc_info.value.errors
    assert len(errors) == 1
    assert errors[0]["index"] == 1
    assert errors[0]["error"] == "Insufficient stock. Available: 4"
    assert stored_quantity(product.id) == 10
    assert ledger_totals(product.id) == (10, 0, 1)


def test_bulk_is_all_or_nothing(db, make_product, stored_quantity, ledger_totals):
    good = make_product(quantity=5)
    short = make_product(quantity=1)

    with pytest.raises(BatchRejectedError) as exc_info:
        stock_ledger.record_bulk(db, [
            {"product_id": good.id, "type": "in", "quantity": 3},
            {"product_id": short.id, "type": "out", "quantity": 2},
            {"product_id": 4242, "type": "in", "quantity": 1},
            {"product_id": good.id, "type": "move", "quantity": 1},
            {"type": "in"},
        ])

    errors = exc_info.value.errors
    assert [e["index"] for e in errors] == [1, 2, 3, 4]
    assert errors[1]["error"] == "Product not found"
    assert errors[2]["error"] == "Invalid transaction type"
    assert errors[3]["error"] == "Invalid operation data"
    assert exc_info.value.message == "4 operation(s) failed"

    assert stored_quantity(good.id) == 5
    assert ledger_totals(good.id) == (5, 0, 1)
    assert stored_quantity(short.id) == 1


def test_bulk_rejects_non_ascii_digits_by_index(db, make_product, stored_quantity):
    product = make_product(quantity=5)

    with pytest.raises(BatchRejectedError) as exc_info:
        stock_ledger.record_bulk(db, [
            {"product_id": product.id, "type": "in", "quantity": 1},
            {"product_id": "²", "type": "in", "quantity": 1},
        ])

    assert exc_info.value.errors == [{"index": 1, "product_id": "²", "error": "Invalid operation data"}]
    assert stored_quantity(product.id) == 5


def test_out_on_stale_product_is_refused_by_guarded_update(
    db, session_factory, make_product, stored_quantity, ledger_totals
):
    product = make_product(quantity=10)

    other = session_factory()
    try:
        stock_ledger.record_out(other, product.id, 8, actor="other")
    finally:
        other.close()

    # the in-memory row still reads 10 while the store holds 2
    assert product.quantity == 10
    with pytest.raises(InsufficientStockError) as exc_info:
        stock_ledger.apply_movement(db, product, TransactionType.OUT, 5, actor="late")
    db.rollback()

    assert exc_info.value.available == 2
    assert stored_quantity(product.id) == 2
    assert ledger_totals(product.id) == (10, 8, 2)


def test_bulk_accepts_single_operation(db, make_product, stored_quantity):
    product = make_product(quantity=0)
    results = stock_ledger.record_bulk(db, {"product_id": product.id, "type": "IN", "quantity": 2})
    assert len(results) == 1
    assert stored_quantity(product.id) == 2


def test_bulk_rejects_empty_batch(db):
    with pytest.raises(ValidationError):
        stock_ledger.record_bulk(db, [])


# ====================
# DELETE WITH REVERSAL
# ====================

def test_deleting_in_transaction_reverses_it(db, make_product, stored_quantity, ledger_totals):
    product = make_product(quantity=10)
    tx_id = stock_ledger.record_in(db, product.id, 5).transaction.id
    assert stored_quantity(product.id) == 15

    result = stock_ledger.delete_transaction(db, tx_id, actor="admin")

    assert (result.previous_quantity, result.new_quantity) == (15, 10)
    assert stored_quantity(product.id) == 10
    assert db.get(models.StockTransaction, tx_id) is None
    assert ledger_totals(product.id) == (10, 0, 1)


def test_deleting_out_transaction_puts_stock_back(db, make_product, stored_quantity):
    product = make_product(quantity=10)
    removed = stock_ledger.record_out(db, product.id, 7)

    stock_ledger.delete_transaction(db, removed.transaction.id)
    assert stored_quantity(product.id) == 10


def test_deleting_consumed_in_transaction_is_refused(db, make_product, stored_quantity, ledger_totals):
    product = make_product(quantity=10)
    opening_id = db.execute(
        select(models.StockTransaction.id).where(models.StockTransaction.product_id == product.id)
    ).scalar_one()
    stock_ledger.record_out(db, product.id, 8)

    with pytest.raises(ConflictError) as exc_info:
        stock_ledger.delete_transaction(db, opening_id)

    assert exc_info.value.message == "Cannot delete transaction: reversal would make stock negative"
    assert stored_quantity(product.id) == 2
    assert ledger_totals(product.id) == (10, 8, 2)


def test_deleting_unknown_transaction_is_not_found(db):
    with pytest.raises(NotFoundError):
        stock_ledger.delete_transaction(db, 12345)


# ====================
# READ SIDE
# ====================

def test_summary_totals(db, make_product):
    product = make_product(quantity=10)
    stock_ledger.record_in(db, product.id, 5)
    stock_ledger.record_out(db, product.id, 3)

    summary = stock_ledger.summary(db, product.id)
    assert summary["current_quantity"] == 12
    assert summary["total_stock_in"] == 15
    assert summary["total_stock_out"] == 3
    assert summary["total_transactions"] == 3


def test_summary_unaffected_by_other_products(db, make_product):
    product = make_product(quantity=10)
    before = stock_ledger.summary(db, product.id)

    other = make_product(quantity=3)
    stock_ledger.record_out(db, other.id, 2)

    assert stock_ledger.summary(db, product.id) == before


def test_list_transactions_filters_and_orders_newest_first(db, make_product):
    a = make_product(quantity=10)
    b = make_product(quantity=10)
    stock_ledger.record_out(db, a.id, 1)
    stock_ledger.record_out(db, a.id, 2)
    stock_ledger.record_out(db, b.id, 3)

    rows = stock_ledger.list_transactions(db, product_id=a.id)
    assert [r["quantity"] for r in rows] == [2, 1, 10]
    assert all(r["product_code"] == a.code for r in rows)

    outs = stock_ledger.list_transactions(db, tx_type=TransactionType.OUT, limit=2)
    assert len(outs) == 2
    assert all(r["transaction_type"] == "out" for r in outs)
