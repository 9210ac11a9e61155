import itertools
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from stockroom import models
from stockroom.database import Base, get_db, make_engine
from stockroom.main import app
from stockroom.security import get_password_hash, create_access_token
from stockroom.crud.products import crud_product
from stockroom.schemas.inventory import ProductCreate


@pytest.fixture
def engine():
    engine = make_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _make_user(db, username, role, password="secret123"):
    user = models.User(
        username=username,
        email=f"{username}@example.com",
        password_hash=get_password_hash(password),
        role=role,
        is_active=True,
    )
    db.add(user)
    db.commit()
    return user


def _auth_headers(user):
    token = create_access_token({"sub": user.username, "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_user(db):
    return _make_user(db, "admin", "admin")


@pytest.fixture
def staff_user(db):
    return _make_user(db, "staff", "staff")


@pytest.fixture
def plain_user(db):
    return _make_user(db, "viewer", "user")


@pytest.fixture
def admin_headers(admin_user):
    return _auth_headers(admin_user)


@pytest.fixture
def staff_headers(staff_user):
    return _auth_headers(staff_user)


@pytest.fixture
def user_headers(plain_user):
    return _auth_headers(plain_user)


@pytest.fixture
def make_product(db):
    """Create a product; a non-zero quantity is booked as its opening transaction."""
    counter = itertools.count(1)

    def _make(quantity=0, **overrides):
        n = next(counter)
        data = {
            "name": f"Product {n}",
            "code": f"P-{n:03d}",
            "type": "Widget",
            "brand": "Acme",
            "price": Decimal("10.00"),
            "quantity": quantity,
        }
        data.update(overrides)
        product, _ = crud_product.create_product(db, obj_in=ProductCreate(**data), actor="fixture")
        return product

    return _make


@pytest.fixture
def stored_quantity(db):
    """Read the committed quantity of a product, bypassing the identity map."""
    def _read(product_id):
        db.expire_all()
        return db.execute(
            select(models.Product.quantity).where(models.Product.id == product_id)
        ).scalar_one()

    return _read


@pytest.fixture
def ledger_totals(db):
    """(sum of IN, sum of OUT, count) over a product's committed transactions."""
    def _totals(product_id):
        db.expire_all()
        rows = db.execute(
            select(models.StockTransaction.transaction_type, models.StockTransaction.quantity)
            .where(models.StockTransaction.product_id == product_id)
        ).all()
        total_in = sum(q for t, q in rows if t == "in")
        total_out = sum(q for t, q in rows if t == "out")
        return total_in, total_out, len(rows)

    return _totals
