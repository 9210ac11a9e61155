"""
Create the tables, the default admin account and, with --demo, a sample
catalog with stock history booked through the ledger.

    python seed_data.py [--demo] [--products N]
"""
import argparse
import os
import random
from decimal import Decimal

from sqlalchemy import select

from stockroom.database import SessionLocal, engine
from stockroom.models import Base, User
from stockroom.security import get_password_hash
from stockroom.crud.products import crud_product
from stockroom.crud.ledger import stock_ledger
from stockroom.exceptions import StockroomError
from stockroom.schemas.inventory import ProductCreate

BRANDS = {
    "Laptop": ["Dell", "HP", "Lenovo", "Asus", "Apple"],
    "Monitor": ["Dell", "LG", "Samsung", "BenQ"],
    "Keyboard": ["Logitech", "Corsair", "Keychron"],
    "Mouse": ["Logitech", "Razer", "Zowie"],
    "Router": ["TP-Link", "Netgear", "Ubiquiti"],
    "SSD": ["Samsung", "Crucial", "Kingston"],
}
MODELS = ["Pro", "Air", "Gaming", "Business", "Lite", "Ultra"]


def ensure_admin(db) -> User:
    admin = db.execute(select(User).where(User.username == "admin")).scalar_one_or_none()
    if admin:
        print("ℹ️  Admin user already exists")
        return admin

    password = os.getenv("ADMIN_PASSWORD", "admin123")
    admin = User(
        username="admin",
        email="admin@inventory.local",
        password_hash=get_password_hash(password),
        firstname="System",
        lastname="Administrator",
        role="admin",
        is_active=True,
    )
    db.add(admin)
    db.commit()
    print(f"✅ Created admin user: admin / {password}")
    return admin


def seed_demo(db, count: int, actor: str):
    rng = random.Random(42)
    created = 0

    for i in range(count):
        product_type = rng.choice(list(BRANDS))
        brand = rng.choice(BRANDS[product_type])
        code = f"{product_type[:3].upper()}-{i + 1:04d}"
        if crud_product.get_by_code(db, code):
            continue

        product, _ = crud_product.create_product(
            db,
            obj_in=ProductCreate(
                name=f"{brand} {product_type} {rng.choice(MODELS)}",
                code=code,
                type=product_type,
                brand=brand,
                price=Decimal(str(round(rng.uniform(10, 1500), 2))),
                quantity=rng.randint(0, 120),
            ),
            actor=actor,
        )
        created += 1

        # Some history on top of the opening balance
        for n in range(rng.randint(0, 6)):
            try:
                if rng.random() < 0.6:
                    stock_ledger.record_out(
                        db, product.id, rng.randint(1, 15),
                        reference_number=f"SO-{product.id:04d}-{n}", actor=actor,
                    )
                else:
                    stock_ledger.record_in(
                        db, product.id, rng.randint(5, 40),
                        reference_number=f"PO-{product.id:04d}-{n}", actor=actor,
                    )
            except StockroomError as e:
                print(f"   skipped movement for {code}: {e.message}")

    print(f"✅ Created {created} demo product(s)")


def main():
    parser = argparse.ArgumentParser(description="Seed the stockroom database")
    parser.add_argument("--demo", action="store_true", help="also create demo products and stock history")
    parser.add_argument("--products", type=int, default=25, help="number of demo products")
    args = parser.parse_args()

    Base.metadata.create_all(bind=engine)
    print("✅ Database tables verified")

    db = SessionLocal()
    try:
        admin = ensure_admin(db)
        if args.demo:
            seed_demo(db, args.products, actor=admin.username)
    finally:
        db.close()

    print("\n✅ Seed complete")


if __name__ == "__main__":
    main()
