"""
Seed a demo catalog (categories + products) into the configured database.
Idempotent: existing categories/products (matched by name) are left alone.
"""
from decimal import Decimal

from sqlalchemy import select

from tuckshop.store.db import init_schema, make_engine, make_session_factory
from tuckshop.store.orm import Category, Product

CATALOG = {
    "Snacks": [
        ("Potato Chips", "Salted, 50g bag", "1.20", 40),
        ("Chocolate Bar", "Milk chocolate, 45g", "1.50", 25),
        ("Granola Bar", "Oats and honey", "0.95", 12),
    ],
    "Drinks": [
        ("Bottled Water", "500ml still water", "0.80", 60),
        ("Orange Juice", "330ml, no added sugar", "1.75", 18),
        ("Cola", "330ml can", "1.10", 4),
    ],
    "Stationery": [
        ("Ballpoint Pen", "Blue ink", "0.50", 100),
        ("Exercise Book", "A4, 72 pages", "1.25", 30),
    ],
}


def seed(session_factory) -> int:
    """Returns the number of products created."""
    created = 0
    with session_factory.begin() as db:
        for cat_name, products in CATALOG.items():
            category = db.scalar(select(Category).where(Category.name == cat_name))
            if category is None:
                category = Category(name=cat_name)
                db.add(category)
                db.flush()
            for name, description, price, stock in products:
                exists = db.scalar(
                    select(Product.id).where(Product.name == name, Product.category_id == category.id)
                )
                if exists is not None:
                    continue
                db.add(Product(name=name, description=description, price=Decimal(price), stock=stock,
                               category_id=category.id))
                created += 1
    return created


def main():
    engine = make_engine()
    init_schema(engine)
    created = seed(make_session_factory(engine))
    print(f"OK: seeded {created} products into {engine.url.render_as_string(hide_password=True)}")


if __name__ == "__main__":
    main()
