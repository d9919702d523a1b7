"""
Catalog / cart / order data access.

Thin accessors over the SQL store. Every call opens its own short transaction and
returns plain view objects, so nothing handed to the conversation layer is bound to
a live ORM session.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import selectinload

from tuckshop.settings import settings
from tuckshop.store.cache import ShopCache
from tuckshop.store.orm import Cart, CartItem, Category, Order, Product, User


@dataclass
class CategoryView:
    id: int
    name: str
    product_count: int = 0


@dataclass
class ProductView:
    id: int
    name: str
    price: Decimal
    stock: int
    description: Optional[str] = None
    category_id: Optional[int] = None


@dataclass
class CartLine:
    product_id: int
    name: str
    unit_price: Decimal
    quantity: int
    stock: int

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass
class CartView:
    cart_id: Optional[int] = None
    lines: List[CartLine] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def total(self) -> Decimal:
        return sum((l.subtotal for l in self.lines), Decimal("0"))


@dataclass
class OrderView:
    id: int
    order_number: str
    status: str
    payment_type: str
    total_amount: Decimal
    item_count: int
    created_at: object = None
    paid_at: object = None


@dataclass
class UserView:
    id: int
    name: str
    email: str
    phone_number: Optional[str] = None
    password_hash: str = ""


def order_view(o: Order) -> OrderView:
    return OrderView(
        id=o.id,
        order_number=o.order_number,
        status=o.status.value,
        payment_type=o.payment_type.value,
        total_amount=Decimal(o.total_amount),
        item_count=sum(i.quantity for i in o.items),
        created_at=o.created_at,
        paid_at=o.paid_at,
    )


def user_view(u: User) -> UserView:
    return UserView(id=u.id, name=u.name, email=u.email, phone_number=u.phone_number,
                    password_hash=u.password_hash or "")


class ShopRepository:
    def __init__(self, session_factory, cache: ShopCache):
        self.session_factory = session_factory
        self.cache = cache

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------
    def list_categories(self, limit: int = None) -> List[CategoryView]:
        limit = int(limit or settings.LIST_PAGE_SIZE)

        def _load():
            with self.session_factory() as db:
                rows = db.execute(
                    select(Category.id, Category.name, func.count(Product.id))
                    .outerjoin(Product, (Product.category_id == Category.id) & (Product.stock > 0))
                    .group_by(Category.id, Category.name)
                    .order_by(Category.name)
                    .limit(limit)
                ).all()
            return [{"id": r[0], "name": r[1], "product_count": int(r[2] or 0)} for r in rows]

        data = self.cache.get_or_load(f"categories:list:{limit}", settings.CATEGORY_CACHE_TTL_SEC, _load)
        return [CategoryView(**d) for d in data]

    def get_category(self, category_id: int) -> Optional[CategoryView]:
        with self.session_factory() as db:
            c = db.get(Category, category_id)
            return CategoryView(id=c.id, name=c.name) if c else None

    def list_products(self, category_id: int, limit: int = None) -> List[ProductView]:
        limit = int(limit or settings.LIST_PAGE_SIZE)
        with self.session_factory() as db:
            rows = db.scalars(
                select(Product)
                .where(Product.category_id == category_id, Product.stock > 0)
                .order_by(Product.name)
                .limit(limit)
            ).all()
            return [
                ProductView(id=p.id, name=p.name, price=Decimal(p.price), stock=p.stock,
                            description=p.description, category_id=p.category_id)
                for p in rows
            ]

    def get_product(self, product_id: int) -> Optional[ProductView]:
        with self.session_factory() as db:
            p = db.get(Product, product_id)
            if p is None:
                return None
            return ProductView(id=p.id, name=p.name, price=Decimal(p.price), stock=p.stock,
                               description=p.description, category_id=p.category_id)

    # ------------------------------------------------------------------
    # Cart
    # ------------------------------------------------------------------
    def add_to_cart(self, user_id: int, product_id: int, quantity: int) -> int:
        """Add `quantity` of a product to the user's cart. Returns the new line quantity."""
        with self.session_factory.begin() as db:
            cart = db.scalar(select(Cart).where(Cart.user_id == user_id))
            if cart is None:
                cart = Cart(user_id=user_id)
                db.add(cart)
                db.flush()

            item = db.scalar(
                select(CartItem).where(CartItem.cart_id == cart.id, CartItem.product_id == product_id)
            )
            if item is None:
                item = CartItem(cart_id=cart.id, product_id=product_id, quantity=int(quantity))
                db.add(item)
            else:
                item.quantity = CartItem.quantity + int(quantity)
            db.flush()
            db.refresh(item)
            new_qty = int(item.quantity)

        self.cache.invalidate_cart(user_id)
        return new_qty

    def get_cart(self, user_id: int) -> CartView:
        with self.session_factory() as db:
            cart = db.scalar(
                select(Cart)
                .where(Cart.user_id == user_id)
                .options(selectinload(Cart.items).selectinload(CartItem.product))
            )
            if cart is None:
                return CartView()
            return CartView(
                cart_id=cart.id,
                lines=[
                    CartLine(
                        product_id=i.product_id,
                        name=i.product.name,
                        unit_price=Decimal(i.product.price),
                        quantity=int(i.quantity),
                        stock=int(i.product.stock),
                    )
                    for i in cart.items
                ],
            )

    def clear_cart(self, user_id: int) -> None:
        with self.session_factory.begin() as db:
            cart_id = db.scalar(select(Cart.id).where(Cart.user_id == user_id))
            if cart_id is not None:
                db.execute(delete(CartItem).where(CartItem.cart_id == cart_id))
        self.cache.invalidate_cart(user_id)

    # ------------------------------------------------------------------
    # Orders (read side)
    # ------------------------------------------------------------------
    def recent_orders(self, user_id: int, limit: int = None) -> List[OrderView]:
        limit = int(limit or settings.MY_ORDERS_LIMIT)
        with self.session_factory() as db:
            rows = db.scalars(
                select(Order)
                .where(Order.user_id == user_id)
                .options(selectinload(Order.items))
                .order_by(Order.created_at.desc(), Order.id.desc())
                .limit(limit)
            ).all()
            return [order_view(o) for o in rows]

    def get_order(self, user_id: int, order_id: int) -> Optional[OrderView]:
        with self.session_factory() as db:
            o = db.scalar(
                select(Order)
                .where(Order.id == order_id, Order.user_id == user_id)
                .options(selectinload(Order.items))
            )
            return order_view(o) if o else None

    def find_order_by_number(self, user_id: int, order_number: str) -> Optional[OrderView]:
        with self.session_factory() as db:
            o = db.scalar(
                select(Order)
                .where(Order.order_number == order_number.strip().upper(), Order.user_id == user_id)
                .options(selectinload(Order.items))
            )
            return order_view(o) if o else None

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def find_user_by_email(self, email: str) -> Optional[UserView]:
        with self.session_factory() as db:
            u = db.scalar(select(User).where(User.email == email.strip().lower()))
            return user_view(u) if u else None

    def find_user_by_phone(self, phone: str) -> Optional[UserView]:
        with self.session_factory() as db:
            u = db.scalar(select(User).where(User.phone_number == phone))
            return user_view(u) if u else None

    def create_user(self, name: str, email: str, password_hash: str, phone: Optional[str]) -> UserView:
        with self.session_factory.begin() as db:
            if phone:
                self._release_phone(db, phone)
            u = User(name=name.strip(), email=email.strip().lower(), password_hash=password_hash,
                     phone_number=phone or None)
            db.add(u)
            db.flush()
            return user_view(u)

    def link_phone(self, user_id: int, phone: str) -> None:
        with self.session_factory.begin() as db:
            u = db.get(User, user_id)
            if u is None or u.phone_number == phone:
                return
            self._release_phone(db, phone, keep_user_id=user_id)
            u.phone_number = phone

    @staticmethod
    def _release_phone(db, phone: str, keep_user_id: Optional[int] = None) -> None:
        # A WhatsApp number belongs to whichever account last logged in from it.
        other = db.scalar(select(User).where(User.phone_number == phone))
        if other is not None and other.id != keep_user_id:
            other.phone_number = None
            db.flush()
