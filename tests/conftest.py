import fnmatch
import time
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from tuckshop.payments.provider import PaymentProvider
from tuckshop.services import build_services
from tuckshop.settings import settings
from tuckshop.store.db import init_schema, make_engine
from tuckshop.store.orm import Category, Product
from tuckshop.transport.whatsapp_client import WhatsAppClient


class FakeRedis:
    """In-memory stand-in for the subset of redis-py the app uses (decode_responses=True)."""

    def __init__(self):
        self.data = {}
        self.expiry = {}

    def _alive(self, key):
        exp = self.expiry.get(key)
        if exp is not None and time.time() >= exp:
            self.data.pop(key, None)
            self.expiry.pop(key, None)
        return key in self.data

    def get(self, key):
        return self.data.get(key) if self._alive(key) else None

    def set(self, key, value, ex=None, px=None, nx=False):
        if nx and self._alive(key):
            return None
        self.data[key] = str(value)
        self.expiry.pop(key, None)
        if ex is not None:
            self.expiry[key] = time.time() + int(ex)
        elif px is not None:
            self.expiry[key] = time.time() + int(px) / 1000.0
        return True

    def delete(self, *keys):
        n = 0
        for k in keys:
            if self._alive(k):
                n += 1
            self.data.pop(k, None)
            self.expiry.pop(k, None)
        return n

    def exists(self, key):
        return 1 if self._alive(key) else 0

    def incr(self, key, amount=1):
        value = int(self.get(key) or 0) + int(amount)
        self.data[key] = str(value)
        return value

    def ttl(self, key):
        if not self._alive(key):
            return -2
        exp = self.expiry.get(key)
        return -1 if exp is None else int(exp - time.time())

    def scan_iter(self, match=None):
        for k in list(self.data.keys()):
            if self._alive(k) and (match is None or fnmatch.fnmatch(k, match)):
                yield k

    def eval(self, script, numkeys, *args):
        # Compare-and-delete (release) or compare-and-pexpire (renew) on the lock key.
        key, token = args[0], args[1]
        if self.get(key) != token:
            return 0
        if "pexpire" in script:
            self.expiry[key] = time.time() + int(args[2]) / 1000.0
            return 1
        return self.delete(key)


@pytest.fixture(autouse=True)
def fast_password_hashing(monkeypatch):
    monkeypatch.setattr(settings, "PASSWORD_HASH_ITERATIONS", 1000)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def engine():
    e = make_engine("sqlite:///:memory:", echo=False)
    init_schema(e)
    yield e
    e.dispose()


@pytest.fixture
def transport():
    t = MagicMock(spec=WhatsAppClient)
    t.send_text.return_value = True
    return t


@pytest.fixture
def payments():
    p = MagicMock(spec=PaymentProvider)
    p.create_payment_link.return_value = "https://pay.example.test/checkout/abc"
    return p


@pytest.fixture
def services(fake_redis, engine, transport, payments):
    return build_services(redis=fake_redis, engine=engine, transport=transport, payments=payments)


@pytest.fixture
def catalog(services):
    """Two categories; returns {name: id} for categories and products."""
    ids = {}
    with services.session_factory.begin() as db:
        snacks = Category(name="Snacks")
        drinks = Category(name="Drinks")
        db.add_all([snacks, drinks])
        db.flush()
        products = [
            Product(name="Chips", price=Decimal("1.20"), stock=40, category=snacks, description="Salted"),
            Product(name="Chocolate", price=Decimal("1.50"), stock=3, category=snacks),
            Product(name="Water", price=Decimal("0.80"), stock=60, category=drinks),
            Product(name="Sold Out Soda", price=Decimal("1.10"), stock=0, category=drinks),
        ]
        db.add_all(products)
        db.flush()
        ids["Snacks"], ids["Drinks"] = snacks.id, drinks.id
        for p in products:
            ids[p.name] = p.id
    return ids


CUSTOMER_PHONE = "15550001111"


@pytest.fixture
def customer(services):
    return services.accounts.register("Ada Lovelace", "ada@example.com", "secret123", CUSTOMER_PHONE)


@pytest.fixture
def stock_of(services):
    def _read(product_id):
        with services.session_factory() as db:
            return db.get(Product, product_id).stock

    return _read
