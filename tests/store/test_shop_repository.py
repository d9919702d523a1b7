from decimal import Decimal
from unittest.mock import MagicMock

from redis.exceptions import ConnectionError as RedisConnectionError

from tuckshop.store.cache import ShopCache


def test_categories_count_only_in_stock_products(services, catalog):
    cats = {c.name: c.product_count for c in services.repo.list_categories()}
    assert cats == {"Drinks": 1, "Snacks": 2}


def test_category_list_is_cached_until_stock_changes(services, catalog, customer, fake_redis):
    services.repo.list_categories()
    assert fake_redis.get("categories:list:10") is not None

    services.repo.add_to_cart(customer.id, catalog["Chocolate"], 3)
    services.checkout.checkout(customer.id, "CASH")

    assert fake_redis.get("categories:list:10") is None
    cats = {c.name: c.product_count for c in services.repo.list_categories()}
    assert cats["Snacks"] == 1


def test_products_hide_out_of_stock(services, catalog):
    names = [p.name for p in services.repo.list_products(catalog["Drinks"])]
    assert names == ["Water"]
    assert services.repo.get_product(catalog["Sold Out Soda"]).stock == 0


def test_cart_lines_accumulate(services, catalog, customer):
    assert services.repo.add_to_cart(customer.id, catalog["Chips"], 2) == 2
    assert services.repo.add_to_cart(customer.id, catalog["Chips"], 3) == 5

    cart = services.repo.get_cart(customer.id)
    assert [(l.name, l.quantity) for l in cart.lines] == [("Chips", 5)]
    assert cart.total == Decimal("6.00")

    services.repo.clear_cart(customer.id)
    assert services.repo.get_cart(customer.id).is_empty


def test_find_order_by_number_is_scoped_to_owner(services, catalog, customer):
    services.repo.add_to_cart(customer.id, catalog["Water"], 1)
    result = services.checkout.checkout(customer.id, "CASH")

    assert services.repo.find_order_by_number(customer.id, result.order_number.lower()).id == result.order_id
    assert services.repo.find_order_by_number(customer.id + 1, result.order_number) is None
    assert [o.id for o in services.repo.recent_orders(customer.id)] == [result.order_id]


def test_cache_falls_back_to_loader_when_redis_is_down():
    redis = MagicMock()
    redis.get.side_effect = RedisConnectionError("down")
    redis.set.side_effect = RedisConnectionError("down")
    cache = ShopCache(redis)

    assert cache.get_or_load("k", 60, lambda: [1, 2]) == [1, 2]


def test_invalidation_failure_is_swallowed():
    redis = MagicMock()
    redis.delete.side_effect = RedisConnectionError("down")
    redis.scan_iter.side_effect = RedisConnectionError("down")
    cache = ShopCache(redis)

    cache.invalidate_cart(1)
    cache.invalidate_products()
    cache.invalidate_orders(1)
