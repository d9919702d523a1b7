import re

from tuckshop.utils.ids import base36, build_payment_reference, generate_order_number


def test_base36():
    assert base36(0) == "0"
    assert base36(35) == "Z"
    assert base36(36) == "10"
    assert base36(1700000000000) == "LOYW3V28"


def test_order_number_shape():
    n = generate_order_number(ts_ms=1700000000000)
    assert re.fullmatch(r"ORD-LOYW3V28-[0-9A-Z]{4}", n)


def test_order_numbers_differ_within_one_millisecond():
    numbers = {generate_order_number(ts_ms=1) for _ in range(50)}
    assert len(numbers) > 1


def test_payment_reference_is_traceable():
    ref = build_payment_reference("ORD-ABC-1234")
    assert ref.startswith("PAY-ORD-ABC-1234-")


def test_payment_reference_suffix_is_random_hex():
    a = build_payment_reference("ORD-ABC-1234")
    b = build_payment_reference("ORD-ABC-1234")
    assert a != b
    assert re.fullmatch(r"PAY-ORD-ABC-1234-[0-9a-f]{16}", a)
