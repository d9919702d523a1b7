import pytest

from tuckshop.core.accounts import hash_password, valid_email, valid_name, valid_password, verify_password
from tuckshop.core.errors import AccountError


def test_password_hash_round_trip():
    stored = hash_password("secret123", iterations=1000)
    assert stored.startswith("pbkdf2_sha256$1000$")
    assert verify_password("secret123", stored)
    assert not verify_password("secret124", stored)


def test_same_password_gets_distinct_salts():
    assert hash_password("secret123") != hash_password("secret123")


def test_malformed_hash_never_verifies():
    assert not verify_password("x", "")
    assert not verify_password("x", "md5$abc")
    assert not verify_password("x", "bcrypt$1$00$00")


def test_field_validators():
    assert valid_name("Al") and not valid_name(" A ")
    assert valid_email("ada@example.com") and not valid_email("ada@example") and not valid_email("a b@c.d")
    assert valid_password("123456") and not valid_password("12345")


def test_name_is_capped_at_column_width():
    assert valid_name("A" * 120)
    assert not valid_name("A" * 121)


def test_register_and_login(services):
    user = services.accounts.register("Grace Hopper", "Grace@Example.com", "cobol42", "15550009999")
    assert user.email == "grace@example.com"

    assert services.accounts.login("grace@example.com", "cobol42", "15550009999").id == user.id
    assert services.accounts.login("grace@example.com", "wrong!", "15550009999") is None
    assert services.accounts.login("nobody@example.com", "cobol42", "15550009999") is None


def test_register_rejects_duplicate_email(services, customer):
    with pytest.raises(AccountError):
        services.accounts.register("Ada Two", "ADA@example.com", "secret123", "15550002222")


@pytest.mark.parametrize("name,email,password", [
    ("A", "a@b.co", "secret1"),
    ("Alan", "not-an-email", "secret1"),
    ("Alan", "alan@b.co", "123"),
    ("A" * 121, "long@b.co", "secret1"),
])
def test_register_rejects_invalid_fields(services, name, email, password):
    with pytest.raises(AccountError):
        services.accounts.register(name, email, password, None)


def test_phone_moves_to_last_login(services, customer):
    other = services.accounts.register("Alan Turing", "alan@example.com", "enigma99", None)

    services.accounts.login("alan@example.com", "enigma99", customer.phone_number)

    assert services.repo.find_user_by_phone(customer.phone_number).id == other.id
    assert services.repo.find_user_by_email("ada@example.com").phone_number is None
