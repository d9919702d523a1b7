"""
Chat-side account handling: registration and login by email + password.

Passwords are stored as "pbkdf2_sha256$<iterations>$<salt hex>$<hash hex>".
"""
import hashlib
import hmac
import os
import re
from typing import Optional

from tuckshop.core.errors import AccountError
from tuckshop.observability.logging import log
from tuckshop.settings import settings
from tuckshop.store.shop_repo import ShopRepository, UserView

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

MIN_NAME_LEN = 2
MAX_NAME_LEN = 120  # users.name column width
MAX_EMAIL_LEN = 255
MIN_PASSWORD_LEN = 6


def hash_password(password: str, iterations: int = None) -> str:
    iterations = int(iterations or settings.PASSWORD_HASH_ITERATIONS)
    salt = os.urandom(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return f"pbkdf2_sha256${iterations}${salt.hex()}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        algo, iterations, salt_hex, hash_hex = (stored or "").split("$")
    except ValueError:
        return False
    if algo != "pbkdf2_sha256":
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), bytes.fromhex(salt_hex), int(iterations))
    return hmac.compare_digest(digest.hex(), hash_hex)


def valid_name(name: str) -> bool:
    return MIN_NAME_LEN <= len((name or "").strip()) <= MAX_NAME_LEN


def valid_email(email: str) -> bool:
    email = (email or "").strip()
    return len(email) <= MAX_EMAIL_LEN and bool(EMAIL_RE.match(email))


def valid_password(password: str) -> bool:
    return len(password or "") >= MIN_PASSWORD_LEN


class AccountService:
    def __init__(self, repo: ShopRepository):
        self.repo = repo

    def email_available(self, email: str) -> bool:
        return self.repo.find_user_by_email(email) is None

    def register(self, name: str, email: str, password: str, phone: Optional[str]) -> UserView:
        if not valid_name(name):
            raise AccountError(f"Name must be {MIN_NAME_LEN} to {MAX_NAME_LEN} characters")
        if not valid_email(email):
            raise AccountError("Invalid email address")
        if not valid_password(password):
            raise AccountError("Password must be at least 6 characters")
        if not self.email_available(email):
            raise AccountError("Email already registered")

        user = self.repo.create_user(name, email, hash_password(password), phone)
        log(event="account_registered", userId=user.id, phone=phone)
        return user

    def login(self, email: str, password: str, phone: Optional[str]) -> Optional[UserView]:
        """Returns the user on success and links the chat phone to the account."""
        user = self.repo.find_user_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            log(event="account_login_failed", phone=phone)
            return None
        if phone:
            self.repo.link_phone(user.id, phone)
        log(event="account_login", userId=user.id, phone=phone)
        return user
