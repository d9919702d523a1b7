import secrets

from tuckshop.utils.time import now_ms

BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def base36(n: int) -> str:
    if n <= 0:
        return "0"
    out = ""
    while n:
        n, rem = divmod(n, 36)
        out = BASE36[rem] + out
    return out


def generate_order_number(ts_ms: int = None) -> str:
    """ORD-<base36 ms timestamp>-<4 random base36 chars>"""
    ts = now_ms() if ts_ms is None else int(ts_ms)
    suffix = "".join(secrets.choice(BASE36) for _ in range(4))
    return f"ORD-{base36(ts)}-{suffix}"


def build_payment_reference(order_number: str) -> str:
    """PAY-<order number>-<16 random hex chars>: unique per attempt, traceable to its order."""
    return f"PAY-{order_number}-{secrets.token_hex(8)}"
