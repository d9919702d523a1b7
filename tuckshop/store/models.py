import enum
import time
from dataclasses import dataclass, field, fields as dc_fields
from typing import Dict, Optional


class Step(str, enum.Enum):
    WELCOME = "WELCOME"

    # Registration / login
    REGISTER_NAME = "REGISTER_NAME"
    REGISTER_EMAIL = "REGISTER_EMAIL"
    REGISTER_PASSWORD = "REGISTER_PASSWORD"
    LOGIN_EMAIL = "LOGIN_EMAIL"
    LOGIN_PASSWORD = "LOGIN_PASSWORD"

    MAIN_MENU = "MAIN_MENU"

    # Browsing
    BROWSE_CATEGORIES = "BROWSE_CATEGORIES"
    BROWSE_PRODUCTS = "BROWSE_PRODUCTS"
    PRODUCT_DETAIL = "PRODUCT_DETAIL"
    ADD_QUANTITY = "ADD_QUANTITY"

    # Cart & checkout
    VIEW_CART = "VIEW_CART"
    CHECKOUT_PAYMENT = "CHECKOUT_PAYMENT"

    # Orders
    MY_ORDERS = "MY_ORDERS"
    ORDER_DETAIL = "ORDER_DETAIL"
    TRACK_ORDER = "TRACK_ORDER"


ANONYMOUS_STEPS = frozenset({
    Step.WELCOME,
    Step.REGISTER_NAME,
    Step.REGISTER_EMAIL,
    Step.REGISTER_PASSWORD,
    Step.LOGIN_EMAIL,
    Step.LOGIN_PASSWORD,
})


@dataclass
class Selection:
    category_id: Optional[int] = None
    product_id: Optional[int] = None
    order_id: Optional[int] = None
    pending_order_id: Optional[int] = None
    # Displayed ordinal ("1".."N") -> entity id, rebuilt on every list render
    list_index_map: Dict[str, int] = field(default_factory=dict)
    # Stock captured when PRODUCT_DETAIL was rendered
    max_stock: Optional[int] = None
    temp_name: Optional[str] = None
    temp_email: Optional[str] = None


# Fields every step may carry (last order placed in this conversation)
_ALWAYS = ("pending_order_id",)

# Selection fields valid per step; anything else is dropped when the step is entered.
STEP_FIELDS = {
    Step.WELCOME: (),
    Step.REGISTER_NAME: (),
    Step.REGISTER_EMAIL: ("temp_name",),
    Step.REGISTER_PASSWORD: ("temp_name", "temp_email"),
    Step.LOGIN_EMAIL: (),
    Step.LOGIN_PASSWORD: ("temp_email",),
    Step.MAIN_MENU: _ALWAYS,
    Step.BROWSE_CATEGORIES: _ALWAYS + ("list_index_map",),
    Step.BROWSE_PRODUCTS: _ALWAYS + ("category_id", "list_index_map"),
    Step.PRODUCT_DETAIL: _ALWAYS + ("category_id", "product_id", "max_stock"),
    Step.ADD_QUANTITY: _ALWAYS + ("category_id", "product_id", "max_stock"),
    Step.VIEW_CART: _ALWAYS,
    Step.CHECKOUT_PAYMENT: _ALWAYS,
    Step.MY_ORDERS: _ALWAYS + ("list_index_map",),
    Step.ORDER_DETAIL: _ALWAYS + ("order_id",),
    Step.TRACK_ORDER: _ALWAYS,
}

SELECTION_FIELDS = tuple(f.name for f in dc_fields(Selection))


def scope_selection(step: Step, current: Selection, updates: Dict) -> Selection:
    """Merge updates into the selection, keeping only the fields valid for `step`."""
    allowed = set(STEP_FIELDS.get(step, ()))
    merged = {}
    for name in SELECTION_FIELDS:
        value = updates[name] if name in updates else getattr(current, name)
        if name in allowed:
            merged[name] = value
    return Selection(**merged)


@dataclass
class ConversationSession:
    phone: str = ""
    step: Step = Step.WELCOME
    user_id: Optional[int] = None
    user_name: Optional[str] = None
    selection: Selection = field(default_factory=Selection)
    created_at: int = 0
    last_activity_at: int = 0

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    def home_step(self) -> Step:
        return Step.MAIN_MENU if self.is_authenticated else Step.WELCOME

    def reset(self) -> None:
        self.step = self.home_step()
        self.selection = Selection()

    def move_to(self, step: Step, updates: Optional[Dict] = None) -> None:
        self.selection = scope_selection(step, self.selection, updates or {})
        self.step = step

    @classmethod
    def new(cls, phone: str) -> "ConversationSession":
        now = int(time.time())
        return cls(phone=phone, created_at=now, last_activity_at=now)
