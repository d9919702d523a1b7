"""
Conversation State Machine
--------------------------
One handler per Step. A handler receives the parsed command and returns a
Transition; it never mutates the session itself. The driver (`run_turn`) applies
transitions and, when a handler asks for it, renders the next step's prompt by
feeding it a synthetic Render command.

Numbered lists write an ordinal -> id map into the selection when rendered; the
next reply is resolved against that stored map, so a catalog change between the
two messages can never shift what "2" means.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from tuckshop.core import messages
from tuckshop.core.accounts import AccountService, valid_email, valid_name, valid_password
from tuckshop.core.checkout import CheckoutService
from tuckshop.core.commands import (
    Back,
    Command,
    FreeText,
    GlobalReset,
    Help,
    NumericChoice,
    Render,
    parse_command,
)
from tuckshop.core.errors import AccountError, EmptyCart, InsufficientStock, OrderNotFound, OrderStateError
from tuckshop.observability.logging import log
from tuckshop.settings import settings
from tuckshop.store.models import ANONYMOUS_STEPS, ConversationSession, Selection, Step
from tuckshop.store.orm import OrderStatus, PaymentType
from tuckshop.store.shop_repo import ShopRepository, UserView

MENU_KEYWORDS = {
    "browse": 1,
    "shop": 1,
    "cart": 2,
    "checkout": 3,
    "orders": 4,
    "track": 5,
    "logout": 6,
}

PAYMENT_CHOICES = {1: PaymentType.CASH, 2: PaymentType.PREPAID}


@dataclass
class Transition:
    next_step: Step
    updates: Dict = field(default_factory=dict)
    text: str = ""
    render_next: bool = False
    clear_selection: bool = False
    login: Optional[UserView] = None
    logout: bool = False


@dataclass
class TurnResult:
    text: str
    logged_out: bool = False
    steps: List[Step] = field(default_factory=list)


def _index_map(ids) -> Dict[str, int]:
    return {str(i): int(entity_id) for i, entity_id in enumerate(ids, start=1)}


def apply_transition(session: ConversationSession, t: Transition) -> None:
    if t.login is not None:
        session.user_id = t.login.id
        session.user_name = t.login.name
    if t.logout:
        session.user_id = None
        session.user_name = None
    if t.clear_selection:
        session.selection = Selection()
    session.move_to(t.next_step, t.updates)


class ConversationStateMachine:
    def __init__(self, repo: ShopRepository, accounts: AccountService, checkout: CheckoutService,
                 max_render_hops: int = None):
        self.repo = repo
        self.accounts = accounts
        self.checkout = checkout
        self.max_render_hops = int(settings.MAX_RENDER_HOPS if max_render_hops is None else max_render_hops)
        self._handlers: Dict[Step, Callable[[ConversationSession, Command, str], Transition]] = {
            Step.WELCOME: self._welcome,
            Step.REGISTER_NAME: self._register_name,
            Step.REGISTER_EMAIL: self._register_email,
            Step.REGISTER_PASSWORD: self._register_password,
            Step.LOGIN_EMAIL: self._login_email,
            Step.LOGIN_PASSWORD: self._login_password,
            Step.MAIN_MENU: self._main_menu,
            Step.BROWSE_CATEGORIES: self._browse_categories,
            Step.BROWSE_PRODUCTS: self._browse_products,
            Step.PRODUCT_DETAIL: self._product_detail,
            Step.ADD_QUANTITY: self._add_quantity,
            Step.VIEW_CART: self._view_cart,
            Step.CHECKOUT_PAYMENT: self._checkout_payment,
            Step.MY_ORDERS: self._my_orders,
            Step.ORDER_DETAIL: self._order_detail,
            Step.TRACK_ORDER: self._track_order,
        }

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------
    def run_turn(self, session: ConversationSession, text: str) -> TurnResult:
        command = parse_command(text)
        raw = (text or "").strip()
        result = TurnResult(text="")
        texts = []
        hops = 0

        while True:
            t = self.transition(session, command, raw)
            apply_transition(session, t)
            result.steps.append(session.step)
            if t.text:
                texts.append(t.text)
            if t.logout:
                result.logged_out = True
            if not t.render_next or hops >= self.max_render_hops:
                break
            hops += 1
            command, raw = Render(), ""

        result.text = "\n\n".join(texts)
        return result

    def transition(self, session: ConversationSession, command: Command, raw: str = "") -> Transition:
        if isinstance(command, GlobalReset):
            return Transition(session.home_step(), clear_selection=True, render_next=True)
        if isinstance(command, Help):
            return Transition(session.step, text=messages.help_text())

        if not session.is_authenticated and session.step not in ANONYMOUS_STEPS:
            return Transition(Step.WELCOME, clear_selection=True, render_next=True)
        if session.is_authenticated and session.step in ANONYMOUS_STEPS:
            return Transition(Step.MAIN_MENU, clear_selection=True, render_next=True)

        return self._handlers[session.step](session, command, raw)

    @staticmethod
    def _stay(session: ConversationSession, text: str = messages.INVALID_INPUT) -> Transition:
        return Transition(session.step, text=text)

    @staticmethod
    def _go(step: Step, updates: Dict = None, text: str = "") -> Transition:
        return Transition(step, updates=updates or {}, text=text, render_next=True)

    # ------------------------------------------------------------------
    # Onboarding
    # ------------------------------------------------------------------
    def _welcome(self, session, command, raw):
        if isinstance(command, NumericChoice) and command.n == 1:
            return self._go(Step.REGISTER_NAME)
        if isinstance(command, NumericChoice) and command.n == 2:
            return self._go(Step.LOGIN_EMAIL)
        return Transition(Step.WELCOME, text=messages.welcome())

    def _register_name(self, session, command, raw):
        if isinstance(command, Render):
            return Transition(Step.REGISTER_NAME, text=messages.REGISTER_NAME)
        if isinstance(command, Back):
            return self._go(Step.WELCOME)
        if not valid_name(raw):
            return self._stay(session, messages.REGISTER_NAME_INVALID)
        return self._go(Step.REGISTER_EMAIL, {"temp_name": raw})

    def _register_email(self, session, command, raw):
        if isinstance(command, Render):
            return Transition(Step.REGISTER_EMAIL, text=messages.REGISTER_EMAIL)
        if isinstance(command, Back):
            return self._go(Step.REGISTER_NAME)
        email = raw.lower()
        if not valid_email(email):
            return self._stay(session, messages.REGISTER_EMAIL_INVALID)
        if not self.accounts.email_available(email):
            return self._stay(session, messages.REGISTER_EMAIL_TAKEN)
        return self._go(Step.REGISTER_PASSWORD, {"temp_email": email})

    def _register_password(self, session, command, raw):
        if isinstance(command, Render):
            return Transition(Step.REGISTER_PASSWORD, text=messages.REGISTER_PASSWORD)
        sel = session.selection
        if not sel.temp_name or not sel.temp_email:
            return self._go(Step.REGISTER_NAME)
        if not valid_password(raw):
            return self._stay(session, messages.REGISTER_PASSWORD_INVALID)
        try:
            user = self.accounts.register(sel.temp_name, sel.temp_email, raw, session.phone)
        except AccountError:
            return Transition(Step.REGISTER_EMAIL, updates={"temp_name": sel.temp_name},
                              text=messages.REGISTER_EMAIL_TAKEN)
        return Transition(Step.MAIN_MENU, text=messages.register_success(user.name), render_next=True,
                          clear_selection=True, login=user)

    def _login_email(self, session, command, raw):
        if isinstance(command, Render):
            return Transition(Step.LOGIN_EMAIL, text=messages.LOGIN_EMAIL)
        if isinstance(command, Back):
            return self._go(Step.WELCOME)
        email = raw.lower()
        if not valid_email(email):
            return self._stay(session, messages.REGISTER_EMAIL_INVALID)
        return self._go(Step.LOGIN_PASSWORD, {"temp_email": email})

    def _login_password(self, session, command, raw):
        if isinstance(command, Render):
            return Transition(Step.LOGIN_PASSWORD, text=messages.LOGIN_PASSWORD)
        email = session.selection.temp_email
        if not email:
            return self._go(Step.LOGIN_EMAIL)
        user = self.accounts.login(email, raw, session.phone)
        if user is None:
            return Transition(Step.LOGIN_EMAIL, text=messages.LOGIN_FAILED)
        return Transition(Step.MAIN_MENU, text=messages.login_success(user.name), render_next=True,
                          clear_selection=True, login=user)

    # ------------------------------------------------------------------
    # Main menu
    # ------------------------------------------------------------------
    def _main_menu(self, session, command, raw):
        if isinstance(command, (Render, Back)):
            return Transition(Step.MAIN_MENU, text=messages.main_menu(session.user_name))

        choice = None
        if isinstance(command, NumericChoice):
            choice = command.n
        elif isinstance(command, FreeText):
            choice = MENU_KEYWORDS.get(command.word)

        if choice == 1:
            return self._go(Step.BROWSE_CATEGORIES)
        if choice == 2:
            return self._go(Step.VIEW_CART)
        if choice == 3:
            return self._go(Step.CHECKOUT_PAYMENT)
        if choice == 4:
            return self._go(Step.MY_ORDERS)
        if choice == 5:
            return self._go(Step.TRACK_ORDER)
        if choice == 6:
            return Transition(Step.WELCOME, text=messages.LOGOUT, clear_selection=True, logout=True)
        return self._stay(session)

    # ------------------------------------------------------------------
    # Browsing
    # ------------------------------------------------------------------
    def _browse_categories(self, session, command, raw):
        if isinstance(command, Render):
            cats = self.repo.list_categories()
            return Transition(Step.BROWSE_CATEGORIES, updates={"list_index_map": _index_map(c.id for c in cats)},
                              text=messages.categories(cats))
        if isinstance(command, Back):
            return self._go(Step.MAIN_MENU)
        if isinstance(command, NumericChoice):
            category_id = session.selection.list_index_map.get(str(command.n))
            if category_id is not None:
                return self._go(Step.BROWSE_PRODUCTS, {"category_id": category_id})
        return self._stay(session)

    def _browse_products(self, session, command, raw):
        if isinstance(command, Render):
            category = self.repo.get_category(session.selection.category_id) \
                if session.selection.category_id is not None else None
            if category is None:
                return self._go(Step.BROWSE_CATEGORIES)
            items = self.repo.list_products(category.id)
            return Transition(Step.BROWSE_PRODUCTS, updates={"list_index_map": _index_map(p.id for p in items)},
                              text=messages.products(category.name, items))
        if isinstance(command, Back):
            return self._go(Step.BROWSE_CATEGORIES)
        if isinstance(command, NumericChoice):
            product_id = session.selection.list_index_map.get(str(command.n))
            if product_id is not None:
                return self._go(Step.PRODUCT_DETAIL, {"product_id": product_id})
        return self._stay(session)

    def _product_detail(self, session, command, raw):
        if isinstance(command, Back):
            return self._go(Step.BROWSE_PRODUCTS)

        product = self.repo.get_product(session.selection.product_id) \
            if session.selection.product_id is not None else None
        if product is None:
            return self._go(Step.BROWSE_PRODUCTS, text=messages.PRODUCT_UNAVAILABLE)

        if isinstance(command, Render):
            return Transition(Step.PRODUCT_DETAIL, updates={"max_stock": product.stock},
                              text=messages.product_detail(product))
        if isinstance(command, NumericChoice) and command.n == 1:
            if product.stock <= 0:
                return Transition(Step.PRODUCT_DETAIL, updates={"max_stock": 0}, text=messages.OUT_OF_STOCK)
            return self._go(Step.ADD_QUANTITY, {"max_stock": product.stock})
        return self._stay(session)

    def _quantity_limit(self, session) -> int:
        return min(int(settings.MAX_QUANTITY_PER_ADD), int(session.selection.max_stock or 0))

    def _add_quantity(self, session, command, raw):
        if isinstance(command, Back):
            return self._go(Step.PRODUCT_DETAIL)

        limit = self._quantity_limit(session)
        if isinstance(command, Render):
            product = self.repo.get_product(session.selection.product_id) \
                if session.selection.product_id is not None else None
            if product is None:
                return self._go(Step.BROWSE_PRODUCTS, text=messages.PRODUCT_UNAVAILABLE)
            return Transition(Step.ADD_QUANTITY, text=messages.add_quantity(product.name, limit))

        if not isinstance(command, NumericChoice) or not (1 <= command.n <= limit):
            return self._stay(session, messages.quantity_invalid(limit))

        product = self.repo.get_product(session.selection.product_id)
        if product is None:
            return self._go(Step.BROWSE_PRODUCTS, text=messages.PRODUCT_UNAVAILABLE)
        self.repo.add_to_cart(session.user_id, product.id, command.n)
        log(event="cart_item_added", phone=session.phone, productId=product.id, quantity=command.n)
        return Transition(Step.MAIN_MENU, text=messages.added_to_cart(product.name, command.n))

    # ------------------------------------------------------------------
    # Cart & checkout
    # ------------------------------------------------------------------
    def _view_cart(self, session, command, raw):
        if isinstance(command, Back):
            return self._go(Step.MAIN_MENU)

        cart = self.repo.get_cart(session.user_id)
        if cart.is_empty:
            return Transition(Step.MAIN_MENU, text=messages.CART_EMPTY)
        if isinstance(command, Render):
            return Transition(Step.VIEW_CART, text=messages.cart(cart))
        if isinstance(command, NumericChoice) and command.n == 1:
            return self._go(Step.CHECKOUT_PAYMENT)
        if isinstance(command, NumericChoice) and command.n == 2:
            self.repo.clear_cart(session.user_id)
            return self._go(Step.MAIN_MENU, text=messages.CART_CLEARED)
        return self._stay(session)

    def _checkout_payment(self, session, command, raw):
        if isinstance(command, Back):
            return self._go(Step.VIEW_CART)

        if isinstance(command, Render):
            cart = self.repo.get_cart(session.user_id)
            if cart.is_empty:
                return Transition(Step.MAIN_MENU, text=messages.CART_EMPTY)
            return Transition(Step.CHECKOUT_PAYMENT, text=messages.checkout_payment(cart.total))

        payment_type = PAYMENT_CHOICES.get(command.n) if isinstance(command, NumericChoice) else None
        if payment_type is None:
            return self._stay(session)

        try:
            result = self.checkout.checkout(session.user_id, payment_type)
        except EmptyCart:
            return Transition(Step.MAIN_MENU, text=messages.CART_EMPTY)
        except InsufficientStock as e:
            return self._go(Step.MAIN_MENU, text=messages.insufficient_stock(e.product_name, e.available))

        return self._go(Step.MAIN_MENU, {"pending_order_id": result.order_id}, text=result.customer_text())

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------
    def _my_orders(self, session, command, raw):
        if isinstance(command, Render):
            orders = self.repo.recent_orders(session.user_id)
            return Transition(Step.MY_ORDERS, updates={"list_index_map": _index_map(o.id for o in orders)},
                              text=messages.my_orders(orders))
        if isinstance(command, Back):
            return self._go(Step.MAIN_MENU)
        if isinstance(command, NumericChoice):
            order_id = session.selection.list_index_map.get(str(command.n))
            if order_id is not None:
                return self._go(Step.ORDER_DETAIL, {"order_id": order_id})
        return self._stay(session)

    def _order_detail(self, session, command, raw):
        if isinstance(command, Back):
            return self._go(Step.MY_ORDERS)

        order = self.repo.get_order(session.user_id, session.selection.order_id) \
            if session.selection.order_id is not None else None
        if order is None:
            return self._go(Step.MY_ORDERS, text=messages.ORDER_NOT_FOUND)

        can_reissue = order.payment_type == PaymentType.CASH.value and order.status == OrderStatus.PENDING.value
        if isinstance(command, Render):
            return Transition(Step.ORDER_DETAIL, text=messages.order_status(order, can_reissue=can_reissue))
        if isinstance(command, NumericChoice) and command.n == 1 and can_reissue:
            try:
                artifact = self.checkout.reissue_cash_artifact(session.user_id, order.id)
            except (OrderNotFound, OrderStateError):
                return self._stay(session)
            return Transition(Step.ORDER_DETAIL, text=messages.pickup_code_cash(order.order_number,
                                                                                artifact.qr_url))
        return self._stay(session)

    def _track_order(self, session, command, raw):
        if isinstance(command, Render):
            return Transition(Step.TRACK_ORDER, text=messages.TRACK_ORDER)
        if isinstance(command, Back):
            return self._go(Step.MAIN_MENU)
        order = self.repo.find_order_by_number(session.user_id, raw) if raw else None
        if order is None:
            return self._stay(session, messages.ORDER_NOT_FOUND)
        return self._go(Step.ORDER_DETAIL, {"order_id": order.id})
