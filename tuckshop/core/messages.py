"""Customer-facing chat texts. Pure formatting; no data access."""
from decimal import Decimal
from typing import Iterable

from tuckshop.settings import settings
from tuckshop.store.shop_repo import CartView, CategoryView, OrderView, ProductView

STATUS_EMOJI = {
    "PENDING": "⏳",
    "PAID": "💳",
    "COMPLETED": "✅",
    "CANCELLED": "❌",
}


def money(amount) -> str:
    return f"{settings.CURRENCY_SYMBOL}{Decimal(amount).quantize(Decimal('0.01'))}"


def stock_level(stock: int) -> str:
    if stock <= 5:
        return "LOW"
    if stock <= 15:
        return "MEDIUM"
    return "HIGH"


def welcome() -> str:
    return (
        f"👋 *Welcome to {settings.STORE_NAME}!*\n\n"
        "Are you a new or returning customer?\n\n"
        "1. Register (New Customer)\n"
        "2. Login (Returning Customer)\n\n"
        "_Reply with 1 or 2_"
    )


def main_menu(name: str) -> str:
    return (
        f"👋 *Hello, {name or 'Customer'}!*\n\n"
        "What would you like to do today?\n\n"
        "1. 🛍️ Browse Products\n"
        "2. 🛒 View Cart\n"
        "3. 💳 Checkout\n"
        "4. 📦 My Orders\n"
        "5. 🔍 Track Order\n"
        "6. 🚪 Logout\n\n"
        "_Reply with a number, or type *help*_"
    )


REGISTER_NAME = "📝 *Registration*\n\nPlease enter your *full name*:"
REGISTER_NAME_INVALID = "Please enter a valid name (2 to 120 characters)."
REGISTER_EMAIL = "📧 Now enter your *email address*:"
REGISTER_EMAIL_INVALID = "❌ That doesn't look like a valid email address. Please try again:"
REGISTER_EMAIL_TAKEN = "❌ That email is already registered. Enter a different email, or type *menu* and choose Login."
REGISTER_PASSWORD = "🔐 Create a *password* (min 6 characters):"
REGISTER_PASSWORD_INVALID = "❌ Password must be at least 6 characters. Please try again:"

LOGIN_EMAIL = "🔐 *Login*\n\nPlease enter your *email address*:"
LOGIN_PASSWORD = "🔑 Now enter your *password*:"
LOGIN_FAILED = (
    "❌ *Login Failed*\n\n"
    "Invalid email or password. Please enter your *email address* again,\n"
    "or type *menu* to start over."
)


def register_success(name: str) -> str:
    return f"✅ *Registration Successful!*\n\nWelcome to {settings.STORE_NAME}, {name}! 🎉\n\nYou are now logged in."


def login_success(name: str) -> str:
    return f"✅ *Login Successful!*\n\nWelcome back, {name}! 🎉"


def categories(items: Iterable[CategoryView]) -> str:
    lines = ["🏷️ *Product Categories*", ""]
    items = list(items)
    if not items:
        lines.append("No categories available right now.")
    for i, c in enumerate(items, start=1):
        lines.append(f"{i}. {c.name} ({c.product_count})")
    lines += ["", "0. Back to Menu", "", "_Reply with a number_"]
    return "\n".join(lines)


def products(category_name: str, items: Iterable[ProductView]) -> str:
    lines = [f"📦 *{category_name}*", ""]
    items = list(items)
    if not items:
        lines.append("No products available.")
        lines.append("")
    for i, p in enumerate(items, start=1):
        lines.append(f"{i}. *{p.name}*")
        lines.append(f"   💰 {money(p.price)}")
        lines.append("")
    lines += ["0. Back to Categories", "", "_Reply with a number to view details_"]
    return "\n".join(lines)


def product_detail(p: ProductView) -> str:
    if p.stock > 0:
        stock = f"{p.stock} available ({stock_level(p.stock)})"
    else:
        stock = "Out of stock"
    return (
        f"📦 *{p.name}*\n\n"
        f"{p.description or 'No description available.'}\n\n"
        f"💰 *Price:* {money(p.price)}\n"
        f"📊 *Stock:* {stock}\n\n"
        "1. Add to Cart\n"
        "0. Back to Products\n\n"
        "_Reply with a number_"
    )


PRODUCT_UNAVAILABLE = "❌ Sorry, that product is no longer available."
OUT_OF_STOCK = "❌ Sorry, this product is out of stock."


def add_quantity(product_name: str, max_qty: int) -> str:
    return (
        "🛒 *Add to Cart*\n\n"
        f"Product: *{product_name}*\n\n"
        "How many would you like to add?\n\n"
        f"_Reply with a number (1-{max_qty})_\n"
        "_or 0 to cancel_"
    )


def quantity_invalid(max_qty: int) -> str:
    return f"❌ Please enter a quantity between 1 and {max_qty}, or 0 to cancel."


def added_to_cart(product_name: str, quantity: int) -> str:
    return (
        "✅ *Added to Cart!*\n\n"
        f"{quantity}x {product_name}\n\n"
        "1. Continue Shopping\n"
        "2. View Cart\n"
        "3. Checkout\n\n"
        "_Reply with a number_"
    )


CART_EMPTY = (
    "🛒 *Your Cart is Empty*\n\n"
    "Browse our products to add items!\n\n"
    "1. Browse Products\n"
    "0. Back to Menu"
)
CART_CLEARED = "🗑️ Your cart has been cleared."


def cart(view: CartView) -> str:
    lines = ["🛒 *Your Cart*", ""]
    for i, line in enumerate(view.lines, start=1):
        lines.append(f"{i}. *{line.name}*")
        lines.append(f"   Qty: {line.quantity} | {money(line.subtotal)}")
        lines.append("")
    lines += [
        "━━━━━━━━━━━━━━━",
        f"💰 *Total: {money(view.total)}*",
        "",
        "1. Checkout",
        "2. Clear Cart",
        "0. Back to Menu",
        "",
        "_Reply with a number_",
    ]
    return "\n".join(lines)


def checkout_payment(total) -> str:
    return (
        "💳 *Checkout*\n\n"
        f"Total: *{money(total)}*\n\n"
        "Select payment method:\n\n"
        "1. 💵 Cash (Pay at Counter)\n"
        "2. 💳 Pay Online\n"
        "0. Cancel\n\n"
        "_Reply with a number_"
    )


def order_created_cash(order_number: str, total, pickup_url: str) -> str:
    minutes = max(1, settings.CASH_ARTIFACT_TTL_SEC // 60)
    unit = "minute" if minutes == 1 else "minutes"
    return (
        "✅ *Order Created!*\n\n"
        f"📋 Order: *{order_number}*\n"
        f"💰 Total: *{money(total)}*\n"
        "💵 Payment: *Cash*\n\n"
        f"🎫 Your pickup code: {pickup_url}\n"
        f"⏰ Show it at the counter within *{minutes} {unit}*."
    )


def order_created_prepaid(order_number: str, total, payment_url: str) -> str:
    return (
        "✅ *Order Created!*\n\n"
        f"📋 Order: *{order_number}*\n"
        f"💰 Total: *{money(total)}*\n"
        "💳 Payment: *Online*\n\n"
        "Click the link below to complete payment:\n"
        f"{payment_url}\n\n"
        "After payment, you'll receive your pickup code."
    )


def order_created_with_caveat(order_number: str, total, caveat: str) -> str:
    return (
        "✅ *Order Created!*\n\n"
        f"📋 Order: *{order_number}*\n"
        f"💰 Total: *{money(total)}*\n\n"
        f"⚠️ {caveat}"
    )


ARTIFACT_CAVEAT = "We couldn't generate your pickup code. Open *My Orders* to request a new one."
PAYMENT_LINK_CAVEAT = "We couldn't create your payment link. Please contact support to complete payment."


def pickup_code_cash(order_number: str, pickup_url: str) -> str:
    return (
        "🎫 *Your Pickup Code*\n\n"
        f"Order: *{order_number}*\n"
        f"{pickup_url}\n\n"
        f"⏰ *Expires in {settings.CASH_ARTIFACT_TTL_SEC} seconds!*\n"
        "Show this code at the counter to collect your order."
    )


def payment_received(order_number: str, pickup_url: str) -> str:
    return (
        "🎫 *Payment Successful!*\n\n"
        f"Order: *{order_number}*\n"
        "✅ *PAID*\n\n"
        f"Your pickup code: {pickup_url}\n"
        "Show this code at the counter to collect your order.\n"
        "_(The code expires when the order is completed)_"
    )


def insufficient_stock(product_name: str, available: int) -> str:
    return (
        f"❌ Not enough stock for *{product_name}* (available: {available}).\n"
        "Please update your cart and try again."
    )


def my_orders(orders: Iterable[OrderView]) -> str:
    lines = ["📦 *My Orders*", ""]
    orders = list(orders)
    if not orders:
        lines.append("No orders yet.")
        lines.append("")
    for i, o in enumerate(orders, start=1):
        lines.append(f"{i}. *{o.order_number}*")
        lines.append(f"   {STATUS_EMOJI.get(o.status, '❓')} {o.status} | {money(o.total_amount)}")
        if o.created_at is not None:
            lines.append(f"   📅 {o.created_at:%Y-%m-%d}")
        lines.append("")
    lines += ["0. Back to Menu", "", f"_Reply with 1-{len(orders)} to view details_" if orders else ""]
    return "\n".join(lines).rstrip()


def order_status(o: OrderView, can_reissue: bool = False) -> str:
    text = (
        "📦 *Order Status*\n\n"
        f"📋 Order: *{o.order_number}*\n"
        f"📊 Status: *{o.status}*\n"
        f"💳 Payment: {o.payment_type}\n"
        f"🛍️ Items: {o.item_count}\n"
        f"💰 Total: {money(o.total_amount)}\n\n"
    )
    if can_reissue:
        text += "1. Get a new pickup code\n"
    return text + "0. Back"


TRACK_ORDER = (
    "🔍 *Track Order*\n\n"
    "Please enter your *Order Number*:\n"
    "_(e.g., ORD-ABC123-XYZ1)_\n\n"
    "0. Back to Menu"
)
ORDER_NOT_FOUND = "❌ Order not found. Check the number and try again, or 0 to go back."


def help_text() -> str:
    return (
        "❓ *Help*\n\n"
        "*Commands:*\n"
        "• Type *menu* - Go to main menu\n"
        "• Type *cart* - View your cart (from the main menu)\n"
        "• Type *orders* - View your orders (from the main menu)\n"
        "• Type *help* - Show this help\n"
        "• From the main menu you can also type *browse*, *checkout*, *track* or *logout*\n\n"
        "*Need assistance?*\n"
        f"Contact us at {settings.SUPPORT_EMAIL}\n\n"
        "0. Back"
    )


INVALID_INPUT = "❌ Invalid input. Please try again or type *menu* to start over."
APOLOGY = "❌ Something went wrong on our side. Please try again in a moment, or type *menu* to start over."
BUSY = "⏳ Still working on your previous message. Please try again in a moment."
LOGOUT = "👋 *Logged Out*\n\nThank you for shopping with us!\n\nType *hi* to start again."
