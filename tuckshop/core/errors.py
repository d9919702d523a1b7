"""
Error taxonomy for the ordering pipeline.

- UserInputError: bad selection/quantity; handled inside the state machine.
- BusinessRuleError: reported verbatim to the customer, never retried.
- TransientInfraError: generic apology, session left untouched.
- PartialSuccessError: the order exists; reported as success with a caveat.
"""
from decimal import Decimal
from typing import Optional


class ShopError(Exception):
    pass


class UserInputError(ShopError):
    pass


class BusinessRuleError(ShopError):
    pass


class EmptyCart(BusinessRuleError):
    def __init__(self):
        super().__init__("Cart is empty")


class InsufficientStock(BusinessRuleError):
    def __init__(self, product_name: str, available: int):
        self.product_name = product_name
        self.available = int(available)
        super().__init__(f"Insufficient stock for {product_name} (available: {self.available})")


class OrderNotFound(BusinessRuleError):
    def __init__(self, ref):
        self.ref = ref
        super().__init__(f"Order not found: {ref}")


class OrderStateError(BusinessRuleError):
    """Requested status change is not allowed from the order's current status."""


class AccountError(BusinessRuleError):
    pass


class TransientInfraError(ShopError):
    pass


class TransactionFailure(TransientInfraError):
    pass


class SenderBusy(TransientInfraError):
    pass


class SenderLockLost(TransientInfraError):
    pass


class PartialSuccessError(ShopError):
    def __init__(self, message: str, order_number: str, total: Decimal):
        self.order_number = order_number
        self.total = total
        super().__init__(message)


class ArtifactIssuanceFailure(PartialSuccessError):
    pass


class PaymentLinkFailure(PartialSuccessError):
    def __init__(self, message: str, order_number: str, total: Decimal, reference: Optional[str] = None):
        self.reference = reference
        super().__init__(message, order_number, total)
