# Models
from .product import Product, ProductOption
from .product_stocks import ProductStock
from .cart_items import CartItem
from .order import Order, OrderItem, OrderStatus, PaymentStatus, FulfillmentType
from .payment import PaymentApproval, RefundRecord, PaymentMethod
from .payment_events import PaymentEvent, PaymentEventType
from .idempotency_keys import IdempotencyKey, IdempotencyStatus

__all__ = [
    "Product",
    "ProductOption",
    "ProductStock",
    "CartItem",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentStatus",
    "FulfillmentType",
    "PaymentApproval",
    "RefundRecord",
    "PaymentMethod",
    "PaymentEvent",
    "PaymentEventType",
    "IdempotencyKey",
    "IdempotencyStatus",
]
