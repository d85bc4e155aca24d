from .catalog import Product, Discount, DiscountUsage
from .orders import Order, OrderLine, QueueCounter, PaymentEvent
from .settings import Setting

__all__ = [
    'Product', 'Discount', 'DiscountUsage',
    'Order', 'OrderLine', 'QueueCounter', 'PaymentEvent',
    'Setting',
]
