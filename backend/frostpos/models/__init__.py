from .catalog import Category, Product
from .inventory import StockLog
from .orders import Order, OrderItem

__all__ = [
    'Category', 'Product',
    'StockLog',
    'Order', 'OrderItem',
]
