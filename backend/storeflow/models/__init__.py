from .stores import Store, DocumentSequence
from .catalog import ProductVariant
from .inventory import Inventory, InventoryTransaction, InventoryTransfer
from .purchases import Purchase, PurchaseItem
from .orders import Order, OrderItem, OrderStatusHistory, PaymentRecord

__all__ = [
    'Store', 'DocumentSequence',
    'ProductVariant',
    'Inventory', 'InventoryTransaction', 'InventoryTransfer',
    'Purchase', 'PurchaseItem',
    'Order', 'OrderItem', 'OrderStatusHistory', 'PaymentRecord',
]
