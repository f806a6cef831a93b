from .catalog import Product
from .ledger import InventoryMovement
from .customers import Customer
from .drawers import CashDrawer
from .sales import Sale
from .audit import AuditEvent

__all__ = [
    'Product',
    'InventoryMovement',
    'Customer',
    'CashDrawer',
    'Sale',
    'AuditEvent',
]
