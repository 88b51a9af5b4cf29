from .auth import User
from .catalog import Product, InventoryRecord, StockMovement
from .requests import ProductRequest, ProductRequestItem
from .invoices import Invoice, InvoiceLine, InvoicePayment
from .activity import ActivityLogEntry
from .documents import DocumentSequence, OperationIntent

__all__ = [
    'User',
    'Product', 'InventoryRecord', 'StockMovement',
    'ProductRequest', 'ProductRequestItem',
    'Invoice', 'InvoiceLine', 'InvoicePayment',
    'ActivityLogEntry',
    'DocumentSequence', 'OperationIntent',
]
