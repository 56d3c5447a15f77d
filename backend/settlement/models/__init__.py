from .inventory import Product, Inventory, InventoryAdjustment
from .sales import (
    Sale, SaleLine, PaymentMethod, PaymentRecord, PaymentAttempt,
    InvoiceSequence, InvoiceNumberReservation,
)
from .customers import Customer, LoyaltyProgram, LoyaltyAccount, LoyaltyTransaction
from .drawers import CashDrawer, CashTransaction, CashDrawerAuditLog

__all__ = [
    'Product', 'Inventory', 'InventoryAdjustment',
    'Sale', 'SaleLine', 'PaymentMethod', 'PaymentRecord', 'PaymentAttempt',
    'InvoiceSequence', 'InvoiceNumberReservation',
    'Customer', 'LoyaltyProgram', 'LoyaltyAccount', 'LoyaltyTransaction',
    'CashDrawer', 'CashTransaction', 'CashDrawerAuditLog',
]
