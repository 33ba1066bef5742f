from .branches import Branch
from .auth import User, SessionToken
from .inventory import Product, Batch, StockMovement
from .sales import Sale, SaleLine
from .ledger import LedgerEntry
from .customers import Customer

__all__ = [
    'Branch',
    'User', 'SessionToken',
    'Product', 'Batch', 'StockMovement',
    'Sale', 'SaleLine',
    'LedgerEntry',
    'Customer',
]
