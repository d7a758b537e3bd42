from .auth import User, SessionToken
from .inventory import Product
from .invoices import Invoice, InvoiceLine, InvoiceSequence

__all__ = [
    'User', 'SessionToken',
    'Product',
    'Invoice', 'InvoiceLine', 'InvoiceSequence',
]
