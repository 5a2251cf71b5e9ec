from .company import Company, Branch, Customer, Product
from .pricing import WeightPricingTier
from .invoices import Invoice, InvoiceItem
from .payments import Payment
from .production import PrintJob
from .auth import User, SessionToken

__all__ = [
    'Company', 'Branch', 'Customer', 'Product',
    'WeightPricingTier',
    'Invoice', 'InvoiceItem',
    'Payment',
    'PrintJob',
    'User', 'SessionToken',
]
