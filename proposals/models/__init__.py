"""Models package - exports all SQLAlchemy models."""
from proposals.models.product import Product
from proposals.models.quote import Quote, QuoteStatus, ALLOWED_TRANSITIONS, ISSUED_STATUSES
from proposals.models.quote_line import QuoteLineItem
from proposals.models.audit_log import AuditLog, AuditAction

__all__ = [
    'Product',
    'Quote', 'QuoteStatus', 'ALLOWED_TRANSITIONS', 'ISSUED_STATUSES', 'QuoteLineItem',
    'AuditLog', 'AuditAction',
]
