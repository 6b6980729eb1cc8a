"""
Audit Log model for tracking state-changing actions.
Rows are only ever inserted.
"""
from sqlalchemy import Column, Integer, String, Text, DateTime
import enum

from proposals.database import Base
from proposals.utils.timeutils import utcnow


class AuditAction(enum.Enum):
    """Enumeration of auditable actions."""
    # Quotes
    QUOTE_CREATED = "QuoteCreated"
    QUOTE_UPDATED = "QuoteUpdated"
    QUOTE_FINALIZED = "QuoteFinalized"
    QUOTE_APPROVED = "QuoteApproved"
    QUOTE_REJECTED = "QuoteRejected"
    QUOTE_EXPIRED = "QuoteExpired"
    QUOTE_DELETED = "QuoteDeleted"

    # Catalog
    PRICE_IMPORT = "PriceImport"
    PRODUCT_DEACTIVATED = "ProductDeactivated"


class AuditLog(Base):
    """Audit log entry. References other entities by type and id only."""
    __tablename__ = 'audit_log'

    id = Column(Integer, primary_key=True)
    action = Column(String(64), nullable=False, index=True)
    entity_type = Column(String(50), nullable=False)  # e.g., 'Quote', 'Product'
    entity_id = Column(Integer, nullable=True, index=True)
    user_id = Column(String(128), nullable=True)
    detail = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog {self.action} on {self.entity_type} {self.entity_id} by {self.user_id} at {self.created_at}>"
