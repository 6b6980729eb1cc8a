"""Product model."""
from sqlalchemy import Column, Integer, String, Boolean, Numeric, DateTime, Text

from proposals.database import Base
from proposals.utils.timeutils import utcnow


class Product(Base):
    """
    Catalog entry.

    Identity (id, sku) never changes. Price and descriptive fields are
    refreshed by the price import. Products are deactivated, never deleted,
    while quote lines still reference them.
    """

    __tablename__ = 'product'

    id = Column(Integer, primary_key=True, autoincrement=True)
    sku = Column(String(64), nullable=False, unique=True, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True)
    unit_price = Column(Numeric(12, 4), nullable=False)
    currency = Column(String(3), nullable=False, default='EUR')
    commitment_term = Column(String(50), nullable=True)
    billing_frequency = Column(String(50), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', sku='{self.sku}')>"

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'sku': self.sku,
            'description': self.description,
            'category': self.category,
            'unit_price': str(self.unit_price),
            'currency': self.currency,
            'commitment_term': self.commitment_term,
            'billing_frequency': self.billing_frequency,
        }
