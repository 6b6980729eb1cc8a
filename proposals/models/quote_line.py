"""QuoteLineItem model for quote line items."""
from sqlalchemy import Column, Integer, String, Numeric, ForeignKey
from sqlalchemy.orm import relationship

from proposals.database import Base


class QuoteLineItem(Base):
    """
    Quote line item.

    Stores a snapshot of product details at pricing time so later catalog
    changes never alter an already priced quote.
    """

    __tablename__ = 'quote_line_item'

    id = Column(Integer, primary_key=True, autoincrement=True)
    quote_id = Column(Integer, ForeignKey('quote.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey('product.id', ondelete='RESTRICT'), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    product_name = Column(String(200), nullable=False)
    sku = Column(String(64), nullable=False)
    commitment_term = Column(String(50), nullable=True)
    billing_frequency = Column(String(50), nullable=True)
    currency = Column(String(3), nullable=False, default='EUR')
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 4), nullable=False)
    discount_percent = Column(Numeric(5, 2), nullable=False, default=0)
    line_total = Column(Numeric(14, 2), nullable=False)

    # Relationships
    quote = relationship('Quote', back_populates='line_items')
    product = relationship('Product', foreign_keys=[product_id])

    def __repr__(self):
        return f"<QuoteLineItem(id={self.id}, quote_id={self.quote_id}, sku='{self.sku}', qty={self.quantity}, total={self.line_total})>"

    def to_dict(self):
        return {
            'product_id': self.product_id,
            'product_name': self.product_name,
            'sku': self.sku,
            'quantity': self.quantity,
            'commitment_term': self.commitment_term,
            'billing_frequency': self.billing_frequency,
            'unit_price': str(self.unit_price),
            'discount_percent': str(self.discount_percent),
            'line_total': str(self.line_total),
            'currency': self.currency,
        }
