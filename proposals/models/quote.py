"""Quote model for commercial proposals."""
import enum
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Text, Enum as SQLEnum
from sqlalchemy.orm import relationship

from proposals.database import Base
from proposals.utils.timeutils import utcnow


class QuoteStatus(enum.Enum):
    """Quote status enum."""
    DRAFT = "DRAFT"
    PREVIEW = "PREVIEW"
    FINALIZED = "FINALIZED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


# Every status a quote may move to from a given status.
ALLOWED_TRANSITIONS = {
    QuoteStatus.DRAFT: {QuoteStatus.PREVIEW, QuoteStatus.FINALIZED},
    QuoteStatus.PREVIEW: {QuoteStatus.FINALIZED},
    QuoteStatus.FINALIZED: {QuoteStatus.APPROVED, QuoteStatus.REJECTED, QuoteStatus.EXPIRED},
    QuoteStatus.APPROVED: set(),
    QuoteStatus.REJECTED: set(),
    QuoteStatus.EXPIRED: set(),
}

ISSUED_STATUSES = (
    QuoteStatus.FINALIZED, QuoteStatus.APPROVED, QuoteStatus.REJECTED, QuoteStatus.EXPIRED,
)


class Quote(Base):
    """
    Quote (priced proposal).

    Mutable only while DRAFT. Finalizing freezes line items and total and
    attaches the rendered PDF through pdf_path.
    """

    __tablename__ = 'quote'

    id = Column(Integer, primary_key=True, autoincrement=True)
    quote_number = Column(String(64), nullable=False, unique=True)
    version = Column(Integer, nullable=False, default=1)
    status = Column(SQLEnum(QuoteStatus, native_enum=False, length=20), nullable=False,
                    default=QuoteStatus.DRAFT, index=True)
    customer_name = Column(String(255), nullable=False)
    customer_email = Column(String(255), nullable=True)
    customer_company = Column(String(255), nullable=True)
    valid_until = Column(DateTime, nullable=True)
    total_amount = Column(Numeric(14, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default='EUR')
    notes = Column(Text, nullable=True)
    pdf_path = Column(String(512), nullable=True)
    template_name = Column(String(64), nullable=True)
    created_by = Column(String(128), nullable=False, default='system', index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    finalized_at = Column(DateTime, nullable=True)

    # Relationships
    line_items = relationship(
        'QuoteLineItem',
        back_populates='quote',
        cascade='all, delete-orphan',
        order_by='QuoteLineItem.position',
    )

    def __repr__(self):
        status = self.status.value if self.status else None
        return f"<Quote(id={self.id}, number='{self.quote_number}', status='{status}', total={self.total_amount})>"

    @property
    def is_mutable(self):
        return self.status == QuoteStatus.DRAFT

    @property
    def is_issued(self):
        return self.status in ISSUED_STATUSES

    def is_expired(self, now=None):
        """Check if a finalized quote is past its deadline (calculated, not stored)."""
        if self.status != QuoteStatus.FINALIZED or not self.valid_until:
            return False
        return (now or utcnow()) > self.valid_until

    def can_transition_to(self, target: QuoteStatus) -> bool:
        return target in ALLOWED_TRANSITIONS.get(self.status, set())

    def to_dict(self, include_lines=True):
        data = {
            'id': self.id,
            'quote_number': self.quote_number,
            'version': self.version,
            'status': self.status.value if self.status else None,
            'customer_name': self.customer_name,
            'customer_email': self.customer_email,
            'customer_company': self.customer_company,
            'valid_until': self.valid_until.isoformat() if self.valid_until else None,
            'total_amount': str(self.total_amount),
            'currency': self.currency,
            'notes': self.notes,
            'template_name': self.template_name,
            'has_pdf': bool(self.pdf_path),
            'created_by': self.created_by,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'finalized_at': self.finalized_at.isoformat() if self.finalized_at else None,
        }
        if include_lines:
            data['line_items'] = [line.to_dict() for line in self.line_items]
        return data
