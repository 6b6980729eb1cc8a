"""
Pricing engine.

All money arithmetic is done with Decimal. Each line total is rounded once
to cents with ROUND_HALF_UP (10.005 -> 10.01); the quote total is the plain
sum of the already rounded line totals and is never rounded again.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy.orm import Session

from proposals.exceptions import ValidationError, ProductNotFoundError
from proposals.services.catalog_service import get_products_by_ids

CENT = Decimal('0.01')
HUNDRED = Decimal('100')
ZERO = Decimal('0.00')


def to_decimal(value: Any, field_name: str = 'value', line: Optional[int] = None) -> Decimal:
    """Convert user or DB input to Decimal without going through binary floats."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f'{field_name} must be a number', field=field_name, line=line)
    if isinstance(value, Decimal):
        number = value
    else:
        try:
            number = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError(f'{field_name} must be a number', field=field_name, line=line)
    # NaN and Infinity parse as Decimal but cannot be compared or priced
    if not number.is_finite():
        raise ValidationError(f'{field_name} must be a finite number', field=field_name, line=line)
    return number


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def compute_line_total(unit_price, quantity: int, discount_percent=0) -> Decimal:
    """round(unit_price * quantity * (1 - discount/100), 2), half-up."""
    price = to_decimal(unit_price, 'unit_price')
    discount = to_decimal(discount_percent, 'discount_percent')
    gross = price * quantity
    if discount == 0:
        return round_money(gross)
    return round_money(gross * (HUNDRED - discount) / HUNDRED)


@dataclass(frozen=True)
class LineRequest:
    """One requested line: product, quantity and discount."""
    product_id: int
    quantity: int
    discount_percent: Decimal = ZERO

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], index: int = 0) -> 'LineRequest':
        if not isinstance(data, Mapping):
            raise ValidationError('Line item must be an object', line=index)

        raw_pid = data.get('product_id', data.get('productId'))
        try:
            product_id = int(raw_pid)
        except (TypeError, ValueError):
            raise ValidationError('product_id is required', field='product_id', line=index)

        raw_qty = data.get('quantity')
        if isinstance(raw_qty, bool):
            raise ValidationError('quantity must be a positive integer', field='quantity', line=index)
        qty = to_decimal(raw_qty, 'quantity', index)
        if qty != qty.to_integral_value() or qty < 1:
            raise ValidationError('quantity must be a positive integer', field='quantity', line=index)

        raw_discount = data.get('discount_percent', data.get('discountPercent'))
        discount = ZERO if raw_discount in (None, '') else to_decimal(raw_discount, 'discount_percent', index)
        if discount < 0 or discount > HUNDRED:
            raise ValidationError('discount_percent must be between 0 and 100',
                                  field='discount_percent', line=index)

        # Priced at the stored scale so a reloaded line reproduces its own total
        discount = round_money(discount)

        return cls(product_id=product_id, quantity=int(qty), discount_percent=discount)


@dataclass(frozen=True)
class PricedLine:
    """A priced line with the product snapshot taken at pricing time."""
    product_id: int
    product_name: str
    sku: str
    commitment_term: Optional[str]
    billing_frequency: Optional[str]
    currency: str
    quantity: int
    unit_price: Decimal
    discount_percent: Decimal
    line_total: Decimal


@dataclass
class PricingResult:
    lines: List[PricedLine] = field(default_factory=list)
    total: Decimal = ZERO

    @property
    def currency(self) -> Optional[str]:
        return self.lines[0].currency if self.lines else None


def parse_line_requests(raw_items: Any, require_items: bool = True) -> List[LineRequest]:
    """Validate a list of raw line dicts into LineRequests."""
    if raw_items is None:
        raw_items = []
    if not isinstance(raw_items, (list, tuple)):
        raise ValidationError('line_items must be a list', field='line_items')
    if require_items and not raw_items:
        raise ValidationError('At least one line item is required', field='line_items')
    return [LineRequest.from_dict(item, index) for index, item in enumerate(raw_items)]


def price_requests(requests: Sequence[LineRequest], catalog: Mapping[int, Any]) -> PricingResult:
    """
    Price requests against a catalog snapshot (product id -> product).

    Duplicate product ids produce independent lines. The first id missing
    from the catalog aborts pricing with ProductNotFoundError.
    """
    result = PricingResult()
    total = ZERO
    for index, request in enumerate(requests):
        product = catalog.get(request.product_id)
        if product is None:
            raise ProductNotFoundError(request.product_id, line=index)

        unit_price = to_decimal(product.unit_price, 'unit_price', index)
        line_total = compute_line_total(unit_price, request.quantity, request.discount_percent)
        result.lines.append(PricedLine(
            product_id=product.id,
            product_name=product.name,
            sku=product.sku,
            commitment_term=product.commitment_term,
            billing_frequency=product.billing_frequency,
            currency=product.currency,
            quantity=request.quantity,
            unit_price=unit_price,
            discount_percent=request.discount_percent,
            line_total=line_total,
        ))
        total += line_total

    result.total = total
    return result


def price_lines(session: Session, requests: Sequence[LineRequest]) -> PricingResult:
    """Price requests against the active catalog (one point-in-time read)."""
    catalog: Dict[int, Any] = get_products_by_ids(session, [r.product_id for r in requests])
    return price_requests(requests, catalog)
