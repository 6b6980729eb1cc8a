"""
Price import pipeline: CSV price lists upserted into the product catalog.

Rows are matched on SKU. Existing products are updated and reactivated, new
SKUs are inserted as active products. A bad row is reported in the result
and skipped; it never aborts the rest of the file. The whole import is one
commit with one audit entry.
"""
import csv
import io
import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional, Union

from flask import current_app
from sqlalchemy.orm import Session

from proposals.exceptions import ValidationError, NotFoundError
from proposals.models import Product, AuditAction
from proposals.services.audit_service import log_action
from proposals.services.catalog_service import get_product_by_sku, invalidate_products_cache
from proposals.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

# CSV header -> record attribute
CSV_COLUMNS = {
    'productname': 'product_name',
    'sku': 'sku',
    'description': 'description',
    'category': 'category',
    'unitprice': 'unit_price',
    'currency': 'currency',
    'commitmentterm': 'commitment_term',
    'billingfrequency': 'billing_frequency',
}


@dataclass
class PriceImportRecord:
    """One CSV row, trimmed but not yet validated."""
    row_number: int
    sku: Optional[str] = None
    product_name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    unit_price: Optional[str] = None
    currency: Optional[str] = None
    commitment_term: Optional[str] = None
    billing_frequency: Optional[str] = None


@dataclass
class PriceImportResult:
    file_name: str
    total_rows: int = 0
    imported: int = 0
    updated: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self):
        return {
            'file_name': self.file_name,
            'total_rows': self.total_rows,
            'imported': self.imported,
            'updated': self.updated,
            'skipped': self.skipped,
            'errors': list(self.errors),
            'success': self.success,
        }


def _normalize_header(name: Optional[str]) -> str:
    return (name or '').strip().replace(' ', '').replace('_', '').lower()


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def read_price_csv(source: Union[bytes, str, io.IOBase]) -> List[PriceImportRecord]:
    """
    Decode a CSV price list into records.

    Header names are matched case-insensitively; unknown columns are ignored
    and missing ones stay None. A UTF-8 BOM is tolerated.
    """
    if hasattr(source, 'read'):
        source = source.read()
    if isinstance(source, bytes):
        try:
            source = source.decode('utf-8-sig')
        except UnicodeDecodeError:
            raise ValidationError('Price file must be UTF-8 encoded CSV')

    reader = csv.DictReader(io.StringIO(source))
    if not reader.fieldnames:
        return []

    columns = {name: CSV_COLUMNS.get(_normalize_header(name)) for name in reader.fieldnames}
    if 'sku' not in columns.values():
        raise ValidationError('Price file has no SKU column')

    records = []
    for row_number, row in enumerate(reader, start=1):
        values = {
            attr: _blank_to_none(row.get(header))
            for header, attr in columns.items() if attr
        }
        if not any(values.values()):
            continue  # empty line
        records.append(PriceImportRecord(row_number=row_number, **values))
    return records


def _parse_price(raw: Optional[str]) -> Decimal:
    if raw is None:
        raise ValueError('UnitPrice is required')
    try:
        price = Decimal(raw)
    except InvalidOperation:
        raise ValueError(f"invalid UnitPrice '{raw}'")
    if not price.is_finite() or price < 0:
        raise ValueError(f"invalid UnitPrice '{raw}'")

    # Must fit Product.unit_price, or the batch commit fails
    price_type = Product.__table__.c.unit_price.type
    if price >= Decimal(10) ** (price_type.precision - price_type.scale):
        raise ValueError(f"UnitPrice '{raw}' is out of range")
    if price != price.quantize(Decimal(1).scaleb(-price_type.scale)):
        raise ValueError(f"UnitPrice '{raw}' has more than {price_type.scale} decimal places")
    return price


def _parse_currency(raw: Optional[str]) -> Optional[str]:
    if raw is None:
        return None
    currency = raw.upper()
    if len(currency) != 3 or not currency.isalpha():
        raise ValueError(f"invalid Currency '{raw}'")
    return currency


# record attribute -> Product column
LENGTH_CHECKED = {
    'sku': 'sku',
    'product_name': 'name',
    'category': 'category',
    'commitment_term': 'commitment_term',
    'billing_frequency': 'billing_frequency',
}


def _check_lengths(record: PriceImportRecord) -> None:
    for attr, column in LENGTH_CHECKED.items():
        value = getattr(record, attr)
        limit = Product.__table__.c[column].type.length
        if value and len(value) > limit:
            raise ValueError(f"{column} is longer than {limit} characters")


def import_prices(session: Session, records: Iterable[PriceImportRecord],
                  source_name: str, user_id: Optional[str] = None) -> PriceImportResult:
    """Upsert records by SKU and return per-file counts."""
    records = list(records)
    result = PriceImportResult(file_name=source_name, total_rows=len(records))
    default_currency = current_app.config.get('DEFAULT_CURRENCY', 'EUR')
    seen: Dict[str, Product] = {}

    try:
        for record in records:
            if not record.sku:
                result.skipped += 1
                continue

            try:
                _check_lengths(record)
                price = _parse_price(record.unit_price)
                currency = _parse_currency(record.currency)
            except ValueError as e:
                result.errors.append(f"Row {record.row_number} SKU '{record.sku}': {e}")
                result.skipped += 1
                continue

            product = seen.get(record.sku)
            if product is None:
                product = get_product_by_sku(session, record.sku)

            if product is not None:
                product.name = record.product_name or product.name
                product.description = record.description or product.description
                product.category = record.category or product.category
                product.unit_price = price
                product.currency = currency or product.currency
                product.commitment_term = record.commitment_term or product.commitment_term
                product.billing_frequency = record.billing_frequency or product.billing_frequency
                product.active = True
                product.updated_at = utcnow()
                result.updated += 1
            else:
                product = Product(
                    sku=record.sku,
                    name=record.product_name or record.sku,
                    description=record.description,
                    category=record.category,
                    unit_price=price,
                    currency=currency or default_currency,
                    commitment_term=record.commitment_term,
                    billing_frequency=record.billing_frequency,
                    active=True,
                )
                session.add(product)
                result.imported += 1
            seen[record.sku] = product

        log_action(
            session,
            AuditAction.PRICE_IMPORT,
            'Product',
            None,
            user_id,
            f"File: {source_name}, Imported: {result.imported}, "
            f"Updated: {result.updated}, Skipped: {result.skipped}",
            commit=False
        )
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"[IMPORT] Price import of {source_name} failed: {e}")
        raise

    invalidate_products_cache()
    logger.info(
        f"[IMPORT] {source_name}: {result.imported} imported, {result.updated} updated, "
        f"{result.skipped} skipped, {len(result.errors)} error(s)"
    )
    return result


def import_upload(session: Session, stream, file_name: str,
                  user_id: Optional[str] = None) -> PriceImportResult:
    """Import an uploaded CSV stream."""
    _check_extension(file_name)
    return import_prices(session, read_price_csv(stream), file_name, user_id)


def _allowed_extensions():
    return current_app.config.get('PRICE_IMPORT_EXTENSIONS', {'.csv'})


def _check_extension(file_name: str) -> None:
    ext = os.path.splitext(file_name or '')[1].lower()
    if ext not in _allowed_extensions():
        raise ValidationError(f'File type not allowed: {file_name}', field='file')


def list_import_files(folder: Optional[str] = None) -> List[str]:
    """Importable files waiting in the import folder, sorted by name."""
    folder = folder or current_app.config['PRICE_IMPORT_FOLDER']
    if not os.path.isdir(folder):
        return []
    allowed = _allowed_extensions()
    return sorted(
        name for name in os.listdir(folder)
        if os.path.isfile(os.path.join(folder, name))
        and os.path.splitext(name)[1].lower() in allowed
    )


def import_file(session: Session, file_name: str, folder: Optional[str] = None,
                user_id: Optional[str] = None) -> PriceImportResult:
    """Import one file from the import folder by name."""
    folder = folder or current_app.config['PRICE_IMPORT_FOLDER']
    if not file_name or os.path.basename(file_name) != file_name:
        raise ValidationError(f'Invalid file name: {file_name}', field='file')
    _check_extension(file_name)

    path = os.path.join(folder, file_name)
    if not os.path.isfile(path):
        raise NotFoundError(f'File not found: {file_name}')

    with open(path, 'rb') as fh:
        records = read_price_csv(fh)
    return import_prices(session, records, file_name, user_id)
