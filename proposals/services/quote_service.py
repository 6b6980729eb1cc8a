"""Quote service: pricing, lifecycle transitions and PDF artifacts for quotes."""

import logging
import secrets
import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from proposals.exceptions import (
    ValidationError, NotFoundError, InvalidTransitionError, ConflictError,
    ArtifactMissingError
)
from proposals.models import Quote, QuoteLineItem, QuoteStatus, Product, AuditAction
from proposals.services.audit_service import log_action
from proposals.services.document_service import (
    QuoteDocument, Branding, render_quote, render_quote_pdf
)
from proposals.services.pricing_service import (
    LineRequest, PricingResult, parse_line_requests, price_lines, compute_line_total
)
from proposals.services.storage_service import artifact_path, get_artifact_store
from proposals.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

QUOTE_NUMBER_ATTEMPTS = 5


@dataclass
class QuoteRequest:
    """Validated create/preview/finalize payload."""
    customer_name: str
    line_items: List[LineRequest]
    customer_email: Optional[str] = None
    customer_company: Optional[str] = None
    notes: Optional[str] = None
    template_name: Optional[str] = None
    validity_days: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], require_items: bool = True) -> 'QuoteRequest':
        if not isinstance(data, Mapping):
            raise ValidationError('Request body must be a JSON object')

        customer_name = (data.get('customer_name') or '').strip()
        if not customer_name:
            raise ValidationError('customer_name is required', field='customer_name')

        validity_days = data.get('validity_days')
        if validity_days not in (None, ''):
            validity_days = _parse_validity_days(validity_days)
        else:
            validity_days = None

        return cls(
            customer_name=customer_name,
            line_items=parse_line_requests(data.get('line_items'), require_items=require_items),
            customer_email=_clean(data.get('customer_email')),
            customer_company=_clean(data.get('customer_company')),
            notes=_clean(data.get('notes')),
            template_name=_clean(data.get('template_name')),
            validity_days=validity_days,
        )


@dataclass
class FinalizeResult:
    quote: Quote
    pdf: bytes
    download_url: str
    already_finalized: bool = False


def _clean(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _parse_validity_days(value) -> int:
    try:
        days = int(value)
    except (TypeError, ValueError):
        raise ValidationError('validity_days must be a positive integer', field='validity_days')
    if isinstance(value, bool) or days < 1:
        raise ValidationError('validity_days must be a positive integer', field='validity_days')
    return days


# --- Per-quote mutual exclusion ----------------------------------------------

class _KeyedLocks:
    """One lock per quote id, dropped once no caller holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[int, threading.Lock] = {}
        self._waiters: Dict[int, int] = {}

    @contextmanager
    def hold(self, key: int, timeout: float):
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._waiters[key] = self._waiters.get(key, 0) + 1

        acquired = lock.acquire(timeout=timeout)
        try:
            if not acquired:
                raise ConflictError(f'Quote {key} is already being finalized, retry later')
            yield
        finally:
            if acquired:
                lock.release()
            with self._guard:
                self._waiters[key] -= 1
                if self._waiters[key] == 0:
                    del self._waiters[key]
                    del self._locks[key]


_quote_locks = _KeyedLocks()


def _lock_timeout() -> float:
    return float(current_app.config.get('FINALIZE_LOCK_TIMEOUT', 30))


# --- Helpers -----------------------------------------------------------------

def generate_quote_number(prefix: str = 'Q', now: Optional[datetime] = None) -> str:
    """Prefix, UTC date and 8 random hex characters, e.g. Q-20260101-9F3A61C2."""
    now = now or utcnow()
    return f"{prefix}-{now:%Y%m%d}-{secrets.token_hex(4).upper()}"


def _unique_quote_number(session: Session) -> str:
    prefix = current_app.config.get('QUOTE_NUMBER_PREFIX', 'Q')
    for _ in range(QUOTE_NUMBER_ATTEMPTS):
        number = generate_quote_number(prefix)
        exists = session.query(Quote.id).filter(Quote.quote_number == number).first()
        if not exists:
            return number
        logger.warning(f"[QUOTE] Quote number collision on {number}, regenerating")
    raise ConflictError('Could not allocate a unique quote number')


def _quote_currency(pricing: PricingResult) -> str:
    currencies = {line.currency for line in pricing.lines}
    if len(currencies) > 1:
        raise ValidationError(
            f"Line items mix currencies ({', '.join(sorted(currencies))}); one currency per quote",
            field='line_items'
        )
    return pricing.currency or current_app.config.get('DEFAULT_CURRENCY', 'EUR')


def _line_items_from_pricing(pricing: PricingResult) -> List[QuoteLineItem]:
    return [
        QuoteLineItem(
            position=position,
            product_id=line.product_id,
            product_name=line.product_name,
            sku=line.sku,
            commitment_term=line.commitment_term,
            billing_frequency=line.billing_frequency,
            currency=line.currency,
            quantity=line.quantity,
            unit_price=line.unit_price,
            discount_percent=line.discount_percent,
            line_total=line.line_total,
        )
        for position, line in enumerate(pricing.lines)
    ]


def _build_quote(session: Session, request: QuoteRequest, user_id: str, status: QuoteStatus) -> Quote:
    """Price a request into a transient Quote. Nothing is added to the session."""
    pricing = price_lines(session, request.line_items)
    now = utcnow()
    days = request.validity_days or current_app.config.get('QUOTE_VALID_DAYS', 30)

    quote = Quote(
        quote_number=generate_quote_number(current_app.config.get('QUOTE_NUMBER_PREFIX', 'Q')),
        version=1,
        status=status,
        customer_name=request.customer_name,
        customer_email=request.customer_email,
        customer_company=request.customer_company,
        notes=request.notes,
        template_name=request.template_name,
        currency=_quote_currency(pricing),
        total_amount=pricing.total,
        created_by=user_id,
        created_at=now,
        updated_at=now,
        valid_until=now + timedelta(days=days),
    )
    quote.line_items = _line_items_from_pricing(pricing)
    return quote


def _get_quote_for_update(session: Session, quote_id: int) -> Quote:
    quote = (
        session.query(Quote)
        .filter(Quote.id == quote_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not quote:
        raise NotFoundError(f'Quote {quote_id} not found')
    return quote


def _revalidate_pricing(session: Session, quote: Quote) -> None:
    """Check the frozen snapshot still adds up and every product still exists."""
    if not quote.line_items:
        raise ValidationError('A quote needs at least one line item before it can be finalized',
                              field='line_items')

    product_ids = {line.product_id for line in quote.line_items}
    found = {pid for (pid,) in session.query(Product.id).filter(Product.id.in_(product_ids)).all()}

    total = Decimal('0.00')
    for index, line in enumerate(quote.line_items):
        if line.product_id not in found:
            raise ValidationError(f'Product {line.product_id} not found', field='product_id', line=index)
        expected = compute_line_total(line.unit_price, line.quantity, line.discount_percent)
        if Decimal(line.line_total) != expected:
            raise ValidationError(
                f'Line {index + 1} total {line.line_total} does not match {expected}', line=index
            )
        total += expected

    if Decimal(quote.total_amount) != total:
        raise ValidationError(f'Quote total {quote.total_amount} does not match {total}')


def _expire_if_due(session: Session, quote: Quote, now: Optional[datetime] = None) -> bool:
    """Lazily move a finalized quote past its deadline to EXPIRED."""
    if not quote.is_expired(now):
        return False
    try:
        quote.status = QuoteStatus.EXPIRED
        log_action(session, AuditAction.QUOTE_EXPIRED, 'Quote', quote.id, 'system',
                   f"Quote {quote.quote_number} expired (valid until {quote.valid_until:%Y-%m-%d})",
                   commit=False)
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info(f"[QUOTE] Quote {quote.quote_number} expired")
    return True


# --- Read operations ---------------------------------------------------------

def get_quote(session: Session, quote_id: int) -> Quote:
    """Fetch a quote with its line items, applying lazy expiry."""
    quote = session.get(Quote, quote_id)
    if not quote:
        raise NotFoundError(f'Quote {quote_id} not found')
    _expire_if_due(session, quote)
    return quote


def list_quotes(session: Session, user_id: Optional[str] = None,
                status: Union[QuoteStatus, str, None] = None) -> List[Quote]:
    """Quotes newest first, optionally filtered by creator and status."""
    expire_quotes(session)

    query = session.query(Quote)
    if user_id:
        query = query.filter(Quote.created_by == user_id)
    if status:
        if not isinstance(status, QuoteStatus):
            try:
                status = QuoteStatus(str(status).upper())
            except ValueError:
                raise ValidationError(f'Unknown status: {status}', field='status')
        query = query.filter(Quote.status == status)
    return query.order_by(Quote.created_at.desc(), Quote.id.desc()).all()


# --- Draft operations --------------------------------------------------------

def create_draft(session: Session, data: Union[QuoteRequest, Mapping[str, Any]], user_id: str) -> Quote:
    """Price and persist a DRAFT quote."""
    request = data if isinstance(data, QuoteRequest) else QuoteRequest.from_dict(data)
    quote = _build_quote(session, request, user_id, QuoteStatus.DRAFT)

    try:
        quote.quote_number = _unique_quote_number(session)
        session.add(quote)
        session.flush()
        log_action(session, AuditAction.QUOTE_CREATED, 'Quote', quote.id, user_id,
                   f"Quote {quote.quote_number} created for {quote.customer_name}", commit=False)
        session.commit()
    except IntegrityError as e:
        session.rollback()
        logger.warning(f"[QUOTE] Quote number {quote.quote_number} rejected by the database: {e}")
        raise ConflictError('Quote number collision, retry the request')
    except Exception:
        session.rollback()
        raise

    logger.info(f"[QUOTE] Quote {quote.quote_number} created by {user_id}")
    return quote


def update_draft(session: Session, quote_id: int, data: Mapping[str, Any], user_id: str) -> Quote:
    """Re-price and update a quote that is still DRAFT."""
    request = QuoteRequest.from_dict(data)

    try:
        quote = _get_quote_for_update(session, quote_id)
        if not quote.is_mutable:
            raise InvalidTransitionError(quote.status, QuoteStatus.DRAFT)

        pricing = price_lines(session, request.line_items)
        quote.line_items = _line_items_from_pricing(pricing)
        quote.total_amount = pricing.total
        quote.currency = _quote_currency(pricing)
        quote.customer_name = request.customer_name
        quote.customer_email = request.customer_email
        quote.customer_company = request.customer_company
        quote.notes = request.notes
        quote.template_name = request.template_name
        if request.validity_days:
            quote.valid_until = quote.created_at + timedelta(days=request.validity_days)
        quote.updated_at = utcnow()

        log_action(session, AuditAction.QUOTE_UPDATED, 'Quote', quote.id, user_id,
                   f"Quote {quote.quote_number} updated, total {quote.total_amount} {quote.currency}",
                   commit=False)
        session.commit()
    except Exception:
        session.rollback()
        raise

    return quote


def preview_quote(session: Session, data: Union[QuoteRequest, Mapping[str, Any]],
                  user_id: str) -> Tuple[Quote, bytes]:
    """
    Price a request and render a watermarked PDF.

    The returned quote is transient: it is never added to the session, so a
    preview leaves no trace in the database or the artifact store.
    """
    request = data if isinstance(data, QuoteRequest) else QuoteRequest.from_dict(data)
    quote = _build_quote(session, request, user_id, QuoteStatus.PREVIEW)
    pdf = render_quote(quote, True, current_app.config)
    logger.info(f"[QUOTE] Preview {quote.quote_number} rendered for {user_id}")
    return quote, pdf


def preview_existing(session: Session, quote_id: int) -> Tuple[Quote, bytes]:
    """Render a watermarked PDF of a stored DRAFT without touching it."""
    quote = get_quote(session, quote_id)
    if not quote.can_transition_to(QuoteStatus.PREVIEW):
        raise InvalidTransitionError(quote.status, QuoteStatus.PREVIEW)
    return quote, render_quote(quote, True, current_app.config)


# --- Finalize ----------------------------------------------------------------

def _existing_result(quote: Quote) -> FinalizeResult:
    store = get_artifact_store()
    pdf = store.retrieve(quote.pdf_path)
    if pdf is None:
        raise ArtifactMissingError(f'Artifact for quote {quote.quote_number} is missing')
    return FinalizeResult(quote, pdf, _download_url(quote.pdf_path), already_finalized=True)


def _download_url(path: str) -> str:
    ttl = timedelta(hours=current_app.config.get('DOWNLOAD_LINK_TTL_HOURS', 24))
    return get_artifact_store().issue_download_link(path, ttl)


def _issue(session: Session, quote: Quote, user_id: str,
           validity_days: Optional[int], notes: Optional[str]) -> bytes:
    """
    Render and upload the final PDF, then flip the quote to FINALIZED.

    The caller owns the transaction. The row is only touched after the
    upload succeeded.
    """
    config = current_app.config
    _revalidate_pricing(session, quote)

    days = validity_days or config.get('QUOTE_VALID_DAYS', 30)
    valid_until = quote.created_at + timedelta(days=days)
    final_notes = _clean(notes) if notes is not None else quote.notes

    document = replace(QuoteDocument.from_quote(quote), valid_until=valid_until, notes=final_notes)
    pdf = render_quote_pdf(document, False, quote.template_name or config.get('QUOTE_DEFAULT_LAYOUT'),
                           Branding.from_config(config))

    path = artifact_path(quote.quote_number, quote.version)
    get_artifact_store().store(path, pdf)

    now = utcnow()
    quote.status = QuoteStatus.FINALIZED
    quote.valid_until = valid_until
    quote.notes = final_notes
    quote.pdf_path = path
    quote.finalized_at = now
    quote.updated_at = now

    log_action(session, AuditAction.QUOTE_FINALIZED, 'Quote', quote.id, user_id,
               f"Quote {quote.quote_number} finalized for {quote.customer_name}. "
               f"Total: {quote.total_amount} {quote.currency}. PDF: {path}",
               commit=False)
    return pdf


def finalize_quote(session: Session, quote_id: int, user_id: str,
                   validity_days: Optional[int] = None, notes: Optional[str] = None) -> FinalizeResult:
    """
    Freeze a DRAFT quote, store its final PDF and record the transition.

    Only one finalize per quote id runs at a time. A quote that is already
    FINALIZED is returned as-is with its stored artifact.
    """
    if validity_days is not None:
        validity_days = _parse_validity_days(validity_days)

    with _quote_locks.hold(quote_id, _lock_timeout()):
        try:
            quote = _get_quote_for_update(session, quote_id)

            if quote.status == QuoteStatus.FINALIZED and quote.pdf_path:
                logger.info(f"[QUOTE] Quote {quote.quote_number} already finalized, returning stored artifact")
                session.rollback()
                return _existing_result(quote)

            if not quote.can_transition_to(QuoteStatus.FINALIZED):
                raise InvalidTransitionError(quote.status, QuoteStatus.FINALIZED)

            pdf = _issue(session, quote, user_id, validity_days, notes)
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"[QUOTE] Finalize failed for quote {quote_id}: {e}")
            raise

    logger.info(f"[QUOTE] Quote {quote.quote_number} finalized by {user_id}")
    return FinalizeResult(quote, pdf, _download_url(quote.pdf_path))


def create_and_finalize(session: Session, data: Union[QuoteRequest, Mapping[str, Any]],
                        user_id: str) -> FinalizeResult:
    """
    Inline create + finalize. Payload adds validity_days and notes.

    Insert, render and upload share one transaction: if any step fails
    nothing is kept, not even a draft.
    """
    request = data if isinstance(data, QuoteRequest) else QuoteRequest.from_dict(data)
    quote = _build_quote(session, request, user_id, QuoteStatus.DRAFT)

    try:
        quote.quote_number = _unique_quote_number(session)
        session.add(quote)
        session.flush()
        log_action(session, AuditAction.QUOTE_CREATED, 'Quote', quote.id, user_id,
                   f"Quote {quote.quote_number} created for {quote.customer_name}", commit=False)
        pdf = _issue(session, quote, user_id, request.validity_days, request.notes)
        session.commit()
    except IntegrityError as e:
        session.rollback()
        logger.warning(f"[QUOTE] Quote number {quote.quote_number} rejected by the database: {e}")
        raise ConflictError('Quote number collision, retry the request')
    except Exception as e:
        session.rollback()
        logger.error(f"[QUOTE] Inline finalize failed for {request.customer_name}: {e}")
        raise

    logger.info(f"[QUOTE] Quote {quote.quote_number} created and finalized by {user_id}")
    return FinalizeResult(quote, pdf, _download_url(quote.pdf_path))


# --- Decisions and expiry ----------------------------------------------------

def _decide(session: Session, quote_id: int, target: QuoteStatus, action: AuditAction,
            user_id: str, reason: Optional[str]) -> Quote:
    with _quote_locks.hold(quote_id, _lock_timeout()):
        get_quote(session, quote_id)  # past-deadline quotes expire before any decision
        try:
            quote = _get_quote_for_update(session, quote_id)
            if not quote.can_transition_to(target):
                raise InvalidTransitionError(quote.status, target)

            quote.status = target
            quote.updated_at = utcnow()
            detail = f"Quote {quote.quote_number} {target.value.lower()}"
            if reason:
                detail += f": {reason}"
            log_action(session, action, 'Quote', quote.id, user_id, detail, commit=False)
            session.commit()
        except Exception:
            session.rollback()
            raise

    logger.info(f"[QUOTE] Quote {quote.quote_number} {target.value} by {user_id}")
    return quote


def approve_quote(session: Session, quote_id: int, user_id: str, reason: Optional[str] = None) -> Quote:
    return _decide(session, quote_id, QuoteStatus.APPROVED, AuditAction.QUOTE_APPROVED, user_id, reason)


def reject_quote(session: Session, quote_id: int, user_id: str, reason: Optional[str] = None) -> Quote:
    return _decide(session, quote_id, QuoteStatus.REJECTED, AuditAction.QUOTE_REJECTED, user_id, reason)


def expire_quotes(session: Session, now: Optional[datetime] = None) -> int:
    """Sweep FINALIZED quotes past their deadline to EXPIRED. Returns the count."""
    now = now or utcnow()
    due = session.query(Quote).filter(
        Quote.status == QuoteStatus.FINALIZED,
        Quote.valid_until < now
    ).all()
    if not due:
        return 0

    try:
        for quote in due:
            quote.status = QuoteStatus.EXPIRED
            log_action(session, AuditAction.QUOTE_EXPIRED, 'Quote', quote.id, 'system',
                       f"Quote {quote.quote_number} expired (valid until {quote.valid_until:%Y-%m-%d})",
                       commit=False)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"[QUOTE] Expired {len(due)} quote(s)")
    return len(due)


# --- Delete and artifacts ----------------------------------------------------

def delete_quote(session: Session, quote_id: int, user_id: str) -> None:
    """
    Delete a quote that was never issued.

    FINALIZED, APPROVED, REJECTED and EXPIRED quotes cannot be deleted; their
    artifacts stay in the store.
    """
    with _quote_locks.hold(quote_id, _lock_timeout()):
        try:
            quote = _get_quote_for_update(session, quote_id)
            if quote.is_issued:
                raise InvalidTransitionError(quote.status, 'DELETED')

            number = quote.quote_number
            session.delete(quote)
            log_action(session, AuditAction.QUOTE_DELETED, 'Quote', quote_id, user_id,
                       f"Quote {number} deleted", commit=False)
            session.commit()
        except Exception:
            session.rollback()
            raise

    logger.info(f"[QUOTE] Quote {number} deleted by {user_id}")


def download_pdf(session: Session, quote_id: int) -> Tuple[Quote, bytes]:
    """Stored final PDF of a finalized quote."""
    quote = get_quote(session, quote_id)
    if not quote.pdf_path:
        raise ArtifactMissingError(f'Quote {quote.quote_number} has not been finalized yet')
    pdf = get_artifact_store().retrieve(quote.pdf_path)
    if pdf is None:
        logger.error(f"[QUOTE] Artifact {quote.pdf_path} missing for quote {quote.quote_number}")
        raise ArtifactMissingError(f'Artifact for quote {quote.quote_number} is missing')
    return quote, pdf


def get_download_link(session: Session, quote_id: int, ttl_hours: Optional[int] = None) -> str:
    """Short-lived, read-only link to the stored final PDF."""
    quote = get_quote(session, quote_id)
    if not quote.pdf_path:
        raise ArtifactMissingError(f'Quote {quote.quote_number} has not been finalized yet')
    hours = ttl_hours or current_app.config.get('DOWNLOAD_LINK_TTL_HOURS', 24)
    return get_artifact_store().issue_download_link(quote.pdf_path, timedelta(hours=hours))
