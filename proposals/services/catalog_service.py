"""Catalog lookup - read access to products plus deactivation."""

import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from proposals.exceptions import NotFoundError, ConflictError
from proposals.models import Product, QuoteLineItem, AuditAction
from proposals.services.audit_service import log_action
from proposals.services.cache_service import get_cache

logger = logging.getLogger(__name__)

ACTIVE_PRODUCTS_LISTING = 'active-products'


def list_active_products(session: Session) -> List[Product]:
    """Active products ordered by category, then name."""
    return (
        session.query(Product)
        .filter(Product.active.is_(True))
        .order_by(Product.category, Product.name)
        .all()
    )


def list_active_products_cached(session: Session) -> List[dict]:
    """Serialized active product listing, served from Redis when available."""
    return get_cache().listing(
        ACTIVE_PRODUCTS_LISTING,
        lambda: [p.to_dict() for p in list_active_products(session)]
    )


def invalidate_products_cache() -> None:
    get_cache().invalidate()


def get_product(session: Session, product_id: int, include_inactive: bool = False) -> Product:
    """Fetch a single product or raise NotFoundError."""
    product = session.get(Product, product_id)
    if not product or (not product.active and not include_inactive):
        raise NotFoundError(f'Product {product_id} not found')
    return product


def get_products_by_ids(session: Session, product_ids: Iterable[int], active_only: bool = True) -> Dict[int, Product]:
    """Batch fetch products keyed by id. Missing ids are simply absent."""
    ids = list({int(pid) for pid in product_ids})
    if not ids:
        return {}
    query = session.query(Product).filter(Product.id.in_(ids))
    if active_only:
        query = query.filter(Product.active.is_(True))
    return {p.id: p for p in query.all()}


def get_product_by_sku(session: Session, sku: str) -> Optional[Product]:
    return session.query(Product).filter(Product.sku == sku).first()


def deactivate_product(session: Session, product_id: int, user_id: str = None) -> Product:
    """Flag a product inactive. Existing quotes keep their snapshots."""
    product = get_product(session, product_id, include_inactive=True)
    try:
        product.active = False
        log_action(session, AuditAction.PRODUCT_DEACTIVATED, 'Product', product.id, user_id,
                   f"Product {product.sku} deactivated", commit=False)
        session.commit()
    except Exception:
        session.rollback()
        raise
    invalidate_products_cache()
    logger.info(f"[CATALOG] Product {product.sku} deactivated by {user_id}")
    return product


def delete_product(session: Session, product_id: int) -> None:
    """Hard-delete a product that no quote line references."""
    product = get_product(session, product_id, include_inactive=True)
    referenced = session.query(QuoteLineItem.id).filter(QuoteLineItem.product_id == product_id).first()
    if referenced:
        raise ConflictError(
            f'Product {product.sku} is referenced by existing quotes; deactivate it instead.',
            retryable=False
        )
    try:
        session.delete(product)
        session.commit()
    except Exception:
        session.rollback()
        raise
    invalidate_products_cache()
