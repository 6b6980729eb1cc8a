"""Products blueprint - read-only catalog API."""
from flask import Blueprint, request, jsonify

from proposals.database import get_session
from proposals.exceptions import ValidationError
from proposals.services.catalog_service import (
    list_active_products_cached,
    get_product,
    get_products_by_ids
)

products_bp = Blueprint('products', __name__, url_prefix='/api/products')


@products_bp.route('', methods=['GET'])
def list_products():
    """Active products, or a batch lookup with ?ids=1,2,3."""
    db_session = get_session()

    ids_param = request.args.get('ids', '').strip()
    if ids_param:
        try:
            ids = [int(part) for part in ids_param.split(',') if part.strip()]
        except ValueError:
            raise ValidationError('ids must be a comma separated list of integers', field='ids')
        products = get_products_by_ids(db_session, ids)
        return jsonify([products[pid].to_dict() for pid in ids if pid in products])

    return jsonify(list_active_products_cached(db_session))


@products_bp.route('/<int:product_id>', methods=['GET'])
def product_detail(product_id):
    product = get_product(get_session(), product_id)
    return jsonify(product.to_dict())
