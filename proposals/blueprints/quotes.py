"""Quotes blueprint - draft, preview, finalize and decide on quotes."""
import io

from flask import Blueprint, request, jsonify, send_file, g

from proposals.database import get_session
from proposals.exceptions import ValidationError
from proposals.services.document_service import list_layouts
from proposals.services.quote_service import (
    create_draft,
    update_draft,
    preview_quote,
    preview_existing,
    finalize_quote,
    create_and_finalize,
    approve_quote,
    reject_quote,
    get_quote,
    list_quotes,
    delete_quote,
    download_pdf,
    get_download_link
)

quotes_bp = Blueprint('quotes', __name__, url_prefix='/api')


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError('Request body must be JSON')
    return data


def _pdf_response(pdf: bytes, filename: str, as_attachment: bool = False):
    return send_file(
        io.BytesIO(pdf),
        mimetype='application/pdf',
        as_attachment=as_attachment,
        download_name=filename
    )


def _finalize_response(result):
    payload = {
        'quote': result.quote.to_dict(),
        'download_url': result.download_url,
        'already_finalized': result.already_finalized,
    }
    return jsonify(payload), 200 if result.already_finalized else 201


@quotes_bp.route('/templates', methods=['GET'])
def templates():
    return jsonify(list_layouts())


@quotes_bp.route('/quotes', methods=['GET'])
def quotes_index():
    """List quotes newest first (?status=FINALIZED&user=alice)."""
    quotes = list_quotes(
        get_session(),
        user_id=request.args.get('user') or None,
        status=request.args.get('status') or None
    )
    return jsonify([q.to_dict(include_lines=False) for q in quotes])


@quotes_bp.route('/quotes', methods=['POST'])
def create_quote():
    quote = create_draft(get_session(), _json_body(), g.user_id)
    return jsonify(quote.to_dict()), 201


@quotes_bp.route('/quotes/<int:quote_id>', methods=['GET'])
def quote_detail(quote_id):
    return jsonify(get_quote(get_session(), quote_id).to_dict())


@quotes_bp.route('/quotes/<int:quote_id>', methods=['PUT'])
def edit_quote(quote_id):
    quote = update_draft(get_session(), quote_id, _json_body(), g.user_id)
    return jsonify(quote.to_dict())


@quotes_bp.route('/quotes/<int:quote_id>', methods=['DELETE'])
def remove_quote(quote_id):
    delete_quote(get_session(), quote_id, g.user_id)
    return '', 204


@quotes_bp.route('/quotes/preview', methods=['POST'])
def preview():
    """Watermarked PDF of an unsaved quote. Nothing is stored."""
    quote, pdf = preview_quote(get_session(), _json_body(), g.user_id)
    return _pdf_response(pdf, f"{quote.quote_number}-preview.pdf")


@quotes_bp.route('/quotes/<int:quote_id>/preview', methods=['POST', 'GET'])
def preview_stored(quote_id):
    quote, pdf = preview_existing(get_session(), quote_id)
    return _pdf_response(pdf, f"{quote.quote_number}-preview.pdf")


@quotes_bp.route('/quotes/finalize', methods=['POST'])
def finalize_inline():
    """Create and finalize in one call."""
    return _finalize_response(create_and_finalize(get_session(), _json_body(), g.user_id))


@quotes_bp.route('/quotes/<int:quote_id>/finalize', methods=['POST'])
def finalize(quote_id):
    data = request.get_json(silent=True) or {}
    result = finalize_quote(
        get_session(),
        quote_id,
        g.user_id,
        validity_days=data.get('validity_days'),
        notes=data.get('notes')
    )
    return _finalize_response(result)


@quotes_bp.route('/quotes/<int:quote_id>/approve', methods=['POST'])
def approve(quote_id):
    data = request.get_json(silent=True) or {}
    quote = approve_quote(get_session(), quote_id, g.user_id, data.get('reason'))
    return jsonify(quote.to_dict(include_lines=False))


@quotes_bp.route('/quotes/<int:quote_id>/reject', methods=['POST'])
def reject(quote_id):
    data = request.get_json(silent=True) or {}
    quote = reject_quote(get_session(), quote_id, g.user_id, data.get('reason'))
    return jsonify(quote.to_dict(include_lines=False))


@quotes_bp.route('/quotes/<int:quote_id>/pdf', methods=['GET'])
def quote_pdf(quote_id):
    """Stored final PDF."""
    quote, pdf = download_pdf(get_session(), quote_id)
    return _pdf_response(pdf, f"{quote.quote_number}.pdf", as_attachment=True)


@quotes_bp.route('/quotes/<int:quote_id>/download-link', methods=['GET'])
def download_link(quote_id):
    ttl_hours = request.args.get('ttl_hours', type=int)
    if ttl_hours is not None and ttl_hours < 1:
        raise ValidationError('ttl_hours must be a positive integer', field='ttl_hours')
    url = get_download_link(get_session(), quote_id, ttl_hours)
    return jsonify({'download_url': url})
