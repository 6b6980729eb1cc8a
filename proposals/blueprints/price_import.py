"""Price import blueprint - CSV uploads and folder imports."""
from flask import Blueprint, request, jsonify, g

from proposals.database import get_session
from proposals.exceptions import ValidationError
from proposals.services.price_import_service import (
    import_upload,
    list_import_files,
    import_file
)

price_import_bp = Blueprint('price_import', __name__, url_prefix='/api/price-import')


@price_import_bp.route('', methods=['POST'])
def upload():
    """Import an uploaded CSV (multipart field 'file')."""
    file = request.files.get('file')
    if not file or not file.filename:
        raise ValidationError('No file uploaded', field='file')

    result = import_upload(get_session(), file.stream, file.filename, g.user_id)
    return jsonify(result.to_dict())


@price_import_bp.route('/files', methods=['GET'])
def files():
    return jsonify(list_import_files())


@price_import_bp.route('/files/<string:file_name>', methods=['POST'])
def import_from_folder(file_name):
    result = import_file(get_session(), file_name, user_id=g.user_id)
    return jsonify(result.to_dict())
