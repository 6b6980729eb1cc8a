"""Artifacts blueprint - serves signed download links of the local backend."""
import io
import logging
import posixpath

from flask import Blueprint, send_file, abort

from proposals.exceptions import ArtifactMissingError
from proposals.services.storage_service import get_artifact_store, LocalArtifactStore

logger = logging.getLogger(__name__)

artifacts_bp = Blueprint('artifacts', __name__, url_prefix='/api/artifacts')


@artifacts_bp.route('/<string:token>', methods=['GET'])
def download(token):
    """Read-only download; the token carries the path and its expiry."""
    store = get_artifact_store()
    if not isinstance(store, LocalArtifactStore):
        # S3 links are presigned and never point here
        abort(404)

    path = store.resolve_token(token)
    data = store.retrieve(path)
    if data is None:
        logger.warning(f"[STORAGE] Signed link points to missing artifact '{path}'")
        raise ArtifactMissingError(f"Artifact '{path}' is missing")

    return send_file(
        io.BytesIO(data),
        mimetype='application/pdf',
        as_attachment=True,
        download_name=posixpath.basename(path)
    )
