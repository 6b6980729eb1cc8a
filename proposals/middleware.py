"""Request context: who is calling."""
import re

from flask import g, request

DEFAULT_USER_ID = 'api-user'
_USER_ID_PATTERN = re.compile(r'^[\w.@+-]{1,128}$')


def load_user():
    """
    Load the caller identity into g.

    Authentication happens upstream; the gateway forwards the authenticated
    user in the X-User-Id header. Missing or malformed values fall back to
    the shared API user.
    """
    user_id = (request.headers.get('X-User-Id') or '').strip()
    g.user_id = user_id if _USER_ID_PATTERN.match(user_id) else DEFAULT_USER_ID
