from functools import wraps
from typing import Optional

from flask import current_app, g, request

from voat.errors import Unauthorized
from voat.tokens import decode_access_token


def bearer_token() -> Optional[str]:
    auth_header = request.headers.get('Authorization', '')
    return auth_header.split(' ', 1)[1].strip() if auth_header.startswith('Bearer ') else None


def decode_request_token(token: str) -> dict:
    return decode_access_token(
        token,
        current_app.config['JWT_SECRET'],
        current_app.config.get('JWT_ALGORITHM', 'HS256'),
    )


def authenticate_token(f):
    """Require a valid bearer token; the decoded claims are stored on ``g.user``."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        token = bearer_token()
        if not token:
            current_app.logger.info("[auth] No bearer token for %s %s", request.method, request.path)
            raise Unauthorized()
        g.user = decode_request_token(token)
        current_app.logger.debug("[auth] %s %s as %s", request.method, request.path, g.user.get('voatId'))
        return f(*args, **kwargs)
    return wrapper
