from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from voat.errors import Forbidden

DEFAULT_EXPIRE_MINUTES = 60


def create_access_token(account, secret: str, algorithm: str = 'HS256',
                        expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=DEFAULT_EXPIRE_MINUTES))
    payload = {
        'id': account.id,
        'voatId': account.external_id,
        'email': account.email,
        'role': account.role,
        'exp': expire,
    }
    return jwt.encode(payload, secret, algorithm=algorithm)


def decode_access_token(token: str, secret: str, algorithm: str = 'HS256') -> dict:
    try:
        return jwt.decode(token, secret, algorithms=[algorithm])
    except jwt.ExpiredSignatureError:
        raise Forbidden("Token has expired")
    except jwt.InvalidTokenError:
        raise Forbidden("Invalid or expired token")
