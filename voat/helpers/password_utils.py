import re
from typing import List

import bcrypt

MIN_PASSWORD_LENGTH = 6
MAX_PASSWORD_BYTES = 72  # bcrypt input limit

_UPPERCASE_RE = re.compile(r'[A-Z]')
_DIGIT_RE = re.compile(r'\d')
_SPECIAL_RE = re.compile(r'[^A-Za-z0-9]')


def password_violations(password: str) -> List[str]:
    """Return every policy rule the password breaks, in a stable order."""
    password = password or ''
    violations = []
    if len(password) < MIN_PASSWORD_LENGTH:
        violations.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(password.encode('utf-8')) > MAX_PASSWORD_BYTES:
        violations.append(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    if not _UPPERCASE_RE.search(password):
        violations.append("Password must include an uppercase letter")
    if not _DIGIT_RE.search(password):
        violations.append("Password must include a number")
    if not _SPECIAL_RE.search(password):
        violations.append("Password must include a special character")
    return violations


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')


def check_password(password: str, password_hash: str) -> bool:
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Stored value is not a bcrypt hash.
        return False
