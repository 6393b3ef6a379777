import secrets
from typing import Optional

from email_validator import EmailNotValidError, validate_email

OTP_LENGTH = 6


def generate_otp() -> str:
    return f"{secrets.randbelow(10 ** OTP_LENGTH):0{OTP_LENGTH}d}"


def generate_token() -> str:
    """Opaque single-use token for signup continuation, password reset and email change."""
    return secrets.token_urlsafe(32)


def normalize_email(email: Optional[str]) -> str:
    return (email or '').strip().lower()


def is_valid_email(email: Optional[str]) -> bool:
    if not email:
        return False
    try:
        validate_email(email.strip(), check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def is_valid_otp(otp: Optional[str]) -> bool:
    return bool(otp) and len(otp) == OTP_LENGTH and otp.isdigit()
