from sqlalchemy import Column, DateTime, Integer, String

from . import Base, utcnow


class PendingSignup(Base):
    """An unverified signup, promoted into an Account once its OTP is confirmed."""

    __tablename__ = 'pending_signups'

    id = Column(Integer, primary_key=True, autoincrement=True)
    temp_token = Column(String(64), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    resume_ref = Column(String(512))
    role = Column(String(20), nullable=False)

    otp = Column(String(6), nullable=False)
    otp_expires = Column(DateTime, nullable=False)
    last_otp_sent = Column(DateTime)

    verify_failures = Column(Integer, default=0, nullable=False)
    verify_block_expires = Column(DateTime)
    resend_count = Column(Integer, default=0, nullable=False)
    resend_block_expires = Column(DateTime)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    def block_expires(self, now):
        """Latest active block timestamp, or None when not blocked."""
        active = [ts for ts in (self.verify_block_expires, self.resend_block_expires) if ts and ts > now]
        return max(active) if active else None
