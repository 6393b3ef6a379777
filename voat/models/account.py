from sqlalchemy import Boolean, Column, DateTime, Integer, String

from . import Base, utcnow

ROLES = ('superadmin', 'admin', 'hr', 'jobseeker')


class Account(Base):
    __tablename__ = 'accounts'

    id = Column(Integer, primary_key=True, autoincrement=True)
    external_id = Column(String(20), unique=True, nullable=False)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False)
    resume_ref = Column(String(512))
    verified = Column(Boolean, default=False, nullable=False)

    login_attempts = Column(Integer, default=0, nullable=False)
    otp_attempts = Column(Integer, default=0, nullable=False)
    last_failed_login_attempt = Column(DateTime)
    lockout_expires = Column(DateTime)
    otp = Column(String(6))
    otp_expires = Column(DateTime)
    last_otp_sent = Column(DateTime)

    reset_token = Column(String(128), unique=True)
    reset_expires = Column(DateTime)
    verification_token = Column(String(128), unique=True)
    verification_expires = Column(DateTime)
    pending_email = Column(String(255))

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def is_locked(self, now) -> bool:
        return self.lockout_expires is not None and self.lockout_expires > now

    def summary(self) -> dict:
        return {
            'id': self.id,
            'voatId': self.external_id,
            'name': self.name,
            'email': self.email,
            'role': self.role,
            'verified': self.verified,
        }
