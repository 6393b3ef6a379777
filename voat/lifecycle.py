"""Account lifecycle: signup verification, login, password reset, email change.

All state lives in the Credential Store; nothing is cached between requests.
Each operation runs in one store transaction, and every row whose counters it
changes is read ``FOR UPDATE``.

Delivery ordering is notify-before-commit. An OTP, reset token or pending
email is only persisted once the Notifier reports success. Rate-limit
bookkeeping (``last_otp_sent`` and the resend counter) is persisted whether or
not delivery worked, so a failing mailbox cannot be used to skip the cooldown.

Failures that must still persist a counter change (a wrong code, a wrong
password, a failed delivery) are collected during the transaction and raised
after it commits. Failures with nothing to persist are raised directly and
roll the transaction back.

An elapsed account lockout only clears ``lockout_expires``; the attempt
counters stay exhausted, so the next miss locks the account again. They are
reset by a successful login or by requesting a fresh login OTP. A pending
signup whose block has elapsed gets its matching counter reset on the next
access.
"""

import hmac
import logging
import math
from datetime import timedelta

from sqlalchemy.exc import IntegrityError

from voat.errors import (
    Conflict,
    DeliveryError,
    EmailInUse,
    Expired,
    IncorrectCode,
    IncorrectPassword,
    InvalidToken,
    Locked,
    NotFound,
    RateLimited,
    SamePassword,
    Unverified,
    ValidationError,
)
from voat.helpers.otp_utils import (
    generate_otp,
    generate_token,
    is_valid_email,
    is_valid_otp,
    normalize_email,
)
from voat.helpers.password_utils import check_password, hash_password, password_violations
from voat.models import utcnow
from voat.models.account import ROLES
from voat.models.pending_signup import PendingSignup
from voat.store import AccountUpdate, NewAccount, PendingSignupUpdate
from voat.tokens import create_access_token

logger = logging.getLogger(__name__)

OTP_TTL = timedelta(minutes=5)
RESEND_COOLDOWN = timedelta(seconds=30)
BLOCK_DURATION = timedelta(minutes=5)
LINK_TTL = timedelta(hours=1)
TOKEN_TTL = timedelta(hours=1)

MAX_SIGNUP_RESENDS = 3
MAX_SIGNUP_VERIFY_FAILURES = 3
MAX_LOGIN_ATTEMPTS = 5
MAX_LOGIN_OTP_ATTEMPTS = 3

SIGNUP_MESSAGE = "Signup pending verification. Please check your email for the OTP."
RESET_MESSAGE = "If a user with that email exists, a password reset link has been sent."
RESET_FAILURE_MESSAGE = "An error occurred while processing your request. Please try again later."
EMAIL_CHANGE_MESSAGE = "If the account exists, a verification link has been sent to the new email address."


def minutes_until(moment, now) -> int:
    return max(1, math.ceil((moment - now).total_seconds() / 60))


def seconds_until(moment, now) -> int:
    return max(1, math.ceil((moment - now).total_seconds()))


def codes_match(expected, given) -> bool:
    if not expected or not given:
        return False
    return hmac.compare_digest(str(expected).strip(), str(given).strip())


def _isoformat(moment) -> str:
    return moment.isoformat() + 'Z'


class AccountLifecycle:
    def __init__(self, store, notifier, token_secret: str, token_algorithm: str = 'HS256',
                 token_ttl: timedelta = TOKEN_TTL, frontend_url: str = '', clock=utcnow,
                 otp_generator=generate_otp, token_generator=generate_token):
        self.store = store
        self.notifier = notifier
        self.token_secret = token_secret
        self.token_algorithm = token_algorithm
        self.token_ttl = token_ttl
        self.frontend_url = frontend_url.rstrip('/')
        self.clock = clock
        self.otp_generator = otp_generator
        self.token_generator = token_generator

    # ------------------------------------------------------------------
    # Signup
    # ------------------------------------------------------------------

    def initiate_signup(self, name, email, password, role, resume_ref=None, discard_resume=None) -> dict:
        """Start a signup and send its OTP.

        Returns ``{message, tempToken}``. The same shape comes back when the
        email already has an account (with a token that matches nothing) and
        when a signup for the email is already pending (with that signup's
        token and no new OTP).

        ``discard_resume(resume_ref)`` is called when no new pending signup
        ends up holding ``resume_ref``, including when the call raises.
        """
        created = False
        try:
            response, created = self._start_signup(name, email, password, role, resume_ref)
        finally:
            if discard_resume is not None and resume_ref and not created:
                discard_resume(resume_ref)
        return response

    def _start_signup(self, name, email, password, role, resume_ref):
        name = (name or '').strip()
        email = normalize_email(email)
        role = (role or '').strip().lower()

        errors = []
        if not name:
            errors.append("Name is required")
        if not is_valid_email(email):
            errors.append("Invalid email")
        errors.extend(password_violations(password))
        if role not in ROLES:
            errors.append("Invalid role")
        elif role == 'jobseeker' and not resume_ref:
            errors.append("Resume required for jobseekers")
        if errors:
            raise ValidationError(errors)

        now = self.clock()
        try:
            with self.store.begin() as tx:
                if tx.account_by_email(email) is not None:
                    logger.info("Signup requested for an already registered email %s", email)
                    return self._signup_response(self.token_generator()), False

                pending = tx.pending_by_email(email)
                if pending is not None:
                    self._release_pending_blocks(tx, pending, now)
                    blocked_until = pending.block_expires(now)
                    if blocked_until is not None:
                        minutes = minutes_until(blocked_until, now)
                        raise RateLimited(
                            f"Too many attempts. Please try again in {minutes} minute(s).",
                            retry_after_minutes=minutes,
                        )
                    if pending.otp_expires > now:
                        return self._signup_response(pending.temp_token), False
                    tx.delete_pending(pending)

                otp = self.otp_generator()
                pending = PendingSignup(
                    temp_token=self.token_generator(),
                    name=name,
                    email=email,
                    password_hash=hash_password(password),
                    resume_ref=resume_ref if role == 'jobseeker' else None,
                    role=role,
                    otp=otp,
                    otp_expires=now + OTP_TTL,
                    last_otp_sent=now,
                    verify_failures=0,
                    resend_count=0,
                )
                if not self.notifier.send_otp(email, otp):
                    raise DeliveryError("Failed to send OTP")
                tx.add_pending(pending)
                logger.info("Signup OTP sent to %s (role=%s)", email, role)
                return self._signup_response(pending.temp_token), role == 'jobseeker'
        except IntegrityError:
            logger.warning("Concurrent signup detected for %s", email)
            raise Conflict("A signup for this email is already in progress")

    def resend_signup_otp(self, email, temp_token) -> dict:
        email = normalize_email(email)
        if not email or not temp_token:
            raise ValidationError("Email and signup token are required")

        now = self.clock()
        failure = None
        with self.store.begin() as tx:
            pending = tx.pending_by_token(temp_token)
            if pending is None or pending.email != email:
                raise InvalidToken("Invalid or expired signup session. Please signup again.")

            self._release_pending_blocks(tx, pending, now)
            blocked_until = pending.block_expires(now)
            if blocked_until is not None:
                minutes = minutes_until(blocked_until, now)
                raise RateLimited(
                    f"Too many attempts. Please try again in {minutes} minute(s).",
                    retry_after_minutes=minutes,
                )

            if pending.last_otp_sent is not None and now - pending.last_otp_sent < RESEND_COOLDOWN:
                seconds = seconds_until(pending.last_otp_sent + RESEND_COOLDOWN, now)
                raise RateLimited(
                    f"Please wait {seconds} second(s) before requesting another OTP.",
                    retry_after_seconds=seconds,
                )

            resend_count = pending.resend_count + 1
            if resend_count > MAX_SIGNUP_RESENDS:
                tx.update_pending(pending, PendingSignupUpdate(
                    resend_count=resend_count,
                    resend_block_expires=now + BLOCK_DURATION,
                ))
                logger.warning("Signup for %s blocked after %d resend requests", email, resend_count)
                failure = RateLimited(
                    "Too many OTP requests. Please try again in 5 minute(s).",
                    retry_after_minutes=minutes_until(now + BLOCK_DURATION, now),
                )
            else:
                otp = self.otp_generator()
                if self.notifier.send_otp(email, otp):
                    tx.update_pending(pending, PendingSignupUpdate(
                        otp=otp,
                        otp_expires=now + OTP_TTL,
                        last_otp_sent=now,
                        resend_count=resend_count,
                    ))
                    logger.info("Signup OTP resent to %s (%d/%d)", email, resend_count, MAX_SIGNUP_RESENDS)
                else:
                    tx.update_pending(pending, PendingSignupUpdate(
                        last_otp_sent=now,
                        resend_count=resend_count,
                    ))
                    failure = DeliveryError("Failed to send OTP")

        if failure is not None:
            raise failure
        return {
            'message': "OTP resent. Please check your email.",
            'tempToken': temp_token,
            'resendsLeft': MAX_SIGNUP_RESENDS - resend_count,
        }

    def verify_signup_otp(self, email, otp, temp_token) -> dict:
        email = normalize_email(email)
        if not is_valid_email(email):
            raise ValidationError("Invalid email")
        if not is_valid_otp(otp):
            raise ValidationError("Invalid OTP")
        if not temp_token:
            raise ValidationError("Signup token is required")

        now = self.clock()
        failure = None
        result = None
        with self.store.begin() as tx:
            pending = tx.pending_by_token(temp_token)
            if pending is None:
                raise InvalidToken("Invalid or expired signup session. Please signup again.")
            if pending.email != email:
                raise ValidationError("Email mismatch")

            self._release_pending_blocks(tx, pending, now)
            blocked_until = pending.block_expires(now)
            if blocked_until is not None:
                minutes = minutes_until(blocked_until, now)
                raise RateLimited(
                    f"Too many failed attempts. Please try again in {minutes} minute(s).",
                    retry_after_minutes=minutes,
                )

            if pending.otp_expires <= now:
                tx.delete_pending(pending)
                failure = Expired("OTP expired. Please signup again.")
            elif not codes_match(pending.otp, otp):
                failures = pending.verify_failures + 1
                attempts_left = max(0, MAX_SIGNUP_VERIFY_FAILURES - failures)
                changes = PendingSignupUpdate(verify_failures=failures)
                retry_after = None
                if attempts_left == 0:
                    changes.verify_block_expires = now + BLOCK_DURATION
                    retry_after = minutes_until(now + BLOCK_DURATION, now)
                    logger.warning("Signup for %s blocked after %d wrong OTPs", email, failures)
                tx.update_pending(pending, changes)
                failure = IncorrectCode(attempts_left=attempts_left, retryAfterMinutes=retry_after)
            else:
                account = tx.create_account(NewAccount(
                    name=pending.name,
                    email=pending.email,
                    password_hash=pending.password_hash,
                    role=pending.role,
                    resume_ref=pending.resume_ref,
                ))
                tx.delete_pending(pending)
                logger.info("Account %s created for %s", account.external_id, account.email)
                result = self._login_response("Signup verified successfully", account)

        if failure is not None:
            raise failure
        return result

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login_with_password(self, email, password) -> dict:
        email = normalize_email(email)
        if not is_valid_email(email):
            raise ValidationError("Invalid email")
        if not password:
            raise ValidationError("Password is required")

        now = self.clock()
        failure = None
        result = None
        with self.store.begin() as tx:
            account = tx.account_by_email(email, for_update=True)
            self._check_can_authenticate(tx, account, now)

            if not check_password(password, account.password_hash):
                attempts = account.login_attempts + 1
                attempts_left = max(0, MAX_LOGIN_ATTEMPTS - attempts)
                changes = AccountUpdate(login_attempts=attempts, last_failed_login_attempt=now)
                if attempts_left == 0:
                    changes.lockout_expires = now + BLOCK_DURATION
                    logger.warning("Account %s locked after %d failed logins", account.external_id, attempts)
                tx.update_account(account, changes)
                failure = IncorrectPassword(attempts_left=attempts_left)
            else:
                tx.update_account(account, AccountUpdate.reset_security())
                logger.info("Password login for %s", account.external_id)
                result = self._login_response("Logged in successfully", account)

        if failure is not None:
            raise failure
        return result

    def request_login_otp(self, email) -> dict:
        email = normalize_email(email)
        if not is_valid_email(email):
            raise ValidationError("Invalid email")

        now = self.clock()
        failure = None
        with self.store.begin() as tx:
            account = tx.account_by_email(email, for_update=True)
            self._check_can_authenticate(tx, account, now)

            if account.last_otp_sent is not None and now - account.last_otp_sent < RESEND_COOLDOWN:
                seconds = seconds_until(account.last_otp_sent + RESEND_COOLDOWN, now)
                raise RateLimited(
                    f"Please wait {seconds} second(s) before requesting another OTP.",
                    retry_after_seconds=seconds,
                )

            changes = AccountUpdate(last_otp_sent=now)
            if account.otp_attempts or account.login_attempts:
                changes.otp_attempts = 0
                changes.login_attempts = 0

            otp = self.otp_generator()
            expires = now + OTP_TTL
            if self.notifier.send_otp(account.email, otp):
                changes.otp = otp
                changes.otp_expires = expires
                logger.info("Login OTP sent to %s", account.external_id)
            else:
                changes.otp = None
                changes.otp_expires = None
                failure = DeliveryError("Failed to send OTP")
            tx.update_account(account, changes)

        if failure is not None:
            raise failure
        return {'message': "OTP sent", 'expiresAt': _isoformat(expires)}

    def verify_login_otp(self, email, otp) -> dict:
        email = normalize_email(email)
        if not is_valid_email(email):
            raise ValidationError("Invalid email")
        if not is_valid_otp(otp):
            raise ValidationError("Invalid OTP")

        now = self.clock()
        failure = None
        result = None
        with self.store.begin() as tx:
            account = tx.account_by_email(email, for_update=True)
            self._check_can_authenticate(tx, account, now)

            if not account.otp or account.otp_expires is None or account.otp_expires <= now:
                if account.otp:
                    tx.update_account(account, AccountUpdate(otp=None, otp_expires=None))
                failure = Expired("OTP expired or not found")
            elif not codes_match(account.otp, otp):
                otp_attempts = account.otp_attempts + 1
                login_attempts = account.login_attempts + 1
                otp_left = max(0, MAX_LOGIN_OTP_ATTEMPTS - otp_attempts)
                login_left = max(0, MAX_LOGIN_ATTEMPTS - login_attempts)
                changes = AccountUpdate(
                    otp_attempts=otp_attempts,
                    login_attempts=login_attempts,
                    last_failed_login_attempt=now,
                )
                if otp_left == 0 or login_left == 0:
                    changes.lockout_expires = now + BLOCK_DURATION
                    changes.otp = None
                    changes.otp_expires = None
                    logger.warning("Account %s locked after failed OTP logins", account.external_id)
                tx.update_account(account, changes)
                failure = IncorrectCode(attempts_left=otp_left, loginAttemptsLeft=login_left)
            else:
                tx.update_account(account, AccountUpdate.reset_security())
                logger.info("OTP login for %s", account.external_id)
                result = self._login_response("Login successful", account)

        if failure is not None:
            raise failure
        return result

    # ------------------------------------------------------------------
    # Password reset and change
    # ------------------------------------------------------------------

    def request_password_reset(self, email) -> dict:
        """Email a reset link. The reply never reveals whether the account exists."""
        email = normalize_email(email)
        if not email:
            raise ValidationError("Email is required")
        if not is_valid_email(email):
            raise ValidationError("Invalid email")

        now = self.clock()
        failure = None
        with self.store.begin() as tx:
            account = tx.account_by_email(email, for_update=True)
            if account is None:
                logger.info("Password reset requested for unknown email %s", email)
                return {'message': RESET_MESSAGE}

            token = self.token_generator()
            reset_link = f"{self.frontend_url}/reset-password?token={token}"
            if self.notifier.send_password_reset(account.email, reset_link):
                tx.update_account(account, AccountUpdate(reset_token=token, reset_expires=now + LINK_TTL))
                logger.info("Password reset link sent for %s", account.external_id)
            else:
                failure = DeliveryError(RESET_FAILURE_MESSAGE)

        if failure is not None:
            raise failure
        return {'message': RESET_MESSAGE}

    def reset_password(self, token, new_password) -> dict:
        if not token or not new_password:
            raise ValidationError("Token and new password are required")

        now = self.clock()
        with self.store.begin() as tx:
            account = tx.account_by_reset_token(token, now)
            if account is None:
                raise InvalidToken("Invalid or expired reset token")
            violations = password_violations(new_password)
            if violations:
                raise ValidationError(violations)
            if check_password(new_password, account.password_hash):
                raise SamePassword()
            tx.update_account(account, AccountUpdate(
                password_hash=hash_password(new_password),
                reset_token=None,
                reset_expires=None,
            ))
            logger.info("Password reset for %s", account.external_id)
        return {'message': "Password reset successful"}

    def change_password(self, email, current_password, new_password) -> dict:
        email = normalize_email(email)
        if not current_password or not new_password:
            raise ValidationError("Current and new password are required")

        with self.store.begin() as tx:
            account = tx.account_by_email(email, for_update=True)
            if account is None:
                raise NotFound()
            if not check_password(current_password, account.password_hash):
                raise IncorrectPassword("Current password is incorrect")
            violations = password_violations(new_password)
            if violations:
                raise ValidationError(violations)
            if check_password(new_password, account.password_hash):
                raise SamePassword()
            tx.update_account(account, AccountUpdate(
                password_hash=hash_password(new_password),
                reset_token=None,
                reset_expires=None,
            ))
            logger.info("Password changed for %s", account.external_id)
        return {'message': "Password changed successfully"}

    # ------------------------------------------------------------------
    # Email change
    # ------------------------------------------------------------------

    def request_email_change(self, old_email, new_email) -> dict:
        old_email = normalize_email(old_email)
        new_email = normalize_email(new_email)
        errors = []
        if not is_valid_email(old_email):
            errors.append("Invalid current email")
        if not is_valid_email(new_email):
            errors.append("Invalid new email")
        if not errors and old_email == new_email:
            errors.append("New email must be different from the current email")
        if errors:
            raise ValidationError(errors)

        now = self.clock()
        failure = None
        with self.store.begin() as tx:
            account = tx.account_by_email(old_email, for_update=True)
            if account is None:
                logger.info("Email change requested for unknown email %s", old_email)
                return {'message': EMAIL_CHANGE_MESSAGE}
            if tx.email_in_use(new_email, exclude_id=account.id):
                raise EmailInUse()

            token = self.token_generator()
            verify_link = f"{self.frontend_url}/verify-email-change?token={token}"
            if self.notifier.send_email_change(new_email, verify_link):
                tx.update_account(account, AccountUpdate(
                    pending_email=new_email,
                    verification_token=token,
                    verification_expires=now + LINK_TTL,
                ))
                logger.info("Email change link sent for %s", account.external_id)
            else:
                failure = DeliveryError("Failed to send verification email")

        if failure is not None:
            raise failure
        return {'message': EMAIL_CHANGE_MESSAGE}

    def confirm_email_change(self, token) -> dict:
        if not token:
            raise ValidationError("Verification token is required")

        now = self.clock()
        failure = None
        cleared = AccountUpdate(pending_email=None, verification_token=None, verification_expires=None)
        with self.store.begin() as tx:
            account = tx.account_by_verification_token(token)
            if account is None or not account.pending_email:
                raise InvalidToken("Invalid verification token")

            new_email = account.pending_email
            if account.verification_expires is None or account.verification_expires <= now:
                tx.update_account(account, cleared)
                failure = Expired("Verification link has expired")
            elif tx.email_in_use(new_email, exclude_id=account.id):
                tx.update_account(account, cleared)
                failure = EmailInUse()
            else:
                cleared.email = new_email
                tx.update_account(account, cleared)
                logger.info("Email changed for %s", account.external_id)

        if failure is not None:
            raise failure
        return {'message': "Email updated successfully", 'email': new_email}

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def account_summary(self, account_id) -> dict:
        with self.store.begin() as tx:
            account = tx.account_by_id(account_id)
            if account is None:
                raise NotFound()
            return account.summary()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_can_authenticate(self, tx, account, now) -> None:
        if account is None:
            raise NotFound()
        if account.lockout_expires is not None and account.lockout_expires <= now:
            # Counters survive the lockout; only a success or a new login OTP resets them.
            tx.update_account(account, AccountUpdate(lockout_expires=None))
        if account.is_locked(now):
            minutes = minutes_until(account.lockout_expires, now)
            raise Locked(minutes, f"Account temporarily locked. Please try again in {minutes} minute(s).")
        if not account.verified:
            raise Unverified()

    @staticmethod
    def _release_pending_blocks(tx, pending, now) -> None:
        changes = PendingSignupUpdate()
        released = False
        if pending.verify_block_expires is not None and pending.verify_block_expires <= now:
            changes.verify_failures = 0
            changes.verify_block_expires = None
            released = True
        if pending.resend_block_expires is not None and pending.resend_block_expires <= now:
            changes.resend_count = 0
            changes.resend_block_expires = None
            released = True
        if released:
            tx.update_pending(pending, changes)

    @staticmethod
    def _signup_response(temp_token) -> dict:
        return {'message': SIGNUP_MESSAGE, 'tempToken': temp_token}

    def _login_response(self, message, account) -> dict:
        token = create_access_token(
            account,
            self.token_secret,
            algorithm=self.token_algorithm,
            expires_delta=self.token_ttl,
        )
        return {'message': message, 'token': token, 'user': account.summary()}
