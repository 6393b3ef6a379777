"""Credential Store: accounts and pending signups over SQLAlchemy sessions.

All reads that precede a counter update are taken ``FOR UPDATE`` so concurrent
requests for the same email serialise on the row. Updates go through the typed
:class:`AccountUpdate` / :class:`PendingSignupUpdate` structures, which list
exactly the fields the lifecycle is allowed to change.
"""

import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass, fields
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from voat.errors import Conflict, Internal
from voat.models import get_session
from voat.models.account import Account
from voat.models.id_counter import IdCounter
from voat.models.pending_signup import PendingSignup

logger = logging.getLogger(__name__)

EXTERNAL_ID_PREFIX = 'VOAT-'
EXTERNAL_ID_COUNTER = 'voat_id'
ID_ALLOCATION_RETRIES = 5

_EXTERNAL_ID_RE = re.compile(r'^VOAT-(\d+)$')


class _Unset:
    def __repr__(self):
        return 'UNSET'


UNSET = _Unset()


def _apply(record, changes) -> None:
    for field in fields(changes):
        value = getattr(changes, field.name)
        if value is not UNSET:
            setattr(record, field.name, value)


@dataclass
class AccountUpdate:
    """Mutable Account fields. Fields left UNSET are not touched; None clears."""

    email: object = UNSET
    password_hash: object = UNSET
    login_attempts: object = UNSET
    otp_attempts: object = UNSET
    last_failed_login_attempt: object = UNSET
    lockout_expires: object = UNSET
    otp: object = UNSET
    otp_expires: object = UNSET
    last_otp_sent: object = UNSET
    reset_token: object = UNSET
    reset_expires: object = UNSET
    verification_token: object = UNSET
    verification_expires: object = UNSET
    pending_email: object = UNSET

    @classmethod
    def reset_security(cls) -> 'AccountUpdate':
        return cls(
            login_attempts=0,
            otp_attempts=0,
            last_failed_login_attempt=None,
            lockout_expires=None,
            otp=None,
            otp_expires=None,
            last_otp_sent=None,
        )


@dataclass
class PendingSignupUpdate:
    otp: object = UNSET
    otp_expires: object = UNSET
    last_otp_sent: object = UNSET
    verify_failures: object = UNSET
    verify_block_expires: object = UNSET
    resend_count: object = UNSET
    resend_block_expires: object = UNSET


@dataclass
class NewAccount:
    name: str
    email: str
    password_hash: str
    role: str
    resume_ref: Optional[str] = None
    verified: bool = True


def format_external_id(number: int) -> str:
    return f"{EXTERNAL_ID_PREFIX}{number:03d}"


def parse_external_id(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    match = _EXTERNAL_ID_RE.match(value.strip())
    return int(match.group(1)) if match else None


class StoreTransaction:
    """Store operations bound to a single database transaction."""

    def __init__(self, session):
        self.session = session

    # Accounts

    def account_by_email(self, email: str, for_update: bool = False) -> Optional[Account]:
        stmt = select(Account).where(Account.email == email)
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.execute(stmt).scalars().first()

    def account_by_id(self, account_id: int) -> Optional[Account]:
        return self.session.get(Account, account_id)

    def account_by_reset_token(self, token: str, now) -> Optional[Account]:
        stmt = (
            select(Account)
            .where(Account.reset_token == token, Account.reset_expires > now)
            .with_for_update()
        )
        return self.session.execute(stmt).scalars().first()

    def account_by_verification_token(self, token: str) -> Optional[Account]:
        stmt = select(Account).where(Account.verification_token == token).with_for_update()
        return self.session.execute(stmt).scalars().first()

    def email_in_use(self, email: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(Account.id).where(Account.email == email)
        if exclude_id is not None:
            stmt = stmt.where(Account.id != exclude_id)
        return self.session.execute(stmt).first() is not None

    def update_account(self, account: Account, changes: AccountUpdate) -> Account:
        _apply(account, changes)
        self.session.flush()
        return account

    def create_account(self, new_account: NewAccount) -> Account:
        for attempt in range(1, ID_ALLOCATION_RETRIES + 1):
            external_id = self.allocate_external_id()
            account = Account(
                external_id=external_id,
                name=new_account.name,
                email=new_account.email,
                password_hash=new_account.password_hash,
                role=new_account.role,
                resume_ref=new_account.resume_ref,
                verified=new_account.verified,
                login_attempts=0,
                otp_attempts=0,
            )
            try:
                with self.session.begin_nested():
                    self.session.add(account)
                    self.session.flush()
                return account
            except IntegrityError:
                if self.email_in_use(new_account.email):
                    raise Conflict("Account already exists")
                logger.warning("External id %s already taken (attempt %d), retrying", external_id, attempt)
        raise Internal("Could not allocate an account identifier")

    def allocate_external_id(self) -> str:
        result = self.session.execute(
            update(IdCounter)
            .where(IdCounter.name == EXTERNAL_ID_COUNTER)
            .values(value=IdCounter.value + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self._seed_counter()
        value = self.session.execute(
            select(IdCounter.value).where(IdCounter.name == EXTERNAL_ID_COUNTER)
        ).scalar_one()
        return format_external_id(value)

    def _seed_counter(self) -> None:
        # First allocation: continue from the highest identifier already issued.
        rows = self.session.execute(
            select(Account.external_id).where(Account.external_id.like(f'{EXTERNAL_ID_PREFIX}%'))
        ).scalars()
        highest = max((n for n in (parse_external_id(v) for v in rows) if n is not None), default=0)
        try:
            with self.session.begin_nested():
                self.session.add(IdCounter(name=EXTERNAL_ID_COUNTER, value=highest + 1))
                self.session.flush()
        except IntegrityError:
            # Seeded concurrently by another request; take the next value from it.
            self.session.execute(
                update(IdCounter)
                .where(IdCounter.name == EXTERNAL_ID_COUNTER)
                .values(value=IdCounter.value + 1)
                .execution_options(synchronize_session=False)
            )

    # Pending signups

    def pending_by_email(self, email: str) -> Optional[PendingSignup]:
        stmt = select(PendingSignup).where(PendingSignup.email == email).with_for_update()
        return self.session.execute(stmt).scalars().first()

    def pending_by_token(self, token: str) -> Optional[PendingSignup]:
        stmt = select(PendingSignup).where(PendingSignup.temp_token == token).with_for_update()
        return self.session.execute(stmt).scalars().first()

    def add_pending(self, pending: PendingSignup) -> PendingSignup:
        self.session.add(pending)
        self.session.flush()
        return pending

    def update_pending(self, pending: PendingSignup, changes: PendingSignupUpdate) -> PendingSignup:
        _apply(pending, changes)
        self.session.flush()
        return pending

    def delete_pending(self, pending: PendingSignup) -> None:
        self.session.delete(pending)
        self.session.flush()


class CredentialStore:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    @contextmanager
    def begin(self):
        with get_session(self.session_factory) as session:
            yield StoreTransaction(session)
