from datetime import datetime, timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from voat.app import create_app
from voat.config import Settings

JWT_SECRET = 'test-secret-key-that-is-long-enough-for-hs256'
PASSWORD = 'Abc123!'


class FakeNotifier:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send_otp(self, recipient, otp):
        return self._record('otp', recipient, otp)

    def send_password_reset(self, recipient, reset_link):
        return self._record('reset', recipient, reset_link)

    def send_email_change(self, recipient, verify_link):
        return self._record('email_change', recipient, verify_link)

    def _record(self, kind, recipient, payload):
        if self.fail:
            return False
        self.sent.append((kind, recipient, payload))
        return True

    def of_kind(self, kind):
        return [entry for entry in self.sent if entry[0] == kind]

    def last_link_token(self, kind):
        link = self.of_kind(kind)[-1][2]
        return parse_qs(urlparse(link).query)['token'][0]


class FakeClock:
    def __init__(self, start=datetime(2025, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class OtpSequence:
    """Returns the queued codes in order, then the default code forever."""

    def __init__(self, default='123456'):
        self.default = default
        self.queue = []

    def __call__(self):
        return self.queue.pop(0) if self.queue else self.default


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def otp():
    return OtpSequence()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        jwt_secret=JWT_SECRET,
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        mail_suppress_send=True,
        upload_folder=str(tmp_path / 'uploads'),
        frontend_url='http://frontend.test',
    )


@pytest.fixture
def app(settings, notifier, clock, otp):
    app = create_app(settings, notifier=notifier, clock=clock, otp_generator=otp)
    app.config['TESTING'] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def lifecycle(app):
    return app.extensions['account_lifecycle']


@pytest.fixture
def register(lifecycle, otp):
    """Sign up and verify an account, returning the verification result."""
    def _register(email='a@b.com', password=PASSWORD, role='hr', name='Test User'):
        started = lifecycle.initiate_signup(name, email, password, role, resume_ref='resume.pdf')
        return lifecycle.verify_signup_otp(email, otp.default, started['tempToken'])
    return _register
