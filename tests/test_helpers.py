from datetime import timedelta
from types import SimpleNamespace

import jwt
import pytest

from voat.errors import Forbidden
from voat.helpers.otp_utils import generate_otp, generate_token, is_valid_email, is_valid_otp, normalize_email
from voat.helpers.password_utils import check_password, hash_password, password_violations
from voat.lifecycle import codes_match
from voat.notifier import MailNotifier
from voat.tokens import create_access_token, decode_access_token

SECRET = 'another-test-secret-that-is-long-enough'


def test_valid_password_has_no_violations():
    assert password_violations('Abc123!') == []


def test_overlong_password():
    assert password_violations('A1!' + 'a' * 70) == ["Password must be at most 72 bytes"]


def test_missing_password():
    assert len(password_violations(None)) == 4


def test_hash_and_check():
    hashed = hash_password('Abc123!')
    assert hashed != 'Abc123!'
    assert check_password('Abc123!', hashed)
    assert not check_password('Abc123?', hashed)


def test_check_against_garbage_hash():
    assert not check_password('Abc123!', 'plaintext')
    assert not check_password('Abc123!', None)


def test_generated_otp_shape():
    for _ in range(20):
        code = generate_otp()
        assert is_valid_otp(code)


def test_tokens_are_distinct():
    assert generate_token() != generate_token()


@pytest.mark.parametrize('value', ['12345', '1234567', 'abcdef', '', None])
def test_invalid_otp(value):
    assert not is_valid_otp(value)


def test_codes_match():
    assert codes_match('012345', '012345')
    assert codes_match('012345', ' 012345 ')
    assert not codes_match('012345', '012346')
    assert not codes_match(None, '012345')


def test_email_helpers():
    assert normalize_email('  Ann@Example.COM ') == 'ann@example.com'
    assert is_valid_email('ann@b.com')
    assert not is_valid_email('ann@')
    assert not is_valid_email(None)


ACCOUNT = SimpleNamespace(id=7, external_id='VOAT-007', email='a@b.com', role='admin')


def test_access_token_round_trip():
    token = create_access_token(ACCOUNT, SECRET)
    claims = decode_access_token(token, SECRET)
    assert claims['id'] == 7
    assert claims['voatId'] == 'VOAT-007'
    assert claims['role'] == 'admin'


def test_expired_access_token():
    token = create_access_token(ACCOUNT, SECRET, expires_delta=timedelta(seconds=-1))
    with pytest.raises(Forbidden) as excinfo:
        decode_access_token(token, SECRET)
    assert excinfo.value.message == "Token has expired"


def test_access_token_with_wrong_secret():
    token = jwt.encode({'id': 7}, 'some-other-secret-of-reasonable-length', algorithm='HS256')
    with pytest.raises(Forbidden):
        decode_access_token(token, SECRET)


def test_suppressed_mail_reports_success(app):
    with app.app_context():
        assert MailNotifier().send_otp('a@b.com', '123456')
        assert MailNotifier().send_password_reset('a@b.com', 'http://frontend.test/reset-password?token=x')


def test_missing_recipient_fails(app):
    with app.app_context():
        assert not MailNotifier().send_otp('', '123456')


def test_smtp_failure_reports_false(app, monkeypatch):
    app.config.update(MAIL_SUPPRESS_SEND=False, MAIL_USERNAME='user', MAIL_PASSWORD='secret')

    def broken_send(message):
        raise OSError("connection refused")

    monkeypatch.setattr('voat.notifier.mail.send', broken_send)
    with app.app_context():
        assert not MailNotifier().send_email_change('a@b.com', 'http://frontend.test/verify-email-change?token=x')
