import io
import os

import pytest
from pydantic import ValidationError as SettingsError

from voat.app import create_app
from voat.config import Settings, get_settings

from conftest import PASSWORD


def _signup(client, email='a@b.com', role='hr'):
    resp = client.post('/api/signup', json={
        'name': 'Ann', 'email': email, 'password': PASSWORD, 'role': role,
    })
    assert resp.status_code == 200
    return resp.get_json()['tempToken']


def _register(client, email='a@b.com'):
    token = _signup(client, email)
    resp = client.post('/api/verify-otp', json={
        'email': email, 'otp': '123456', 'tempToken': token, 'type': 'signup',
    })
    assert resp.status_code == 200
    return resp.get_json()


def _auth(token):
    return {'Authorization': f'Bearer {token}'}


def test_health(client):
    assert client.get('/health').get_json()['status'] == 'ok'


def test_signup_verify_and_me(client):
    body = _register(client)

    assert body['message'] == "Signup verified successfully"
    assert body['user']['voatId'] == 'VOAT-001'

    resp = client.get('/api/me', headers=_auth(body['token']))
    assert resp.status_code == 200
    assert resp.get_json()['email'] == 'a@b.com'


def test_validation_errors_list_every_problem(client):
    resp = client.post('/api/signup', json={'name': '', 'email': 'bad', 'password': 'abc', 'role': 'hr'})

    assert resp.status_code == 400
    body = resp.get_json()
    assert body['details'][:2] == ["Name is required", "Invalid email"]
    assert len(body['details']) == 6


def test_unknown_otp_type_is_rejected(client):
    resp = client.post('/api/verify-otp', json={'email': 'a@b.com', 'otp': '123456', 'type': 'magic'})
    assert resp.status_code == 400


def test_numeric_otp_is_accepted(client):
    token = _signup(client)
    resp = client.post('/api/verify-otp', json={'email': 'a@b.com', 'otp': 123456, 'tempToken': token})
    assert resp.status_code == 200


def test_me_requires_token(client):
    assert client.get('/api/me').status_code == 401
    resp = client.get('/api/me', headers=_auth('not-a-jwt'))
    assert resp.status_code == 403
    assert resp.get_json()['error'] == "Invalid or expired token"


def test_status_reports_authentication(client):
    assert client.get('/api/status').get_json() == {'authenticated': False}

    token = _register(client)['token']
    body = client.get('/api/status', headers=_auth(token)).get_json()
    assert body['authenticated'] is True
    assert body['user']['email'] == 'a@b.com'


def test_password_login_and_lockout_statuses(client):
    _register(client)

    resp = client.post('/api/login-password', json={'email': 'a@b.com', 'password': 'Wrong123!'})
    assert resp.status_code == 401
    assert resp.get_json()['attemptsLeft'] == 4

    for _ in range(4):
        client.post('/api/login-password', json={'email': 'a@b.com', 'password': 'Wrong123!'})
    resp = client.post('/api/login-password', json={'email': 'a@b.com', 'password': PASSWORD})
    assert resp.status_code == 429
    assert resp.get_json()['retryAfterMinutes'] == 5

    resp = client.post('/api/login-password', json={'email': 'ghost@b.com', 'password': PASSWORD})
    assert resp.status_code == 404


def test_otp_login_flow(client):
    _register(client)

    resp = client.post('/api/request-login-otp', json={'email': 'a@b.com'})
    assert resp.status_code == 200
    assert 'expiresAt' in resp.get_json()

    resp = client.post('/api/request-login-otp', json={'email': 'a@b.com'})
    assert resp.status_code == 429
    assert resp.get_json()['retryAfterSeconds'] == 30

    resp = client.post('/api/verify-otp', json={'email': 'a@b.com', 'otp': '123456', 'type': 'login'})
    assert resp.status_code == 200
    assert resp.get_json()['message'] == "Login successful"


def test_forgot_password_is_uniform(client, notifier):
    _register(client)

    known = client.post('/api/forgot-password', json={'email': 'a@b.com'})
    unknown = client.post('/api/forgot-password', json={'email': 'ghost@b.com'})

    assert known.status_code == unknown.status_code == 200
    assert known.get_json() == unknown.get_json()

    token = notifier.last_link_token('reset')
    resp = client.post('/api/reset-password', json={'token': token, 'newPassword': 'Xyz789#'})
    assert resp.status_code == 200
    resp = client.post('/api/reset-password', json={'token': token, 'newPassword': 'Xyz789#'})
    assert resp.status_code == 400


def test_change_password_requires_current_password(client):
    token = _register(client)['token']

    resp = client.put('/api/change-password', headers=_auth(token),
                      json={'currentPassword': 'Wrong123!', 'newPassword': 'Xyz789#'})
    assert resp.status_code == 401

    resp = client.put('/api/change-password', headers=_auth(token),
                      json={'currentPassword': PASSWORD, 'newPassword': 'Xyz789#'})
    assert resp.status_code == 200


def test_email_change_flow(client, notifier):
    token = _register(client)['token']

    resp = client.post('/api/request-email-change', headers=_auth(token), json={'newEmail': 'new@b.com'})
    assert resp.status_code == 200

    link_token = notifier.last_link_token('email_change')
    resp = client.get(f'/api/verify-email-change?token={link_token}')
    assert resp.status_code == 200
    assert resp.get_json()['email'] == 'new@b.com'

    assert client.get('/api/me', headers=_auth(token)).get_json()['email'] == 'new@b.com'


def test_email_change_of_another_account_is_forbidden(client):
    token = _register(client)['token']
    _register(client, 'c@d.com')

    resp = client.post('/api/request-email-change', headers=_auth(token),
                       json={'oldEmail': 'c@d.com', 'newEmail': 'new@b.com'})
    assert resp.status_code == 403


def test_jobseeker_signup_with_resume_upload(client, settings):
    resp = client.post('/api/signup', data={
        'name': 'Joe',
        'email': 'joe@b.com',
        'password': PASSWORD,
        'role': 'jobseeker',
        'file': (io.BytesIO(b'%PDF-1.4 resume'), 'My CV.pdf', 'application/pdf'),
    }, content_type='multipart/form-data')

    assert resp.status_code == 200
    stored = os.listdir(settings.upload_folder)
    assert len(stored) == 1
    assert stored[0].startswith('resume-') and stored[0].endswith('My_CV.pdf')


def test_resume_upload_must_be_pdf(client):
    resp = client.post('/api/signup', data={
        'name': 'Joe',
        'email': 'joe@b.com',
        'password': PASSWORD,
        'role': 'jobseeker',
        'file': (io.BytesIO(b'hello'), 'cv.txt', 'text/plain'),
    }, content_type='multipart/form-data')

    assert resp.status_code == 400
    assert resp.get_json()['error'] == "Only PDF resumes are allowed"


def test_delivery_failure_is_a_server_error(client, notifier):
    notifier.fail = True
    resp = client.post('/api/signup', json={
        'name': 'Ann', 'email': 'a@b.com', 'password': PASSWORD, 'role': 'hr',
    })
    assert resp.status_code == 500


def test_unknown_route_renders_json(client):
    resp = client.get('/api/nothing-here')
    assert resp.status_code == 404
    assert 'error' in resp.get_json()


def test_missing_jwt_secret_refuses_to_start(monkeypatch):
    monkeypatch.delenv('JWT_SECRET', raising=False)

    with pytest.raises(SettingsError):
        Settings(_env_file=None)

    monkeypatch.setenv('JWT_SECRET', '   ')
    get_settings.cache_clear()
    try:
        with pytest.raises(SettingsError):
            create_app()
    finally:
        get_settings.cache_clear()


def _jobseeker_form(email='joe@b.com', password=PASSWORD):
    return {
        'name': 'Joe',
        'email': email,
        'password': password,
        'role': 'jobseeker',
        'file': (io.BytesIO(b'%PDF-1.4 resume'), 'cv.pdf', 'application/pdf'),
    }


def test_rejected_signup_keeps_no_resume_file(client, settings):
    resp = client.post('/api/signup', data=_jobseeker_form(password='weak'),
                       content_type='multipart/form-data')

    assert resp.status_code == 400
    assert os.listdir(settings.upload_folder) == []


def test_signup_for_registered_email_keeps_no_resume_file(client, settings):
    _register(client, 'joe@b.com')

    resp = client.post('/api/signup', data=_jobseeker_form(), content_type='multipart/form-data')

    assert resp.status_code == 200
    assert os.listdir(settings.upload_folder) == []


def test_repeated_signup_keeps_only_first_resume(client, settings):
    first = client.post('/api/signup', data=_jobseeker_form(), content_type='multipart/form-data')
    second = client.post('/api/signup', data=_jobseeker_form(), content_type='multipart/form-data')

    assert first.get_json()['tempToken'] == second.get_json()['tempToken']
    assert len(os.listdir(settings.upload_folder)) == 1
