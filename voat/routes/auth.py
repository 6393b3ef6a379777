from functools import partial

from flask import Blueprint, current_app, g, jsonify, request
from pydantic import ValidationError as PydanticValidationError

from voat.errors import AuthError, Forbidden, ValidationError
from voat.helpers.file_utils import discard_resume, save_resume
from voat.helpers.otp_utils import normalize_email
from voat.schemas.auth import (
    ChangePasswordRequest,
    EmailChangeRequest,
    EmailRequest,
    LoginPasswordRequest,
    ResendSignupOtpRequest,
    ResetPasswordRequest,
    SignupRequest,
    VerifyOtpRequest,
)
from voat.utils import authenticate_token, bearer_token, decode_request_token

auth_bp = Blueprint('auth', __name__)


def _lifecycle():
    return current_app.extensions['account_lifecycle']


def _body(schema):
    data = request.get_json(silent=True)
    if data is None:
        data = request.form.to_dict()
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        return schema.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError([
            f"{'.'.join(str(part) for part in err['loc']) or 'body'}: {err['msg']}"
            for err in exc.errors()
        ])


@auth_bp.post('/signup')
def signup():
    payload = _body(SignupRequest)
    resume_ref = payload.resume_ref
    discard = None
    upload = request.files.get('file')
    if upload is not None and payload.role.strip().lower() == 'jobseeker':
        upload_folder = current_app.config['UPLOAD_FOLDER']
        resume_ref = save_resume(upload, upload_folder)
        discard = partial(discard_resume, upload_folder=upload_folder)
    result = _lifecycle().initiate_signup(
        payload.name, payload.email, payload.password, payload.role, resume_ref,
        discard_resume=discard,
    )
    return jsonify(result), 200


@auth_bp.post('/resend-signup-otp')
def resend_signup_otp():
    payload = _body(ResendSignupOtpRequest)
    return jsonify(_lifecycle().resend_signup_otp(payload.email, payload.temp_token)), 200


@auth_bp.post('/verify-otp')
def verify_otp():
    payload = _body(VerifyOtpRequest)
    if payload.type == 'signup':
        result = _lifecycle().verify_signup_otp(payload.email, payload.otp, payload.temp_token)
    else:
        result = _lifecycle().verify_login_otp(payload.email, payload.otp)
    return jsonify(result), 200


@auth_bp.post('/login-password')
def login_password():
    payload = _body(LoginPasswordRequest)
    return jsonify(_lifecycle().login_with_password(payload.email, payload.password)), 200


@auth_bp.post('/request-login-otp')
def request_login_otp():
    payload = _body(EmailRequest)
    return jsonify(_lifecycle().request_login_otp(payload.email)), 200


@auth_bp.post('/forgot-password')
def forgot_password():
    payload = _body(EmailRequest)
    return jsonify(_lifecycle().request_password_reset(payload.email)), 200


@auth_bp.post('/reset-password')
def reset_password():
    payload = _body(ResetPasswordRequest)
    return jsonify(_lifecycle().reset_password(payload.token, payload.new_password)), 200


@auth_bp.put('/change-password')
@authenticate_token
def change_password():
    payload = _body(ChangePasswordRequest)
    account = _lifecycle().account_summary(g.user.get('id'))
    result = _lifecycle().change_password(account['email'], payload.current_password, payload.new_password)
    return jsonify(result), 200


@auth_bp.post('/request-email-change')
@authenticate_token
def request_email_change():
    payload = _body(EmailChangeRequest)
    account = _lifecycle().account_summary(g.user.get('id'))
    old_email = normalize_email(payload.old_email) or account['email']
    if old_email != account['email']:
        raise Forbidden("You can only change the email of your own account")
    return jsonify(_lifecycle().request_email_change(old_email, payload.new_email)), 200


@auth_bp.get('/verify-email-change')
def verify_email_change():
    token = request.args.get('token', '')
    return jsonify(_lifecycle().confirm_email_change(token)), 200


@auth_bp.get('/status')
def auth_status():
    token = bearer_token()
    if not token:
        return jsonify({'authenticated': False}), 200
    try:
        claims = decode_request_token(token)
        user = _lifecycle().account_summary(claims.get('id'))
    except AuthError:
        return jsonify({'authenticated': False}), 200
    return jsonify({'authenticated': True, 'user': user}), 200
