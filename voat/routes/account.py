from flask import Blueprint, current_app, g, jsonify

from voat.utils import authenticate_token

account_bp = Blueprint('account', __name__)


@account_bp.get('/me')
@authenticate_token
def me():
    summary = current_app.extensions['account_lifecycle'].account_summary(g.user.get('id'))
    return jsonify(summary), 200
