import logging
import os
from datetime import timedelta

from flask import Flask, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from voat.config import Settings, get_settings
from voat.errors import AuthError, Internal
from voat.extensions import mail
from voat.lifecycle import AccountLifecycle
from voat.models import build_engine, build_session_factory, init_models
from voat.notifier import MailNotifier
from voat.store import CredentialStore


def create_app(settings: Settings = None, notifier=None, **lifecycle_options) -> Flask:
    """Build the Flask application.

    ``settings`` defaults to the environment; building them fails when
    ``JWT_SECRET`` is missing, so the process refuses to start without it.
    ``notifier`` and ``lifecycle_options`` (``clock``, ``otp_generator``,
    ``token_generator``) replace the defaults, which tests rely on.
    """
    settings = settings or get_settings()
    logging.basicConfig(level=logging.INFO)

    app = Flask(__name__)
    app.config.update(settings.flask_config())
    # Disable strict slashes to prevent redirects that break CORS preflight
    app.url_map.strict_slashes = False

    CORS(
        app,
        resources={
            r"/api/*": {
                "origins": settings.cors_origins,
                "methods": ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
                "allow_headers": ["Content-Type", "Authorization"],
                "supports_credentials": True,
            }
        },
        supports_credentials=True,
    )
    mail.init_app(app)

    engine = build_engine(settings.sqlalchemy_url)
    init_models(engine)
    app.extensions['account_lifecycle'] = AccountLifecycle(
        store=CredentialStore(build_session_factory(engine)),
        notifier=notifier or MailNotifier(),
        token_secret=settings.jwt_secret,
        token_algorithm=settings.jwt_algorithm,
        token_ttl=timedelta(minutes=settings.access_token_expire_minutes),
        frontend_url=settings.frontend_url,
        **lifecycle_options,
    )

    @app.errorhandler(AuthError)
    def handle_auth_error(error: AuthError):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        if isinstance(error, HTTPException):
            return jsonify({"error": error.description}), error.code
        app.logger.exception("Unhandled error in %s %s", request.method, request.path)
        internal = Internal()
        return jsonify(internal.to_dict()), internal.status_code

    @app.route('/', methods=['GET'])
    def root():
        return jsonify({
            "status": "ok",
            "message": "VOAT API root. See /health for status.",
            "endpoints": ["/health", "/api/signup", "/api/login-password", "/api/verify-otp", "/api/me"],
        })

    @app.route('/health', methods=['GET'])
    def health():
        return jsonify({"status": "ok", "message": "VOAT API is running"})

    from voat.routes.account import account_bp
    from voat.routes.auth import auth_bp

    app.register_blueprint(auth_bp, url_prefix='/api')
    app.register_blueprint(account_bp, url_prefix='/api')
    return app


if __name__ == '__main__':
    port = int(os.getenv('PORT', '3000'))
    create_app().run(host='0.0.0.0', port=port, debug=os.getenv('FLASK_DEBUG', 'false').lower() == 'true')
