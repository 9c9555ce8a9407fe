import os
from datetime import datetime

from flask import Flask, request, g, jsonify
from .config import Config
from .extensions import db, migrate, login_manager, babel, mail
from .errors import register_error_handlers
from .logging_setup import setup_logging
from .blueprints.auth.routes import auth_bp
from .blueprints.companies.routes import companies_bp
from .blueprints.accounting.routes import acct_bp
from .blueprints.invoices.routes import invoices_bp
from .blueprints.receipts.routes import receipts_bp
from .blueprints.reports.routes import reports_bp
from .blueprints.backups.routes import backups_bp
from .blueprints.engagement.routes import engagement_bp

MIGRATIONS_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "migrations")


def create_app(config_overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # app.logger is the "bookkeeper" logger configured here
    setup_logging(app.config.get("LOG_LEVEL", "INFO"), app.config.get("LOG_FILE"))

    # init extensions
    db.init_app(app)
    migrate.init_app(app, db, directory=MIGRATIONS_DIR)
    # Apply pending migrations at startup so the schema matches the models
    if app.config.get("AUTO_MIGRATE") and os.path.isdir(os.path.join(MIGRATIONS_DIR, "versions")):
        try:
            from flask_migrate import upgrade as _alembic_upgrade
            with app.app_context():
                _alembic_upgrade(directory=MIGRATIONS_DIR)
        except Exception as exc:
            app.logger.warning("Automatic migration failed: %s", exc)

    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        from .models import User
        if not user_id:
            return None
        try:
            return db.session.get(User, int(user_id))
        except (ValueError, TypeError):
            return None

    @login_manager.request_loader
    def load_user_from_request(req):
        from .models import User
        from .security import decode_token
        header = req.headers.get("Authorization", "")
        if not header.lower().startswith("bearer "):
            return None
        user_id = decode_token(header[7:].strip())
        if user_id is None:
            return None
        user = db.session.get(User, user_id)
        if user is None or not user.is_active:
            return None
        return user

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"message": "Authentication required", "code": "UNAUTHORIZED"}), 401

    # i18n
    def select_locale():
        # Explicit user choice via query/cookie; otherwise English
        supported = app.config.get("BABEL_SUPPORTED_LOCALES", ["en", "ar"]) or ["en", "ar"]
        lang = (request.args.get("lang") or request.cookies.get("lang") or "").strip()
        if lang in supported:
            return lang
        return app.config.get("BABEL_DEFAULT_LOCALE", "en")

    babel.init_app(app, locale_selector=select_locale)
    mail.init_app(app)

    register_error_handlers(app)

    # register blueprints
    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(companies_bp, url_prefix="/api")
    app.register_blueprint(acct_bp, url_prefix="/api")
    app.register_blueprint(invoices_bp, url_prefix="/api")
    app.register_blueprint(receipts_bp, url_prefix="/api")
    app.register_blueprint(reports_bp, url_prefix="/api")
    app.register_blueprint(backups_bp, url_prefix="/api")
    app.register_blueprint(engagement_bp, url_prefix="/api")

    @app.before_request
    def inject_lang_to_g():
        g.lang_code = select_locale()

    @app.after_request
    def persist_lang_cookie(response):
        supported = app.config.get("BABEL_SUPPORTED_LOCALES", ["en", "ar"]) or ["en", "ar"]
        requested_language = (request.args.get("lang") or "").strip()
        if requested_language in supported:
            response.set_cookie(
                "lang",
                requested_language,
                max_age=60 * 60 * 24 * 365,
                samesite="Lax",
            )
        return response

    @app.route("/health")
    @app.route("/api/health")
    def health():
        return jsonify({"ok": True, "timestamp": datetime.utcnow().isoformat()})

    @app.shell_context_processor
    def make_shell_context():
        from . import models
        return {"db": db, "models": models}

    return app
