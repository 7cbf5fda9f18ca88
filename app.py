import logging

from flask import Flask, request, g, jsonify
from config import Config
from routes import health_bp, auth_bp, two_factor_bp
from routes.auth import clear_session_cookies

from models import db
from flask_migrate import Migrate
from werkzeug.middleware.proxy_fix import ProxyFix
from security.errors import AuthError, ServiceError
from utils.seed import seed_roles
from utils.auth_context import load_current_user
from security.csrf import require_csrf

logger = logging.getLogger(__name__)


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    # remote_addr comes from X-Forwarded-For only for the configured number of proxy hops
    hops = app.config.get("TRUSTED_PROXY_HOPS", 0)
    if hops:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=hops, x_proto=hops)

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(two_factor_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Seed default roles at startup (safe & idempotent)
    if app.config.get("SEED_ROLES_ON_STARTUP", True):
        with app.app_context():
            seed_roles()

    @app.errorhandler(AuthError)
    def _auth_error(exc):
        if isinstance(exc, ServiceError):
            # outward message stays generic; the detail only goes to the log
            logger.warning("Auth service error on %s: %s", request.path, exc.detail)
        return jsonify(exc.to_dict()), exc.status

    @app.before_request
    def _load_user():
        load_current_user()

    CSRF_EXEMPT_PATHS = {
        "/auth/login",
        "/health",
    }
    CSRF_EXEMPT_PREFIXES = ("/auth/2fa/",)

    @app.before_request
    def _csrf_protect():
        # Only protect state-changing requests
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Exempt login bootstrap endpoints
            if request.path in CSRF_EXEMPT_PATHS or request.path.startswith(CSRF_EXEMPT_PREFIXES):
                return None

            # Only enforce CSRF if user is already authenticated (cookie session)
            if getattr(g, "user", None) is not None:
                failure = require_csrf()
                if failure:
                    return failure

    @app.after_request
    def _drop_dead_session(resp):
        # A stale or revoked session cookie is cleared unless this response sets a new one
        if getattr(g, "session_invalid", False):
            cookie_name = app.config.get("AUTH_COOKIE_NAME", "ciphers_session")
            setting_new = any(
                header.startswith(cookie_name + "=") for header in resp.headers.getlist("Set-Cookie")
            )
            if not setting_new:
                clear_session_cookies(resp)
        return resp

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        resp.headers["Cache-Control"] = "no-store"
        return resp

    register_cli(app)

    return app

#-------------------------
import click
from models.user import User, Role
from security.password import hash_password

def register_cli(app):
    @app.cli.command("create-user")
    @click.argument("email")
    @click.argument("name")
    @click.option("--role", default="OFFICER", show_default=True, type=click.Choice(["OFFICER", "ADMIN"]))
    @click.password_option()
    def create_user(email, name, role, password):
        """Create a staff account. Two-factor setup happens on first login."""
        email = email.strip().lower()
        if User.query.filter_by(email=email).first():
            raise click.ClickException(f"{email} already exists")

        try:
            pw_hash = hash_password(password)
        except ValueError as exc:
            raise click.ClickException(str(exc))

        user = User(email=email, name=name.strip(), password_hash=pw_hash)
        role_row = Role.query.filter_by(name=role).first()
        if role_row:
            user.roles.append(role_row)
        db.session.add(user)
        db.session.commit()
        click.echo(f"Created {email} ({role})")

    @app.cli.command("make-admin")
    @click.argument("email")
    def make_admin(email):
        """Promote a user to ADMIN by email (bootstrap)."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            raise click.ClickException("User not found")

        admin_role = Role.query.filter_by(name="ADMIN").first()
        if not admin_role:
            admin_role = Role(name="ADMIN")
            db.session.add(admin_role)
            db.session.commit()

        if admin_role not in user.roles:
            user.roles.append(admin_role)
            db.session.commit()

        click.echo(f"{user.email} promoted to ADMIN")

#-------------------------


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
