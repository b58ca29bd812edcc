import logging

import click
from flask import Flask, jsonify

from config import Config
from models import db
from models.user import User
from routes import health_bp, auth_bp, booking_bp, bills_bp, payments_bp, audit_bp
from security.password import hash_password
from services.errors import EngineError, StorageError
from utils.auth_context import load_current_user
from utils.seed import DEFAULT_ROLES, ensure_role, seed_roles


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    logging.getLogger("services").setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(bills_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(audit_bp)

    # Database init
    db.init_app(app)

    with app.app_context():
        if app.config.get("AUTO_CREATE_SCHEMA", True):
            db.create_all()
        seed_roles()

    @app.before_request
    def _load_user():
        load_current_user()

    @app.errorhandler(EngineError)
    def _engine_error(exc):
        if isinstance(exc, StorageError):
            app.logger.error("storage failure: %s", exc.__cause__ or exc)
        return jsonify(exc.to_dict()), exc.status_code

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Cache-Control"] = "no-store"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app

#-------------------------

def register_cli(app):
    @app.cli.command("init-db")
    def init_db():
        """Create all tables and the default roles."""
        db.create_all()
        seed_roles()
        click.echo("Database ready")

    @app.cli.command("create-staff")
    @click.argument("email")
    @click.password_option()
    @click.option("--role", default="STAFF", type=click.Choice(DEFAULT_ROLES), show_default=True)
    @click.option("--name", "full_name", default=None)
    def create_staff(email, password, role, full_name):
        """Create a staff login (or grant ROLE to an existing one)."""
        email = email.strip().lower()
        role_row = ensure_role(role)

        user = User.query.filter_by(email=email).first()
        if not user:
            user = User(email=email, password_hash=hash_password(password), full_name=full_name)
            db.session.add(user)

        if role_row not in user.roles:
            user.roles.append(role_row)
        db.session.commit()

        click.echo(f"{user.email} has role {role}")

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
