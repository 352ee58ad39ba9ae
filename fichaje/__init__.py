"""Flask application factory."""

from __future__ import annotations

import logging

from flask import Flask, jsonify
from flask_wtf.csrf import CSRFError, generate_csrf

from fichaje.blueprints.admin import bp as admin_bp
from fichaje.blueprints.auth import bp as auth_bp
from fichaje.blueprints.employee import bp as employee_bp
from fichaje.blueprints.main import bp as main_bp
from fichaje.changes import init_change_listeners
from fichaje.cli import check_missing_clockouts_command, create_user_command
from fichaje.config import Config
from fichaje.errors import FichajeError
from fichaje.extensions import csrf, db, login_manager


def create_app(config_object: type[Config] = Config) -> Flask:
    app = Flask(__name__, instance_relative_config=False)
    app.config.from_object(config_object)

    log_level = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    logging.getLogger("fichaje").setLevel(log_level)
    app.logger.setLevel(log_level)

    db.init_app(app)
    login_manager.init_app(app)
    csrf.init_app(app)
    init_change_listeners()

    # Ensure model metadata is loaded for migrations and tests.
    from fichaje import models as _models  # noqa: F401

    app.register_blueprint(main_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(employee_bp)
    app.register_blueprint(admin_bp)

    app.cli.add_command(check_missing_clockouts_command)
    app.cli.add_command(create_user_command)

    @app.get("/csrf-token")
    def csrf_token():
        return {"csrf_token": generate_csrf()}

    @app.errorhandler(FichajeError)
    def handle_fichaje_error(exc: FichajeError):
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(CSRFError)
    def handle_csrf_error(exc: CSRFError):
        return jsonify({"error": "csrf", "message": exc.description}), 400

    return app
