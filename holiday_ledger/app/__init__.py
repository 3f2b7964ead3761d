"""
app/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time — this enables:
           - Multiple isolated test app instances
           - Clean separation between app creation and app startup
           - Alembic to import the metadata without starting the server

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Configure logging from LOG_LEVEL
  3. Initialise extensions (SQLAlchemy, Marshmallow) via init_app()
  4. Register all route blueprints under /api/v1
  5. Register global error handlers (AppError → JSON, Exception → 500)

Lifecycle of the storage handle: the engine is created by db.init_app() at
process start; Flask-SQLAlchemy scopes one session per request and removes it
at request teardown, rolling back anything the route did not commit.
"""

from __future__ import annotations

import logging
import traceback

from flask import Flask, jsonify, request
from marshmallow import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError
from werkzeug.exceptions import HTTPException

from holiday_ledger.config import config_by_name, validate_production_config


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development") -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to "development".
    """
    app = Flask(__name__)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    _configure_logging(app)

    # ── Extensions ─────────────────────────────────────────────────────────
    from holiday_ledger.app.extensions import db, ma
    db.init_app(app)
    ma.init_app(app)

    # ── Model registration ─────────────────────────────────────────────────
    # Import all models so that SQLAlchemy's MetaData is populated before
    # create_all() or Alembic inspects it.
    with app.app_context():
        from holiday_ledger.app.models import (  # noqa: F401
            contribution,
            expense,
            participant,
            payment_event,
            payment_order,
        )

    _register_blueprints(app)
    _register_error_handlers(app)
    _register_cors(app)

    app.logger.info("HolidayLedger app created (config=%s)", config_name)
    return app


def _configure_logging(app: Flask) -> None:
    """
    Applies LOG_LEVEL to the application logger.

    Service modules log through logging.getLogger(__name__); their loggers
    are children of app.logger ("holiday_ledger.app") and inherit this level
    and Flask's default handler.
    """
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO
    app.logger.setLevel(level)


def _register_blueprints(app: Flask) -> None:
    """
    Registers all route blueprints under the /api/v1 prefix.

    Blueprints own both plan-scoped paths (/plans/<id>/...) and resource-ID
    paths, so they are all registered at /api/v1 and declare full paths.
    """
    from holiday_ledger.app.routes.contributions import contributions_bp
    from holiday_ledger.app.routes.expenses import expenses_bp
    from holiday_ledger.app.routes.participants import participants_bp
    from holiday_ledger.app.routes.payments import payments_bp

    app.register_blueprint(participants_bp,  url_prefix="/api/v1")
    app.register_blueprint(expenses_bp,      url_prefix="/api/v1")
    app.register_blueprint(contributions_bp, url_prefix="/api/v1")
    app.register_blueprint(payments_bp,      url_prefix="/api/v1/payments")


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError        → structured JSON error envelope with the correct HTTP status
      ValidationError → marshmallow schema errors as MISSING_FIELD / INVALID_FIELD (400)
      StaleDataError  → CONFLICT (409); a concurrent writer changed the expense
      IntegrityError  → CONFLICT (409); a row this request relied on was changed
                        or removed by a concurrent request (FK, UNIQUE)
      Exception       → generic INTERNAL_ERROR (500); full traceback logged

    Stack traces never leave the server.
    """
    from holiday_ledger.app.errors import AppError, ErrorCode

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        """
        Converts an AppError raised anywhere in the request lifecycle into the
        standard error envelope. Routes never catch AppError.
        """
        if error.http_status >= 500:
            app.logger.error("AppError %s: %s", error.code, error.message)
        else:
            app.logger.info("Request rejected with %s: %s", error.code, error.message)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """
        Converts marshmallow ValidationError into the standard error envelope.

        Only the FIRST field error is returned. If the message is one of our
        registered ErrorCode constants it is used as the code directly.
        """
        messages = error.messages  # e.g. {"total": ["INVALID_AMOUNT"]}

        field = None
        raw_message = "Invalid input."
        code = ErrorCode.INVALID_FIELD

        if isinstance(messages, dict):
            for field_name, field_errors in messages.items():
                field = field_name if field_name != "_schema" else None

                if isinstance(field_errors, list):
                    raw_message = field_errors[0] if field_errors else "Invalid value."
                elif isinstance(field_errors, dict):
                    # Nested/list fields: {"participant_ids": {0: ["Not a valid integer."]}}
                    first = next(iter(field_errors.values()), ["Invalid value."])
                    raw_message = first[0] if isinstance(first, list) and first else str(first)
                else:
                    raw_message = str(field_errors)

                code = _classify_message(raw_message)
                break
        elif isinstance(messages, list):
            raw_message = messages[0] if messages else "Invalid input."
            code = _classify_message(raw_message)

        response_body = {
            "error": {
                "code": code,
                "message": raw_message if raw_message not in vars(ErrorCode).values()
                else _code_to_message(code),
            }
        }
        if field is not None:
            response_body["error"]["field"] = field

        return jsonify(response_body), 400

    @app.errorhandler(StaleDataError)
    def handle_stale_data(error: StaleDataError):
        app.logger.warning("Concurrent ledger write detected: %s", error)
        return jsonify({
            "error": {
                "code": ErrorCode.CONFLICT,
                "message": "The expense was modified by another request. Please retry.",
            }
        }), 409

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(error: IntegrityError):
        app.logger.warning("Constraint violation from a concurrent write: %s", error.orig)
        return jsonify({
            "error": {
                "code": ErrorCode.CONFLICT,
                "message": "A related record was changed by another request. Please retry.",
            }
        }), 409

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        """Unknown routes and disallowed methods keep their own status codes."""
        return jsonify({
            "error": {
                "code": error.name.upper().replace(" ", "_"),
                "message": error.description,
            }
        }), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        """
        Catches all unhandled exceptions and returns a generic 500 response.
        The full traceback is logged to the application logger.
        """
        app.logger.error(
            "Unhandled exception: %s\n%s",
            str(error),
            traceback.format_exc(),
        )
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": "An unexpected error occurred. Please try again later.",
            }
        }), 500


def _register_cors(app: Flask) -> None:
    """
    Adds CORS headers for browser-based local development.

    Enabled when DEBUG or TESTING is true so the planner frontend served from
    another local port can call the API with Authorization headers.
    """

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allow_all = bool(app.config.get("DEBUG") or app.config.get("TESTING"))

        if allow_all:
            response.headers["Access-Control-Allow-Origin"] = origin if origin else "*"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PATCH, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"

        return response


def _classify_message(raw_message) -> str:
    from holiday_ledger.app.errors import ErrorCode

    if raw_message in vars(ErrorCode).values():
        return raw_message
    if str(raw_message).startswith("Missing data for required field"):
        return ErrorCode.MISSING_FIELD
    return ErrorCode.INVALID_FIELD


def _code_to_message(code: str) -> str:
    """
    Returns a human-readable default message for a known error code.
    Used when a ValidationError message IS the error code constant itself.
    """
    _messages = {
        "INVALID_AMOUNT": "Amounts must be non-negative whole numbers in the smallest currency unit.",
        "INVALID_CATEGORY": "The category value is not valid.",
        "DUPLICATE_PARTICIPANT": "The same participant appears more than once.",
    }
    return _messages.get(code, "Invalid input.")
