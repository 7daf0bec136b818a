from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
from waitress import serve
import os
import logging
import time

from config import MAX_FILE_BYTES, load_config
from models import db
from routes.admin import admin_bp
from routes.messages import messages_bp
from services import build_services
from utils.db_util import create_sample_data
from utils.errors import MessagingError
from utils.util import utc_now

logger = logging.getLogger("marketplace_messaging")


def create_app(
    test_config: dict = None,
    storage=None,
    notifier=None,
    clock=utc_now,
    typing_clock=time.monotonic,
) -> Flask:
    """
    Builds the messaging api

    Args:
        test_config: config values overriding the environment
        storage: object storage backend, built from config if omitted
        notifier: notification dispatcher, built from config if omitted
        clock: wall clock for message and conversation timestamps
        typing_clock: monotonic clock for typing expiry

    Returns:
        the flask app
    """
    app = Flask(__name__)
    app.config.update(load_config())
    if test_config:
        app.config.update(test_config)

    logging.basicConfig(level=app.config["LOG_LEVEL"])

    # uploads arrive as multipart, leave room for the form envelope
    app.config["MAX_CONTENT_LENGTH"] = MAX_FILE_BYTES + 1024 * 1024

    # configure the database
    database_uri = app.config["SQLALCHEMY_DATABASE_URI"]
    if database_uri.startswith("sqlite:///"):
        os.makedirs(os.path.dirname(database_uri[len("sqlite:///"):]) or ".", exist_ok=True)

    db.init_app(app)

    with app.app_context():
        db.create_all()
        if app.config["SEED_SAMPLE_DATA"]:
            create_sample_data()

    app.extensions["messaging"] = build_services(
        app.config,
        storage=storage,
        notifier=notifier,
        clock=clock,
        typing_clock=typing_clock,
    )

    app.register_blueprint(messages_bp)
    app.register_blueprint(admin_bp)

    register_error_handlers(app)
    return app


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(MessagingError)
    def handle_messaging_error(e: MessagingError):
        if e.status_code >= 500:
            logger.error(f"request failed: {e}")
        else:
            logger.info(f"request rejected ({e.status_code}): {e}")
        return jsonify({"error": e.message}), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return jsonify({"error": e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e: Exception):
        logger.exception(f"unhandled error: {e}")
        return jsonify({"error": "internal server error"}), 500


if __name__ == "__main__":
    app = create_app()
    serve(app, host="0.0.0.0", port=app.config["PORT"])
