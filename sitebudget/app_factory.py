'''
Flask assembly: configuration, database binding, blueprints, error handlers.
Does not start a server; run.py, a WSGI server or the tests call create_app().
'''
# sitebudget/app_factory.py
from dotenv import load_dotenv

# environment first, config reads it at import time
load_dotenv()

from flask import Flask, jsonify  # noqa: E402
from werkzeug.exceptions import HTTPException  # noqa: E402

from sitebudget.config import CONFIG_BY_NAME, LedgerPolicy  # noqa: E402
from sitebudget.db.auto_init import auto_init  # noqa: E402
from sitebudget.db.session import init_engine  # noqa: E402
from sitebudget.errors import SiteBudgetError  # noqa: E402
from sitebudget.logger import get_logger  # noqa: E402

logger = get_logger(__name__)


def create_app(config_name='development', ledger_policy=None):
    """Application factory"""
    app = Flask(__name__)

    config = CONFIG_BY_NAME.get(config_name)
    if config is None:
        raise ValueError(f"Unknown config name: {config_name}. Valid: {sorted(CONFIG_BY_NAME)}")
    app.config.from_object(config)
    app.json.sort_keys = False

    # business thresholds
    app.config['LEDGER_POLICY'] = ledger_policy or LedgerPolicy.from_env()

    # database
    init_engine(app.config['DATABASE_URL'])
    auto_init()

    # blueprints
    from sitebudget.routes.material_request import material_request_bp
    from sitebudget.routes.wbs import wbs_bp

    app.register_blueprint(wbs_bp)
    app.register_blueprint(material_request_bp)

    register_error_handlers(app)

    return app


def register_error_handlers(app):
    """JSON error bodies for domain errors and HTTP errors"""

    @app.errorhandler(SiteBudgetError)
    def handle_domain_error(error):
        if error.http_status >= 500:
            logger.error("%s: %s", error.code, error.message)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({"error": error.name.upper().replace(" ", "_"), "message": error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected(error):
        logger.exception("Unhandled error")
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500
