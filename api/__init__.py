import logging

from flask import Flask, request
from flasgger import Swagger
from flask_cors import CORS

from .config import get_config, validate_config
from .errors import register_error_handlers
from authority import TokenAuthority
from utils.decorators import get_authority, ip_principal

# Minimal Swagger config: exposes /swagger.json and UI at /apidocs
SWAGGER_TEMPLATE = {
    "swagger": "2.0",
    "info": {
        "title": "Token Authority",
        "version": "1.0.0",
        "description": "OAuth 2.0 token endpoint, revocation, verification and authorization codes.",
    },
    "basePath": "/",  # blueprints are mounted under /api/v1
    "schemes": ["http", "https"],
    "securityDefinitions": {
        "Bearer": {
            "type": "apiKey",
            "name": "Authorization",
            "in": "header",
            "description": "Enter the token with the `Bearer ` prefix, e.g. \"Bearer abcde12345\"."
        }
    }
}

SWAGGER_CONFIG = {
    "headers": [],
    "specs": [
        {
            "endpoint": "apispec_1",
            "route": "/swagger.json",
            "rule_filter": lambda rule: True,   # include all endpoints
            "model_filter": lambda tag: True,   # include all models
        }
    ],
    "static_url_path": "/flasgger_static",
    "swagger_ui": True,
    "specs_route": "/apidocs/",
}

# routes that skip the global per-IP limiter
UNLIMITED_ENDPOINTS = {"health.health", "root", "static"}


def create_app(config_name: str | None = None, authority: TokenAuthority | None = None) -> Flask:
    """
    Application factory: creates and configures the Flask app.
    The token authority (and with it both store handles) is built here, or
    passed in by tests, and kept in app.extensions.
    """
    app = Flask(__name__)

    # Load configuration (reads .env via get_config)
    app.config.from_object(get_config(config_name))
    validate_config(app.config)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Cross-Origin Resource Sharing: enable for dev, configurable for prod
    CORS(app, resources={r"/*": {"origins": app.config.get("CORS_ORIGINS", "*")}})

    # Swagger UI and JSON
    Swagger(app, template=SWAGGER_TEMPLATE, config=SWAGGER_CONFIG)

    # Register global error handlers that return the OAuth error envelope
    register_error_handlers(app)

    app.extensions["token_authority"] = authority or TokenAuthority.from_config(app.config)

    from .health import bp as health_bp
    from .oauth import bp as oauth_bp
    from .commands import register_commands

    app.register_blueprint(health_bp, url_prefix="/api/v1")
    app.register_blueprint(oauth_bp, url_prefix="/api/v1/oauth")
    register_commands(app)

    @app.before_request
    def global_rate_limit():
        if request.endpoint in UNLIMITED_ENDPOINTS or request.endpoint is None:
            return None
        if request.endpoint.startswith("flasgger"):
            return None
        get_authority().admit(ip_principal(), "global")
        return None

    # Ensure the DB session is removed at the end of each request/app context
    @app.teardown_appcontext
    def remove_session(exception=None):
        # This calls scoped_session.remove(), preventing connection leaks
        app.extensions["token_authority"].storage.close()

    @app.route("/")
    def root():
        return {
            "message": "Token Authority",
            "docs": "/apidocs/",
            "health": "/api/v1/health",
        }, 200

    return app
