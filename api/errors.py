from flask import jsonify, current_app
from werkzeug.exceptions import HTTPException
from marshmallow import ValidationError
import logging

from authority.errors import (
    OAuthError,
    InvalidClient,
    InvalidRequest,
    RateLimited,
    StoreUnavailable,
    InvalidToken,
)

logger = logging.getLogger(__name__)

NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def error_response(error: str, description: str, status: int, headers: dict | None = None, extra: dict | None = None):
    payload = {"error": error, "error_description": description}
    if extra:
        payload.update(extra)
    response = jsonify(payload)
    response.status_code = status
    response.headers.update(NO_STORE)
    if headers:
        response.headers.update(headers)
    return response


def oauth_error_response(err: OAuthError):
    headers = {}
    if isinstance(err, InvalidClient):
        headers["WWW-Authenticate"] = 'Basic realm="token"'
    elif isinstance(err, InvalidToken):
        headers["WWW-Authenticate"] = f'Bearer error="invalid_token", error_description="{err.description}"'
    elif isinstance(err, RateLimited):
        headers["Retry-After"] = str(err.retry_after_seconds)
    body = err.to_dict()
    return error_response(body.pop("error"), body.pop("error_description"), err.status, headers, extra=body)


def register_error_handlers(app):
    @app.errorhandler(OAuthError)
    def handle_oauth_error(err: OAuthError):
        if isinstance(err, StoreUnavailable):
            logger.error("Store unavailable: %s", err.reason)
        elif err.reason != err.description:
            # internal cause stays in the log, the response is uniform
            logger.info("%s: %s", err.kind.value, err.reason)
        return oauth_error_response(err)

    # Marshmallow validation errors that escape a view map to invalid_request
    @app.errorhandler(ValidationError)
    def handle_validation_error(err: ValidationError):
        if current_app and current_app.debug:
            logging.exception("Validation error", exc_info=err)
        return oauth_error_response(InvalidRequest())

    # 404 Not Found
    @app.errorhandler(404)
    def not_found(e):
        return error_response("not_found", "Resource not found", 404)

    # 405 Method Not Allowed
    @app.errorhandler(405)
    def method_not_allowed(e):
        return error_response("method_not_allowed", "Method not allowed", 405)

    # Werkzeug HTTPExceptions map to their status codes
    @app.errorhandler(HTTPException)
    def handle_http_exception(err: HTTPException):
        return error_response("invalid_request", err.description, err.code or 400)

    # 500 Internal Error (catch-all)
    @app.errorhandler(Exception)
    def internal_error(err: Exception):
        logging.exception("Unhandled exception", exc_info=err)
        extra = None
        if current_app and current_app.debug:
            extra = {"details": {"type": err.__class__.__name__, "message": str(err)}}
        return error_response("server_error", "An unexpected error occurred", 500, extra=extra)
