"""
OAuth blueprint:
- POST /oauth/token      issue tokens for the four supported grant types
- POST /oauth/revoke     revoke an access or refresh token (always 200)
- POST /oauth/verify     verify an access token and return its claims
- POST /oauth/authorize  issue an authorization code for the signed-in user

Bodies may be form-encoded (as OAuth clients send them) or JSON.
Client authentication uses HTTP Basic or client_id/client_secret body fields,
never both.

Before authentication, requests are only counted per IP. The per-client token
budget is charged by the dispatcher once the client secret has checked out.
"""
from __future__ import annotations

from urllib.parse import unquote_plus, urlencode

from flask import Blueprint, request, jsonify, g

from authority.errors import InvalidRequest
from authority.issuer import SUBJECT_USER
from models.schemas.token import AuthorizeRequestSchema, TokenValueSchema, load_grant
from utils.decorators import (
    get_authority,
    ip_principal,
    rate_limited,
    token_required,
)
from api.errors import NO_STORE

bp = Blueprint("oauth", __name__)

token_value_schema = TokenValueSchema()
authorize_schema = AuthorizeRequestSchema()


def _request_payload() -> dict:
    if request.form:
        return request.form.to_dict()
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _with_client_credentials(payload: dict) -> dict:
    auth = request.authorization
    if auth is None or auth.type != "basic":
        return payload
    if payload.get("client_secret"):
        raise InvalidRequest("Use exactly one client authentication method.")
    payload = dict(payload)
    payload["client_id"] = unquote_plus(auth.username or "")
    payload["client_secret"] = unquote_plus(auth.password or "")
    return payload


def _no_store(response, status: int = 200):
    response.status_code = status
    response.headers.update(NO_STORE)
    return response


@bp.post("/token")
@rate_limited("auth", principal=ip_principal)
def token():
    """
    Token endpoint
    ---
    tags:
      - OAuth
    consumes:
      - application/x-www-form-urlencoded
      - application/json
    parameters:
      - { in: formData, name: grant_type, type: string, required: true,
          enum: [authorization_code, refresh_token, client_credentials, password] }
      - { in: formData, name: client_id, type: string }
      - { in: formData, name: client_secret, type: string }
      - { in: formData, name: code, type: string }
      - { in: formData, name: redirect_uri, type: string }
      - { in: formData, name: refresh_token, type: string }
      - { in: formData, name: username, type: string }
      - { in: formData, name: password, type: string }
      - { in: formData, name: scope, type: string }
    responses:
      200:
        description: access_token, token_type, expires_in, scope and, except for client_credentials, refresh_token
      400:
        description: invalid_request, invalid_grant, invalid_scope or unsupported_grant_type
      401:
        description: invalid_client
      429:
        description: rate limited
    """
    payload = _with_client_credentials(_request_payload())
    grant = load_grant(payload)
    token_set = get_authority().token(grant)
    return _no_store(jsonify(token_set.to_response()))


@bp.post("/revoke")
@rate_limited("revoke", principal=ip_principal)
def revoke():
    """
    Revoke a token. Unknown and already revoked tokens also return 200.
    ---
    tags:
      - OAuth
    parameters:
      - { in: formData, name: token, type: string, required: true }
      - { in: formData, name: token_type_hint, type: string, enum: [access_token, refresh_token] }
    responses:
      200:
        description: Revoked (or nothing to revoke)
    """
    data = token_value_schema.load(_request_payload())
    get_authority().revoke(data["token"], data.get("token_type_hint"))
    return _no_store(jsonify({}))


@bp.post("/verify")
@rate_limited("verify", principal=ip_principal)
def verify():
    """
    Verify an access token
    ---
    tags:
      - OAuth
    parameters:
      - { in: formData, name: token, type: string, required: true }
    responses:
      200:
        description: "{valid: true, claims}"
      401:
        description: invalid_token (invalid, expired or revoked)
    """
    data = token_value_schema.load(_request_payload())
    claims = get_authority().verify(data["token"])
    return _no_store(jsonify({"valid": True, "claims": claims.to_dict()}))


@bp.post("/authorize")
@rate_limited("auth", principal=ip_principal)
@token_required(SUBJECT_USER)
def authorize():
    """
    Issue an authorization code for the user holding the Bearer token
    ---
    tags:
      - OAuth
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        schema:
          type: object
          required: [client_id, redirect_uri]
          properties:
            client_id: { type: string }
            redirect_uri: { type: string }
            scope: { type: string }
            state: { type: string }
    responses:
      200:
        description: code, redirect_to, expires_in
      400:
        description: invalid_request or invalid_scope
    """
    data = authorize_schema.load(_request_payload())
    authority = get_authority()
    code = authority.issue_code(
        data["client_id"], g.token_claims.subject, data["redirect_uri"], data.get("scope")
    )
    params = {"code": code}
    if data.get("state"):
        params["state"] = data["state"]
    separator = "&" if "?" in data["redirect_uri"] else "?"
    body = {
        "code": code,
        "redirect_to": f"{data['redirect_uri']}{separator}{urlencode(params)}",
        "expires_in": int(authority.codes.code_ttl.total_seconds()),
    }
    if data.get("state"):
        body["state"] = data["state"]
    return _no_store(jsonify(body))
