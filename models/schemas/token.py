"""
Request schemas for the token, revoke, verify and authorize endpoints.

Each grant type has its own schema holding only the fields valid for it;
`post_load` turns the validated data into the matching grant dataclass.
Client credentials are merged into the payload by the HTTP layer (HTTP Basic
or body fields) before loading, and default to "" so a missing credential
fails client authentication rather than validation.
"""
from marshmallow import Schema, fields, post_load, EXCLUDE, validate, ValidationError

from authority.errors import InvalidRequest, UnsupportedGrantType
from authority.grants import (
    AuthorizationCodeGrant,
    ClientCredentialsGrant,
    PasswordGrant,
    RefreshTokenGrant,
)

_non_empty = validate.Length(min=1)


class _ClientAuthSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    client_id = fields.String(load_default="")
    client_secret = fields.String(load_default="")


class AuthorizationCodeGrantSchema(_ClientAuthSchema):
    code = fields.String(required=True, validate=_non_empty)
    redirect_uri = fields.String(required=True, validate=_non_empty)

    @post_load
    def make_grant(self, data, **kwargs):
        return AuthorizationCodeGrant(**data)


class RefreshTokenGrantSchema(_ClientAuthSchema):
    refresh_token = fields.String(required=True, validate=_non_empty)
    scope = fields.String(load_default=None)

    @post_load
    def make_grant(self, data, **kwargs):
        return RefreshTokenGrant(**data)


class ClientCredentialsGrantSchema(_ClientAuthSchema):
    scope = fields.String(load_default=None)

    @post_load
    def make_grant(self, data, **kwargs):
        return ClientCredentialsGrant(**data)


class PasswordGrantSchema(_ClientAuthSchema):
    username = fields.String(required=True, validate=_non_empty)
    password = fields.String(required=True, validate=_non_empty, load_only=True)
    scope = fields.String(load_default=None)

    @post_load
    def make_grant(self, data, **kwargs):
        return PasswordGrant(**data)


GRANT_SCHEMAS = {
    AuthorizationCodeGrant.grant_type: AuthorizationCodeGrantSchema(),
    RefreshTokenGrant.grant_type: RefreshTokenGrantSchema(),
    ClientCredentialsGrant.grant_type: ClientCredentialsGrantSchema(),
    PasswordGrant.grant_type: PasswordGrantSchema(),
}


class TokenValueSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    token = fields.String(required=True, validate=_non_empty)
    token_type_hint = fields.String(
        load_default=None,
        validate=validate.OneOf(["access_token", "refresh_token"]),
    )


class AuthorizeRequestSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    client_id = fields.String(required=True, validate=_non_empty)
    redirect_uri = fields.String(required=True, validate=_non_empty)
    scope = fields.String(load_default=None)
    state = fields.String(load_default=None)
    response_type = fields.String(load_default="code", validate=validate.Equal("code"))


def load_grant(payload: dict):
    """Validate a token request and return its grant dataclass.

    Raises UnsupportedGrantType for an unknown grant_type and InvalidRequest
    for missing or malformed fields; neither touches a store.
    """
    grant_type = (payload or {}).get("grant_type")
    if not grant_type:
        raise InvalidRequest("grant_type is required.")
    schema = GRANT_SCHEMAS.get(grant_type)
    if schema is None:
        raise UnsupportedGrantType()
    try:
        return schema.load(payload)
    except ValidationError as err:
        missing = ", ".join(sorted(err.messages)) if isinstance(err.messages, dict) else ""
        raise InvalidRequest(f"Invalid or missing parameters: {missing}." if missing else None) from err
