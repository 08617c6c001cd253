from marshmallow import Schema, fields, validate, validates, ValidationError

GRANT_TYPES = ("authorization_code", "refresh_token", "client_credentials", "password")


class ClientCreateSchema(Schema):
    client_id = fields.String(required=True, validate=validate.Length(min=1, max=128))
    name = fields.String(allow_none=True)
    grant_types = fields.List(fields.String(validate=validate.OneOf(GRANT_TYPES)), required=True)
    redirect_uris = fields.List(fields.Url(require_tld=False), load_default=list)
    allowed_scopes = fields.List(fields.String(validate=validate.Length(min=1)), load_default=list)

    @validates("grant_types")
    def validate_grant_types(self, value, **kwargs):
        if not value:
            raise ValidationError("At least one grant type is required.")
