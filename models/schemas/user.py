from marshmallow import Schema, fields, pre_load, validates, ValidationError


def _norm_username(v):
    return v.strip().lower() if isinstance(v, str) else v


class UserCreateSchema(Schema):
    username = fields.String(required=True)
    password = fields.String(required=True, load_only=True)

    @pre_load
    def normalize(self, data, **kwargs):
        if isinstance(data, dict) and "username" in data:
            data["username"] = _norm_username(data["username"])
        return data

    @validates("username")
    def validate_username(self, value, **kwargs):
        if not value:
            raise ValidationError("Username is required.")

    @validates("password")
    def validate_password(self, value, **kwargs):
        if len(value) < 8:
            raise ValidationError("Password must be at least 8 characters long.")
