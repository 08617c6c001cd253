"""
Management commands, run with `flask --app api <command>`.

Client and user records belong to the credential store; these commands are
the minimal way to create them and to revoke a client outside the token path.
"""
from __future__ import annotations

import json

import click
from flask import current_app
from flask.cli import with_appcontext

from models import Client, ClientStatus, User
from models.schemas.client import ClientCreateSchema
from models.schemas.user import UserCreateSchema
from utils.decorators import get_authority
from utils.security import generate_opaque_token, hash_password

client_create_schema = ClientCreateSchema()
user_create_schema = UserCreateSchema()


def _split(values) -> list[str]:
    out = []
    for value in values or ():
        out.extend(v for v in value.replace(",", " ").split() if v)
    return out


@click.command("init-db")
@with_appcontext
def init_db():
    """Create all tables."""
    get_authority().storage.reload()
    click.echo("Database initialised")


@click.command("create-client")
@click.argument("client_id")
@click.option("--secret", default=None, help="Client secret (generated when omitted)")
@click.option("--name", default=None)
@click.option("--grant", "grants", multiple=True, help="Allowed grant type (repeatable)")
@click.option("--redirect-uri", "redirect_uris", multiple=True)
@click.option("--scope", "scopes", multiple=True)
@with_appcontext
def create_client(client_id, secret, name, grants, redirect_uris, scopes):
    """Register a client; prints the secret once."""
    storage = get_authority().storage
    data = client_create_schema.load({
        "client_id": client_id,
        "name": name,
        "grant_types": _split(grants) or ["authorization_code", "refresh_token"],
        "redirect_uris": list(redirect_uris),
        "allowed_scopes": _split(scopes),
    })
    session = storage.get_session()
    if session.query(Client).filter(Client.client_id == client_id).first():
        raise click.ClickException(f"client {client_id} already exists")
    secret = secret or generate_opaque_token(32)
    storage.new(Client(secret_hash=hash_password(secret), status=ClientStatus.ACTIVE, **data))
    storage.save()
    click.echo(f"client_id={client_id}")
    click.echo(f"client_secret={secret}")


@click.command("create-user")
@click.argument("username")
@click.password_option()
@with_appcontext
def create_user(username, password):
    """Create a resource owner."""
    storage = get_authority().storage
    data = user_create_schema.load({"username": username, "password": password})
    session = storage.get_session()
    if session.query(User).filter(User.username == data["username"]).first():
        raise click.ClickException(f"user {username} already exists")
    user = User(username=data["username"], password_hash=hash_password(data["password"]), is_active=True)
    storage.new(user)
    storage.save()
    click.echo(f"user_id={user.id}")


@click.command("list-clients")
@with_appcontext
def list_clients():
    """Print registered clients, one JSON object per line (secrets omitted)."""
    session = get_authority().storage.get_session()
    for client in session.query(Client).order_by(Client.client_id):
        click.echo(json.dumps(client.to_dict(), default=str))


@click.command("revoke-client")
@click.argument("client_id")
@with_appcontext
def revoke_client(client_id):
    """Mark a client revoked and revoke every refresh token it holds."""
    authority = get_authority()
    session = authority.storage.get_session()
    client = session.query(Client).filter(Client.client_id == client_id).first()
    if client is None:
        raise click.ClickException(f"unknown client {client_id}")
    client.status = ClientStatus.REVOKED
    authority.storage.save()
    count = authority.revoke_client(client_id)
    policy = current_app.config.get("REVOKE_ACCESS_TOKENS_ON_CLIENT_REVOCATION")
    click.echo(f"revoked {client_id}: {count} refresh tokens, access tokens denylisted={bool(policy)}")


@click.command("purge-expired")
@with_appcontext
def purge_expired():
    """Delete expired authorization codes and refresh tokens."""
    counts = get_authority().purge_expired()
    click.echo(", ".join(f"{name}={count}" for name, count in counts.items()))


def register_commands(app):
    for command in (init_db, create_client, create_user, list_clients, revoke_client, purge_expired):
        app.cli.add_command(command)
