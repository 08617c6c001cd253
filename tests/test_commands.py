"""Management CLI commands."""
import json

import pytest

from authority.errors import InvalidGrant
from models import Client, ClientStatus, User
from tests.conftest import basic_auth


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


def test_create_client_then_use_it(runner, http, storage):
    result = runner.invoke(args=[
        "create-client", "reporting",
        "--secret", "reporting-secret",
        "--grant", "client_credentials",
        "--scope", "reports read",
    ])
    assert result.exit_code == 0, result.output
    assert "client_secret=reporting-secret" in result.output

    client = storage.get_session().query(Client).filter(Client.client_id == "reporting").one()
    assert client.allowed_scopes == ["reports", "read"]
    assert client.secret_hash != "reporting-secret"

    response = http.post(
        "/api/v1/oauth/token",
        data={"grant_type": "client_credentials"},
        headers=basic_auth("reporting", "reporting-secret"),
    )
    assert response.status_code == 200
    assert response.get_json()["scope"] == "read reports"


def test_create_client_generates_a_secret(runner):
    result = runner.invoke(args=["create-client", "generated", "--grant", "client_credentials"])
    assert result.exit_code == 0
    secret = result.output.split("client_secret=", 1)[1].strip()
    assert len(secret) >= 32


def test_create_client_rejects_duplicates_and_bad_grants(runner):
    assert runner.invoke(args=["create-client", "c1", "--grant", "client_credentials"]).exit_code != 0
    assert runner.invoke(args=["create-client", "x", "--grant", "implicit"]).exit_code != 0


def test_create_user(runner, storage):
    result = runner.invoke(args=["create-user", "Bob", "--password", "bob-password"])
    assert result.exit_code == 0, result.output

    user = storage.get_session().query(User).filter(User.username == "bob").one()
    assert user.is_active


def test_create_user_short_password(runner):
    assert runner.invoke(args=["create-user", "carol", "--password", "short"]).exit_code != 0


def test_revoke_client(runner, authority, storage, code_tokens):
    result = runner.invoke(args=["revoke-client", "c1"])
    assert result.exit_code == 0, result.output
    assert "1 refresh tokens" in result.output

    session = storage.get_session()
    session.expire_all()
    assert session.query(Client).filter(Client.client_id == "c1").one().status == ClientStatus.REVOKED
    with pytest.raises(InvalidGrant):
        authority.rotator.rotate(code_tokens.refresh_token, "c1")


def test_revoke_unknown_client(runner):
    assert runner.invoke(args=["revoke-client", "nobody"]).exit_code != 0


def test_purge_expired(runner, clock, code_tokens):
    clock.advance(8 * 24 * 3600)
    result = runner.invoke(args=["purge-expired"])
    assert result.exit_code == 0
    assert "authorization_codes=1" in result.output
    assert "refresh_tokens=1" in result.output


def test_list_clients_omits_secrets(runner):
    result = runner.invoke(args=["list-clients"])
    assert result.exit_code == 0

    records = [json.loads(line) for line in result.output.splitlines()]
    assert [record["client_id"] for record in records] == ["c1", "svc"]
    assert all("secret_hash" not in record for record in records)
    assert records[0]["status"] == "active"
