"""Authorization codes: issuance, single use and replay handling."""
import pytest

from authority import audit
from authority.errors import InvalidClient, InvalidGrant, InvalidRequest, InvalidScope, InvalidToken
from models import AuthorizationCode, RefreshToken, RefreshTokenStatus
from tests.conftest import REDIRECT_URI, add_user
from utils.security import hash_token


@pytest.fixture
def alice_id(seeded):
    return seeded["alice"].id


class TestIssue:
    def test_code_is_stored_hashed(self, authority, storage, alice_id):
        code = authority.issue_code("c1", alice_id, REDIRECT_URI, "read")
        row = storage.get_session().query(AuthorizationCode).one()
        assert row.code_hash == hash_token(code)
        assert row.scopes == ["read"]
        assert not row.consumed

    def test_defaults_to_all_allowed_scopes(self, authority, storage, alice_id):
        authority.issue_code("c1", alice_id, REDIRECT_URI)
        assert storage.get_session().query(AuthorizationCode).one().scopes == ["read", "write"]

    def test_unregistered_redirect_uri(self, authority, alice_id):
        with pytest.raises(InvalidRequest):
            authority.issue_code("c1", alice_id, "https://evil.example/cb", "read")

    def test_scope_outside_client_grant(self, authority, alice_id):
        with pytest.raises(InvalidScope):
            authority.issue_code("c1", alice_id, REDIRECT_URI, "read admin")

    def test_client_without_code_grant(self, authority, alice_id):
        with pytest.raises(InvalidClient):
            authority.issue_code("svc", alice_id, REDIRECT_URI, "read")


class TestExchange:
    def test_exchange_returns_refreshable_tokens(self, authority, alice_id):
        code = authority.issue_code("c1", alice_id, REDIRECT_URI, "read write")
        token_set = authority.codes.exchange(code, "c1", REDIRECT_URI)

        assert token_set.refresh_token
        assert token_set.scopes == ["read", "write"]
        assert authority.verify(token_set.access_token).subject == alice_id

    def test_consumed_code_records_family(self, authority, storage, alice_id):
        code = authority.issue_code("c1", alice_id, REDIRECT_URI, "read")
        token_set = authority.codes.exchange(code, "c1", REDIRECT_URI)

        row = storage.get_session().query(AuthorizationCode).one()
        storage.get_session().refresh(row)
        assert row.consumed
        assert row.family_id == token_set.family_id

    def test_second_exchange_revokes_first_family(self, authority, recorder, alice_id):
        code = authority.issue_code("c1", alice_id, REDIRECT_URI, "read")
        first = authority.codes.exchange(code, "c1", REDIRECT_URI)

        with pytest.raises(InvalidGrant):
            authority.codes.exchange(code, "c1", REDIRECT_URI)

        with pytest.raises(InvalidGrant):
            authority.rotator.rotate(first.refresh_token, "c1")
        with pytest.raises(InvalidToken) as exc:
            authority.verify(first.access_token)
        assert exc.value.reason == InvalidToken.REVOKED
        assert audit.AUTHORIZATION_CODE_REPLAY in recorder.kinds()

    def test_unknown_code(self, authority):
        with pytest.raises(InvalidGrant):
            authority.codes.exchange("no-such-code", "c1", REDIRECT_URI)

    def test_expired_code(self, authority, clock, alice_id):
        code = authority.issue_code("c1", alice_id, REDIRECT_URI, "read")
        clock.advance(600)
        with pytest.raises(InvalidGrant):
            authority.codes.exchange(code, "c1", REDIRECT_URI)

    def test_redirect_uri_mismatch(self, authority, alice_id):
        code = authority.issue_code("c1", alice_id, REDIRECT_URI, "read")
        with pytest.raises(InvalidGrant):
            authority.codes.exchange(code, "c1", "https://app.example/other")

    def test_other_client(self, authority, alice_id):
        code = authority.issue_code("c1", alice_id, REDIRECT_URI, "read")
        with pytest.raises(InvalidGrant):
            authority.codes.exchange(code, "svc", REDIRECT_URI)

    def test_inactive_user(self, authority, storage):
        bob = add_user(storage, "bob", "bob-password", is_active=False)
        code = authority.issue_code("c1", bob.id, REDIRECT_URI, "read")
        with pytest.raises(InvalidGrant):
            authority.codes.exchange(code, "c1", REDIRECT_URI)

    def test_losing_a_concurrent_exchange_revokes_the_winner(self, authority, storage, monkeypatch, alice_id):
        code = authority.issue_code("c1", alice_id, REDIRECT_URI, "read")
        original_mint = authority.issuer.mint
        winner = {}

        def racing_mint(*args, **kwargs):
            # the other request commits its exchange between our read and our update
            if not winner:
                winner["tokens"] = original_mint(
                    subject=alice_id, client_id="c1", scopes=["read"], include_refresh=True
                )
                session = storage.get_session()
                session.query(AuthorizationCode).update(
                    {AuthorizationCode.consumed: True, AuthorizationCode.family_id: winner["tokens"].family_id},
                    synchronize_session=False,
                )
                session.commit()
            return original_mint(*args, **kwargs)

        monkeypatch.setattr(authority.issuer, "mint", racing_mint)

        with pytest.raises(InvalidGrant):
            authority.codes.exchange(code, "c1", REDIRECT_URI)

        session = storage.get_session()
        session.expire_all()
        rows = session.query(RefreshToken).all()
        assert len(rows) == 1
        assert rows[0].family_id == winner["tokens"].family_id
        assert rows[0].status == RefreshTokenStatus.REVOKED
