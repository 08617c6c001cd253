"""Revocation of access tokens, refresh families and clients."""
import pytest

from authority import audit
from authority.errors import InvalidGrant, InvalidToken
from authority.revocation import JTI_PREFIX
from models import AuthorizationCode, RefreshToken, RefreshTokenStatus
from tests.conftest import REDIRECT_URI, make_authority
from utils.security import hash_token


class TestRevokeEndpointSemantics:
    def test_revoke_access_token(self, authority, code_tokens):
        authority.revoke(code_tokens.access_token)
        with pytest.raises(InvalidToken) as exc:
            authority.verify(code_tokens.access_token)
        assert exc.value.reason == InvalidToken.REVOKED

    def test_revoking_twice_is_a_no_op(self, authority, code_tokens):
        authority.revoke(code_tokens.access_token)
        authority.revoke(code_tokens.access_token)
        with pytest.raises(InvalidToken):
            authority.verify(code_tokens.access_token)

    def test_unknown_token_is_a_no_op(self, authority):
        authority.revoke("not-a-token")
        authority.revoke("not-a-token", "refresh_token")

    def test_revoke_refresh_token_revokes_family(self, authority, code_tokens):
        authority.revoke(code_tokens.refresh_token, "refresh_token")

        with pytest.raises(InvalidGrant):
            authority.rotator.rotate(code_tokens.refresh_token, "c1")
        with pytest.raises(InvalidToken):
            authority.verify(code_tokens.access_token)

    def test_wrong_hint_still_finds_the_token(self, authority, code_tokens):
        authority.revoke(code_tokens.access_token, "refresh_token")
        with pytest.raises(InvalidToken):
            authority.verify(code_tokens.access_token)

    def test_expired_access_token_is_not_denylisted(self, authority, fast_store, clock, code_tokens):
        clock.advance(900)
        authority.revoke(code_tokens.access_token)
        assert not fast_store.exists(JTI_PREFIX + code_tokens.jti)

    def test_denylist_entry_lives_as_long_as_the_token(self, authority, fast_store, clock, code_tokens):
        clock.advance(600)
        authority.revoke(code_tokens.access_token)
        clock.advance(299)
        assert fast_store.exists(JTI_PREFIX + code_tokens.jti)
        clock.advance(1)
        assert not fast_store.exists(JTI_PREFIX + code_tokens.jti)


class TestFamilies:
    def test_revoke_family_is_idempotent(self, authority, storage, code_tokens):
        assert authority.revocation.revoke_family(code_tokens.family_id) == 1
        assert authority.revocation.revoke_family(code_tokens.family_id) == 0

        session = storage.get_session()
        session.expire_all()
        row = session.query(RefreshToken).filter(RefreshToken.family_id == code_tokens.family_id).one()
        assert row.status == RefreshTokenStatus.REVOKED

    def test_unknown_family(self, authority):
        assert authority.revocation.revoke_family("no-such-family") == 0
        assert authority.revocation.revoke_family(None) == 0


class TestSingleRefreshToken:
    def test_revoked_token_takes_the_reuse_path(self, authority, recorder, code_tokens):
        token_hash = hash_token(code_tokens.refresh_token)
        assert authority.revocation.revoke_refresh_token(token_hash) == 1

        with pytest.raises(InvalidGrant):
            authority.rotator.rotate(code_tokens.refresh_token, "c1")
        assert audit.REFRESH_TOKEN_REUSE in recorder.kinds()
        with pytest.raises(InvalidToken) as exc:
            authority.verify(code_tokens.access_token)
        assert exc.value.reason == InvalidToken.REVOKED

    def test_second_revocation_changes_nothing(self, authority, storage, code_tokens):
        token_hash = hash_token(code_tokens.refresh_token)
        authority.revocation.revoke_refresh_token(token_hash)

        assert authority.revocation.revoke_refresh_token(token_hash) == 0
        session = storage.get_session()
        session.expire_all()
        row = session.query(RefreshToken).filter(RefreshToken.token_hash == token_hash).one()
        assert row.status == RefreshTokenStatus.REVOKED

    def test_only_the_named_token_is_revoked(self, authority, storage, code_tokens):
        successor = authority.rotator.rotate(code_tokens.refresh_token, "c1")
        authority.revocation.revoke_refresh_token(hash_token(successor.refresh_token))

        session = storage.get_session()
        session.expire_all()
        statuses = {
            row.token_hash: row.status
            for row in session.query(RefreshToken).filter(RefreshToken.family_id == code_tokens.family_id)
        }
        assert statuses == {
            hash_token(code_tokens.refresh_token): RefreshTokenStatus.ROTATED,
            hash_token(successor.refresh_token): RefreshTokenStatus.REVOKED,
        }


class TestClientRevocation:
    def test_access_tokens_survive_by_default(self, authority, fast_store, recorder, code_tokens):
        authority.revoke_client("c1")

        assert not fast_store.exists(JTI_PREFIX + code_tokens.jti)
        assert authority.verify(code_tokens.access_token).client_id == "c1"
        with pytest.raises(InvalidGrant):
            authority.rotator.rotate(code_tokens.refresh_token, "c1")
        assert audit.CLIENT_REVOKED in recorder.kinds()

    def test_policy_revokes_outstanding_access_tokens(self, storage, fast_store, clock, seeded):
        authority = make_authority(storage, fast_store, clock, revoke_access_on_client_revocation=True)
        client_token = authority.issuer.mint("svc", "svc", "metrics", include_refresh=False).access_token
        other_token = authority.issuer.mint("u", "c1", "read", include_refresh=False).access_token

        clock.advance(5)
        authority.revoke_client("svc")

        with pytest.raises(InvalidToken) as exc:
            authority.verify(client_token)
        assert exc.value.reason == InvalidToken.REVOKED
        assert authority.verify(other_token).client_id == "c1"


def test_purge_expired(authority, storage, clock, seeded, code_tokens):
    authority.issue_code("c1", seeded["alice"].id, REDIRECT_URI, "read")
    clock.advance(8 * 24 * 3600)

    counts = authority.purge_expired()

    assert counts == {"authorization_codes": 2, "refresh_tokens": 1}
    session = storage.get_session()
    assert session.query(AuthorizationCode).count() == 0
    assert session.query(RefreshToken).count() == 0
