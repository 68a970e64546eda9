from datetime import datetime, timedelta, timezone

import jwt
import pytest

from ovaview.config import settings
from ovaview.database import RevokedToken
from ovaview.errors import AuthenticationError
from ovaview.roles import Role
from ovaview.tokens import (
    ACCESS,
    REFRESH,
    Principal,
    decode_token,
    is_revoked,
    issue_session,
    purge_revoked_tokens,
    revoke_token,
)


@pytest.fixture
def principal():
    return Principal(id="u-1", email="ann@example.com", username="Ann", role=Role.DATA_ENTRY)


def test_session_expires_a_fixed_duration_after_issue(principal):
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    session = issue_session(principal, now=now)
    assert session.expires_at == now + timedelta(hours=24)


def test_tokens_are_distinct_and_carry_random_ids(principal):
    first = issue_session(principal)
    second = issue_session(principal)
    tokens = {first.access_token, first.refresh_token, second.access_token, second.refresh_token}
    assert len(tokens) == 4

    jti = decode_token(first.access_token, ACCESS).jti
    assert len(jti) >= 32
    assert jti != decode_token(second.access_token, ACCESS).jti


def test_decode_round_trips_the_principal(principal):
    claims = decode_token(issue_session(principal).access_token, ACCESS)
    assert claims.principal.id == "u-1"
    assert claims.principal.role is Role.DATA_ENTRY
    assert claims.token_type == ACCESS


@pytest.mark.parametrize("token", [None, "", "not-a-token", "a.b.c"])
def test_absent_or_malformed_tokens_are_rejected(token):
    with pytest.raises(AuthenticationError) as err:
        decode_token(token)
    assert err.value.message == "Authentication required"


def test_expired_token_is_rejected_like_an_absent_one(principal):
    stale = issue_session(principal, now=datetime.now(timezone.utc) - timedelta(hours=25))
    with pytest.raises(AuthenticationError) as expired:
        decode_token(stale.access_token)
    with pytest.raises(AuthenticationError) as absent:
        decode_token(None)
    assert expired.value.message == absent.value.message


def test_refresh_token_is_not_accepted_as_access_token(principal):
    session = issue_session(principal)
    with pytest.raises(AuthenticationError):
        decode_token(session.refresh_token, ACCESS)
    assert decode_token(session.refresh_token, REFRESH).token_type == REFRESH


def test_token_signed_with_another_key_is_rejected(principal):
    payload = jwt.decode(
        issue_session(principal).access_token,
        options={"verify_signature": False},
    )
    payload["role"] = "admin"
    forged = jwt.encode(payload, "some-other-secret-of-sufficient-length!!", algorithm=settings.jwt_algorithm)
    with pytest.raises(AuthenticationError):
        decode_token(forged)


def test_revocation_and_purge(db, principal):
    claims = decode_token(issue_session(principal).access_token)
    assert not is_revoked(db, claims.jti)

    revoke_token(db, claims)
    revoke_token(db, claims)
    assert is_revoked(db, claims.jti)
    assert db.query(RevokedToken).count() == 1

    assert purge_revoked_tokens(db, now=datetime.now(timezone.utc)) == 0
    later = claims.expires_at + timedelta(seconds=1)
    assert purge_revoked_tokens(db, now=later) == 1
    assert not is_revoked(db, claims.jti)


def test_concurrent_revocation_of_same_token_is_rejected(db, principal, monkeypatch):
    claims = decode_token(issue_session(principal).refresh_token, REFRESH)
    revoke_token(db, claims)
    db.expunge_all()

    # both requests saw the token as live before either committed
    monkeypatch.setattr("ovaview.tokens.is_revoked", lambda db, jti: False)
    with pytest.raises(AuthenticationError):
        revoke_token(db, claims)
    assert db.query(RevokedToken).count() == 1
