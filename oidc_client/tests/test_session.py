"""Tests for the session codec: round trip, tamper detection, expiry."""
import time

import pytest

from oidc_client.flow_store import CookieLoginStore, begin
from oidc_client.session import Session, SessionCodec, is_canonical_jws


@pytest.fixture
def codec():
    return SessionCodec("session-secret")


@pytest.fixture
def session():
    now = int(time.time())
    return Session(
        subject="user-42",
        issuer="https://idp.example",
        audience=("test-client", "api://shared"),
        expires_at=now + 600,
        issued_at=now,
        access_token="opaque-access-token",
        refresh_token="opaque-refresh-token",
        id_token="header.payload.signature",
    )


def test_round_trip(codec, session):
    assert codec.decode(codec.encode(session)) == session


def test_round_trip_without_optional_tokens(codec, session):
    s = Session(
        subject=session.subject,
        issuer=session.issuer,
        audience=("test-client",),
        expires_at=session.expires_at,
        issued_at=session.issued_at,
        access_token="at",
    )
    assert codec.decode(codec.encode(s)) == s


def test_any_single_character_mutation_is_rejected(codec, session):
    token = codec.encode(session)
    for i, ch in enumerate(token):
        replacement = "A" if ch != "A" else "B"
        mutated = token[:i] + replacement + token[i + 1 :]
        assert codec.decode(mutated) is None, f"mutation at {i} accepted"


B64URL = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"


def _low_bit_sibling(ch: str) -> str:
    """Alphabet character whose 6-bit value differs from ch only in the lowest bit."""
    return B64URL[B64URL.index(ch) ^ 1]


def test_low_bit_and_foreign_character_mutations_rejected(codec, session):
    token = codec.encode(session)
    for i, ch in enumerate(token):
        replacements = ["!", "="]
        if ch in B64URL:
            replacements += [_low_bit_sibling(ch), B64URL[B64URL.index(ch) ^ 3]]
        for replacement in replacements:
            mutated = token[:i] + replacement + token[i + 1 :]
            assert codec.decode(mutated) is None, f"{replacement!r} at {i} accepted"


def test_unused_trailing_bits_make_token_non_canonical(codec, session):
    token = codec.encode(session)
    start = 0
    for segment in token.split("."):
        i = start + len(segment) - 1
        mutated = token[:i] + _low_bit_sibling(token[i]) + token[i + 1 :]
        if len(segment) % 4:
            # same bytes after decoding, only the spare bits differ
            assert not is_canonical_jws(mutated)
        assert codec.decode(mutated) is None
        start += len(segment) + 1


def test_truncated_and_extended_tokens_rejected(codec, session):
    token = codec.encode(session)
    assert codec.decode(token[:-1]) is None
    assert codec.decode(token + "A") is None
    assert codec.decode(token + ".") is None


def test_expired_session_rejected(codec, session):
    now = int(time.time())
    expired = Session(
        subject=session.subject,
        issuer=session.issuer,
        audience=session.audience,
        expires_at=now - 10,
        issued_at=now - 600,
        access_token="at",
    )
    assert expired.expired()
    assert codec.decode(codec.encode(expired)) is None


def test_other_secret_rejected(codec, session):
    assert SessionCodec("another-secret").decode(codec.encode(session)) is None


def test_pending_login_token_is_not_a_session(codec):
    token = CookieLoginStore("session-secret").dumps(begin("/"))
    assert codec.decode(token) is None


@pytest.mark.parametrize("value", [None, "", "garbage", "a.b", "a.b.c.d", "!!!.###.$$$"])
def test_garbage_rejected(codec, value):
    assert codec.decode(value) is None


def test_empty_secret_not_allowed():
    with pytest.raises(ValueError):
        SessionCodec("")


def test_canonical_check():
    assert is_canonical_jws("eyJh.eyJi.c2k")
    assert not is_canonical_jws("eyJh.eyJi")
    # "c2l" decodes to the same bytes as "c2k"; the unused low bits differ
    assert not is_canonical_jws("eyJh.eyJi.c2l")
