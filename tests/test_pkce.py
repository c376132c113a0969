# Tests for the PKCE S256 verifier (RFC 7636).

import pytest

from src.common.result import Err, ErrorKind, Ok
from src.common.security import code_challenge, generate_pkce_pair, verify_pkce

# RFC 7636 appendix B
RFC_VERIFIER = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
RFC_CHALLENGE = "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


def test_challenge_matches_rfc_example():
    assert code_challenge(RFC_VERIFIER) == RFC_CHALLENGE


def test_correct_verifier():
    assert verify_pkce(RFC_VERIFIER, RFC_CHALLENGE) == Ok(True)


def test_wrong_verifier():
    other, _ = generate_pkce_pair()
    assert verify_pkce(other, RFC_CHALLENGE) == Ok(False)


def test_generated_pair_verifies():
    verifier, challenge = generate_pkce_pair()
    assert 43 <= len(verifier) <= 128
    assert "=" not in challenge
    assert verify_pkce(verifier, challenge) == Ok(True)


@pytest.mark.parametrize("method", ["plain", "S512", ""])
def test_only_s256_is_accepted(method):
    result = verify_pkce(RFC_VERIFIER, RFC_CHALLENGE, method)
    assert isinstance(result, Err)
    assert result.kind == ErrorKind.INVALID_REQUEST


@pytest.mark.parametrize(
    "verifier",
    [
        None,
        "a" * 42,
        "a" * 129,
        "a" * 42 + "!",
        "a" * 42 + " ",
    ],
)
def test_malformed_verifier(verifier):
    result = verify_pkce(verifier, RFC_CHALLENGE)
    assert isinstance(result, Err)
    assert result.kind == ErrorKind.INVALID_REQUEST


@pytest.mark.parametrize("length", [43, 128])
def test_length_bounds_are_inclusive(length):
    verifier = "a" * length
    assert verify_pkce(verifier, code_challenge(verifier)) == Ok(True)
