"""Salted PBKDF2 password hashing.

Stored secrets have the form ``<salt>:<hash>``, both hex encoded. The hex
salt string itself is fed to PBKDF2, so secrets written by earlier versions
of the back office keep verifying.
"""

import hashlib
import hmac
import secrets

ITERATIONS = 100_000
KEY_LENGTH = 64
DIGEST = "sha512"
SALT_BYTES = 32
SEPARATOR = ":"


def _derive(password: str, salt: str) -> str:
    return hashlib.pbkdf2_hmac(
        DIGEST, password.encode("utf-8"), salt.encode("utf-8"), ITERATIONS, KEY_LENGTH
    ).hex()


def hash_password(password: str) -> str:
    """Return a storable ``salt:hash`` secret for ``password``."""
    salt = secrets.token_hex(SALT_BYTES)
    return f"{salt}{SEPARATOR}{_derive(password, salt)}"


def is_password_hashed(stored: str | None) -> bool:
    return bool(stored) and SEPARATOR in stored and len(stored) > 100


def encode_secret(value: str) -> bytes:
    # lone surrogates can arrive through JSON escapes
    return value.encode("utf-8", "surrogatepass")


def verify_password(password: str, stored: str | None, allow_legacy: bool = True) -> bool:
    """Check ``password`` against a stored secret without raising.

    Secrets without a separator are legacy plaintext rows. They compare by
    plain equality only while ``allow_legacy`` is set; drop that path once
    every account has been re-hashed.
    """
    if not password or not stored:
        return False

    if SEPARATOR not in stored:
        if not allow_legacy:
            return False
        return hmac.compare_digest(encode_secret(password), encode_secret(stored))

    salt, _, expected = stored.partition(SEPARATOR)
    if not salt or not expected:
        return False
    try:
        actual = _derive(password, salt)
    except (ValueError, TypeError, UnicodeError):
        return False
    return hmac.compare_digest(encode_secret(actual), encode_secret(expected))
