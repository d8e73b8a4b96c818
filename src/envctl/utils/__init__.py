"""Small helpers shared across envctl modules."""
from __future__ import annotations

import base64
import hashlib
import secrets
import shlex

from .retry import RetryPolicy

# Salt used for admin password hashes handed to freshly bootstrapped state
# servers; agents replace the hash with a real password on first connection.
COMPAT_SALT = bytes((0x75, 0x82, 0x81, 0xCA))
_HASH_ITERATIONS = 8192
_HASH_BYTES = 18


def sh_quote(value: str) -> str:
    """Quote *value* for safe use as a single POSIX shell word."""
    return shlex.quote(value)


def random_password() -> str:
    """Return a new random password suitable for agent credentials."""
    return base64.b64encode(secrets.token_bytes(_HASH_BYTES)).decode("ascii")


def user_password_hash(password: str, salt: bytes = COMPAT_SALT) -> str:
    """Return the PBKDF2-SHA512 hash used for user passwords."""
    digest = hashlib.pbkdf2_hmac(
        "sha512",
        password.encode("utf-8"),
        salt,
        _HASH_ITERATIONS,
        dklen=_HASH_BYTES,
    )
    return base64.b64encode(digest).decode("ascii")


__all__ = [
    "COMPAT_SALT",
    "RetryPolicy",
    "random_password",
    "sh_quote",
    "user_password_hash",
]
