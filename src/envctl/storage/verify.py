"""Probe that a storage really keeps what it is given."""
from __future__ import annotations

from ..logging import get_logger
from .base import Storage, StorageError, VerificationError, get_bytes, put_bytes

logger = get_logger(__name__)

VERIFICATION_FILENAME = "bootstrap-verify"
VERIFICATION_CONTENT = b"juju-core storage writing verified: ok\n"


def verify_storage(stor: Storage) -> None:
    """Write the verification marker and read it back.

    Write failures raise :class:`StorageError`; content that cannot be read
    back, or that comes back different, raises :class:`VerificationError`.
    """
    logger.debug("verifying storage by writing %s", VERIFICATION_FILENAME)
    try:
        put_bytes(stor, VERIFICATION_FILENAME, VERIFICATION_CONTENT)
    except StorageError as exc:
        raise StorageError(f"failed to write storage verification file: {exc}") from exc

    try:
        content = get_bytes(stor, VERIFICATION_FILENAME)
    except StorageError as exc:
        raise VerificationError(f"cannot read storage verification file: {exc}") from exc
    if content != VERIFICATION_CONTENT:
        raise VerificationError(
            f"storage verification file has unexpected content {content!r}"
        )


__all__ = ["VERIFICATION_CONTENT", "VERIFICATION_FILENAME", "verify_storage"]
