"""
credstore/hashing.py -- Password verification and hashing for htpasswd records.

Verification:
  The scheme of a stored hash is detected purely from its shape. SCHEMES is
  an ordered tuple of HashScheme entries; identify_scheme() walks it and the
  first entry whose matcher accepts the hash does the comparison. Order:

    bcrypt      $2a$ / $2b$ / $2y$        bcrypt.checkpw (constant time)
    plain       {PLAIN}secret             hmac.compare_digest
    sha         {SHA}base64(sha1)         hmac.compare_digest
    md5-crypt   $apr1$... / $1$...        passlib apr_md5_crypt / md5_crypt
    des-crypt   13-char crypt(3) string   passlib des_crypt

  verify_password() never raises. A hash no scheme recognises, or one a
  library rejects as malformed, is simply a non-match.

Hashing:
  hash_password() generates a new hash for add_user. The default "crypt"
  algorithm produces a DES crypt(3) hash when passlib has a backend for it and
  falls back to the portable {SHA} form otherwise. "bcrypt", "md5" ($apr1$)
  and "sha1" ({SHA}) can be selected explicitly.

bcrypt is used directly rather than through passlib, because passlib's
bcrypt wrapper trips over the 72-byte limit enforced by bcrypt 4.x. passlib
is only used for the legacy crypt(3) family, which bcrypt does not cover.

Layer rule: no imports from credstore.store or main.py.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Callable, Optional

import bcrypt
from passlib.exc import MissingBackendError
from passlib.hash import apr_md5_crypt, des_crypt, md5_crypt

logger = logging.getLogger("credstore.hashing")

_BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")
_PLAIN_PREFIX = "{PLAIN}"
_SHA_PREFIX = "{SHA}"

# bcrypt silently ignores (or, since 5.0, rejects) input past this length.
_BCRYPT_MAX_BYTES = 72
# DES crypt(3) only looks at the first 8 bytes of the password.
_DES_MAX_BYTES = 8


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _binary(plain: str) -> bytes:
    """Encode plain the way Apache's {SHA} scheme sees it: one byte per char.

    Characters above U+00FF keep only their low byte, which is what the
    legacy tools that wrote these files did.
    """
    return bytes(ord(ch) & 0xFF for ch in plain)


def _sha1_digest(plain: str) -> str:
    return base64.b64encode(hashlib.sha1(_binary(plain)).digest()).decode("ascii")


def _safe_equals(left: str, right: str) -> bool:
    return hmac.compare_digest(left.encode("utf-8"), right.encode("utf-8"))


# ---------------------------------------------------------------------------
# Scheme table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HashScheme:
    """One recognised hash format: a shape test plus a comparison."""

    name: str
    matches: Callable[[str], bool]
    verify: Callable[[str, str], bool]


def _verify_bcrypt(plain: str, hashed: str) -> bool:
    return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))


def _verify_plain(plain: str, hashed: str) -> bool:
    return _safe_equals(plain, hashed[len(_PLAIN_PREFIX) :])


def _verify_sha(plain: str, hashed: str) -> bool:
    return _safe_equals(_sha1_digest(plain), hashed[len(_SHA_PREFIX) :])


def _verify_md5_crypt(plain: str, hashed: str) -> bool:
    handler = apr_md5_crypt if apr_md5_crypt.identify(hashed) else md5_crypt
    return handler.verify(plain, hashed)


def _verify_des_crypt(plain: str, hashed: str) -> bool:
    return des_crypt.verify(plain, hashed)


SCHEMES: tuple[HashScheme, ...] = (
    HashScheme("bcrypt", lambda h: h.startswith(_BCRYPT_PREFIXES), _verify_bcrypt),
    HashScheme("plain", lambda h: h.startswith(_PLAIN_PREFIX), _verify_plain),
    HashScheme("sha", lambda h: h.startswith(_SHA_PREFIX), _verify_sha),
    HashScheme("md5-crypt", lambda h: apr_md5_crypt.identify(h) or md5_crypt.identify(h), _verify_md5_crypt),
    HashScheme("des-crypt", des_crypt.identify, _verify_des_crypt),
)


def identify_scheme(hashed: str) -> Optional[HashScheme]:
    """Return the first scheme in SCHEMES that recognises hashed, or None."""
    for scheme in SCHEMES:
        if scheme.matches(hashed):
            return scheme
    return None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if plain matches the stored htpasswd hash.

    Never raises: unknown formats and hashes the underlying library rejects
    as malformed both count as a mismatch.
    """
    if not hashed:
        return False
    scheme = identify_scheme(hashed)
    if scheme is None:
        return False
    try:
        return scheme.verify(plain, hashed)
    except (ValueError, TypeError, MissingBackendError):
        logger.debug("Stored %s hash could not be checked", scheme.name, exc_info=True)
        return False


def crypt_available() -> bool:
    """True if passlib can produce DES crypt(3) hashes on this platform."""
    return des_crypt.has_backend()


def hash_sha1(plain: str) -> str:
    return _SHA_PREFIX + _sha1_digest(plain)


def hash_password(plain: str, algorithm: str = "crypt", rounds: int = 10) -> str:
    """Return a new htpasswd hash of plain using the given algorithm.

    algorithm is one of "crypt", "bcrypt", "md5", "sha1" (see core.config).
    "crypt" keeps the historical default: DES crypt(3) if available, {SHA}
    otherwise.

    Raises ValueError for an unknown algorithm or a password bcrypt cannot take.
    """
    if algorithm == "bcrypt":
        secret = plain.encode("utf-8")
        if len(secret) > _BCRYPT_MAX_BYTES:
            raise ValueError(f"bcrypt passwords are limited to {_BCRYPT_MAX_BYTES} bytes")
        return bcrypt.hashpw(secret, bcrypt.gensalt(rounds=rounds)).decode("utf-8")
    if algorithm == "md5":
        return apr_md5_crypt.hash(plain)
    if algorithm == "sha1":
        return hash_sha1(plain)
    if algorithm == "crypt":
        if not crypt_available():
            return hash_sha1(plain)
        if len(plain.encode("utf-8")) > _DES_MAX_BYTES:
            logger.warning(
                "crypt(3) hashes only use the first %d bytes of a password; "
                "set algorithm to bcrypt for longer passwords",
                _DES_MAX_BYTES,
            )
        return des_crypt.hash(plain)
    raise ValueError(f"Unknown hash algorithm: {algorithm!r}")
