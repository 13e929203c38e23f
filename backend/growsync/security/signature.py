"""
GrowSync Backend - Webhook Signature Verification
==================================================

What:  HMAC-SHA256 authentication of the raw request body.
How:   The caller signs the exact bytes it sends and puts the hex digest in the
       `x-signature` header. We recompute the digest over the bytes we received
       (never a re-serialized JSON form) and compare in constant time.
Who:   Called by the POST /analyze route before the body is parsed.

Outcomes:
    header missing / secret missing   → UnauthorizedError  ("unauthorized")
    header present but not matching  → BadSignatureError  ("bad signature")
    header matches                    → request proceeds
"""

import hashlib
import hmac
import re
from typing import Optional, Union

from growsync.exceptions import BadSignatureError, UnauthorizedError

_HEX_SIGNATURE = re.compile(r"[0-9a-fA-F]+")

Body = Union[bytes, str]


def _as_bytes(value: Body) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return value


def sign(body: Body, secret: str) -> str:
    """Return the lowercase hex HMAC-SHA256 of `body` under `secret`."""
    return hmac.new(_as_bytes(secret), _as_bytes(body), hashlib.sha256).hexdigest()


def verify_signature(raw_body: Body, secret: str, signature_hex: str) -> bool:
    """
    Check a hex signature against the HMAC of the raw body.

    Malformed signatures (non-hex characters or odd length) fail before the
    HMAC is computed. A decoded signature of the wrong length fails before
    the comparison; equal-length digests are compared with
    hmac.compare_digest so the time taken does not depend on where they differ.
    """
    if not signature_hex or not _HEX_SIGNATURE.fullmatch(signature_hex):
        return False
    if len(signature_hex) % 2 != 0:
        return False

    provided = bytes.fromhex(signature_hex)
    computed = hmac.new(_as_bytes(secret), _as_bytes(raw_body), hashlib.sha256).digest()
    if len(provided) != len(computed):
        return False
    return hmac.compare_digest(computed, provided)


def authenticate_request(
    raw_body: Body,
    secret: Optional[str],
    signature_header: Optional[str],
) -> None:
    """
    Authenticate an inbound request or raise.

    Raises:
        UnauthorizedError: No signature header, or no secret configured
        BadSignatureError: Signature present but invalid for this body
    """
    if not signature_header or not secret:
        raise UnauthorizedError(
            context={
                "has_signature": bool(signature_header),
                "has_secret": bool(secret),
            }
        )
    if not verify_signature(raw_body, secret, signature_header.strip()):
        raise BadSignatureError()
