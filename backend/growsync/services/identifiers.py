"""
GrowSync Backend - Record Identifier & Idempotency Key Helpers
===============================================================

What:  Turns human-shareable record URLs into canonical record ids, and a
       job's natural key (record URL, date) into a stable idempotency key.
Who:   Property mapper (relations), upsert coordinator (page ids), batch
       orchestrator (history keys).

Accepted URL shapes (case-insensitive, token may appear anywhere):
    https://www.notion.so/Grow-Photo-12345678abcd1234abcd1234abcd1234
    https://www.notion.so/12345678-abcd-1234-abcd-1234abcd1234
    https://store/photo-12345678ABCD1234ABCD1234ABCD1234?v=1

All of the above normalize to the same 32-char lowercase id.
"""

import hashlib
import re

from growsync.exceptions import InvalidUrlError

_RECORD_ID_PATTERN = re.compile(
    r"([0-9a-f]{32}|[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})",
    re.IGNORECASE,
)


def extract_record_id(url: str) -> str:
    """
    Extract the canonical record id from a URL.

    Returns:
        32 lowercase hex characters, hyphens stripped.

    Raises:
        InvalidUrlError: No 32-hex or hyphenated UUID token in the string.
    """
    match = _RECORD_ID_PATTERN.search(url or "")
    if not match:
        raise InvalidUrlError(url)
    return match.group(1).replace("-", "").lower()


def idempotency_key(record_url: str, date: str) -> str:
    """sha256 hex digest of "<record_url>|<date>", the history record's natural key."""
    return hashlib.sha256(f"{record_url}|{date}".encode("utf-8")).hexdigest()
