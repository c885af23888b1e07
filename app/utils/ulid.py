"""Identifier helpers.

Every id keyledger mints is a ULID from `python-ulid`: credential ids,
audit entry ids and generated request ids. ULIDs sort by creation time,
which is what lets the key store and the audit log order by id.
"""

from __future__ import annotations

import re

from ulid import ULID

# Crockford Base32, 26 chars. The first char carries the top 3 bits of the
# 48-bit timestamp, so anything above '7' would overflow.
_ULID_RE = re.compile(r"^[0-7][0-9A-HJKMNP-TV-Z]{25}$")


def generate_ulid() -> str:
    """Return a fresh 26-character ULID, e.g. ``"01KJ0JRVHYA7KX32VPN5ZSCTMV"``."""
    return str(ULID())


def is_valid_ulid(value: str) -> bool:
    """True if value is a canonical (uppercase) ULID string."""
    return bool(_ULID_RE.match(value or ""))
