"""Secret generation and hashing for keyledger credentials.

Implements:
  - generate_key()               — kl_<64 hex> presented key, 256 bits
  - generate_secondary_secret()  — 128 hex chars, 512 bits
  - generate_id()                — ULID primary key
  - hash_key()                   — HMAC-SHA256 verification hash (indexed lookup value)
  - hash_secret() / verify_secret() — bcrypt for the secondary secret
  - constant_time_equals()       — timing-safe digest comparison

Invariants:
  - Random material comes from the `secrets` module ONLY (OS CSPRNG).
  - hash_key() is deterministic for a given pepper — the store indexes it.
  - The secondary secret is never stored; only its bcrypt hash is.

All functions are pure apart from consuming process-wide entropy.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

import bcrypt

from app.constants import (
    DEFAULT_SECRET_HASH_ROUNDS,
    KEY_ENTROPY_BYTES,
    KEY_PREFIX,
    SECONDARY_SECRET_ENTROPY_BYTES,
)
from app.utils.ulid import generate_ulid


def generate_key() -> str:
    """Return a new presented key: ``kl_`` + 64 lowercase hex chars."""
    return f"{KEY_PREFIX}{secrets.token_hex(KEY_ENTROPY_BYTES)}"


def generate_secondary_secret() -> str:
    """Return a new secondary secret: 128 lowercase hex chars."""
    return secrets.token_hex(SECONDARY_SECRET_ENTROPY_BYTES)


def generate_id() -> str:
    """Return a new credential id (26-char ULID)."""
    return generate_ulid()


def hash_key(key: str, pepper: str = "") -> str:
    """Derive the verification hash of a presented key.

    HMAC-SHA256 keyed by the server-side pepper (KEYLEDGER_KEY_PEPPER).
    With an empty pepper this is still a fixed-length one-way digest; the
    pepper only stops an attacker holding a copy of keys.db from testing
    guessed keys offline.

    Returns:
        64-char lowercase hex digest.
    """
    return hmac.new(pepper.encode(), key.encode(), hashlib.sha256).hexdigest()


def hash_secret(secret: str, rounds: int = DEFAULT_SECRET_HASH_ROUNDS) -> str:
    """bcrypt-hash a secondary secret. Runs once per issue or rotate.

    bcrypt only reads the first 72 bytes of its input, so the secret is
    pre-hashed with SHA-256 to cover all 512 bits.
    """
    digest = hashlib.sha256(secret.encode()).hexdigest().encode()
    return bcrypt.hashpw(digest, bcrypt.gensalt(rounds=rounds)).decode()


def verify_secret(secret: str, hashed: str) -> bool:
    """Check a secondary secret against its stored bcrypt hash."""
    digest = hashlib.sha256(secret.encode()).hexdigest().encode()
    try:
        return bcrypt.checkpw(digest, hashed.encode())
    except ValueError:
        # malformed stored hash
        return False


def constant_time_equals(a: str, b: str) -> bool:
    """Timing-safe string equality for digest cross-checks."""
    return hmac.compare_digest(a.encode(), b.encode())
