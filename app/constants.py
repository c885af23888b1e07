"""Shared constants for keyledger.

Sizes, prefixes and caps used across modules are defined here.
No magic numbers in other modules — import from here.
"""

# ─── Secret material ─────────────────────────────────────────────────────────

# Prefix on every presented key. Lets the request layer tell a keyledger
# credential apart from an unrelated bearer token.
KEY_PREFIX: str = "kl_"

# Random bytes behind a presented key (32 bytes = 256 bits, 64 hex chars).
KEY_ENTROPY_BYTES: int = 32

# Random bytes behind a secondary secret (64 bytes = 512 bits, 128 hex chars).
SECONDARY_SECRET_ENTROPY_BYTES: int = 64

# Full presented-key length: prefix + hex body.
KEY_LENGTH: int = len(KEY_PREFIX) + KEY_ENTROPY_BYTES * 2

# ─── bcrypt ──────────────────────────────────────────────────────────────────

# Cost factor for the secondary-secret hash. Config may lower it for tests;
# bcrypt itself rejects anything outside 4..31.
DEFAULT_SECRET_HASH_ROUNDS: int = 12
MIN_SECRET_HASH_ROUNDS: int = 4
MAX_SECRET_HASH_ROUNDS: int = 31

# ─── Listing caps ────────────────────────────────────────────────────────────

# Upper bound on GET /api/keys. listAll() is unbounded by contract; the
# service always passes this cap.
DEFAULT_LIST_LIMIT: int = 1000

# Default page size for audit-log and rotation-ledger inspection routes.
DEFAULT_QUERY_LIMIT: int = 50
MAX_QUERY_LIMIT: int = 500

# ─── Logging ─────────────────────────────────────────────────────────────────

# Number of verification-hash chars that may appear in diagnostic logs.
LOG_HASH_PREFIX_CHARS: int = 8
