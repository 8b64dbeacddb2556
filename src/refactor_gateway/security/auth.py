"""API key generation, hashing, and verification.

Secrets are stored only as bcrypt hashes. Because each hash is salted there is
no way to look a key up by its plaintext; authentication scans every active
record and runs ``verify_api_key`` against each (see ``usage.store``).
"""

import logging
import secrets

import bcrypt

from ..config import get_settings

logger = logging.getLogger(__name__)

MASKED_API_KEY = "sk-abc123************************def456"


def generate_api_key() -> str:
    """Generate a new API key: configured prefix + 64 hex chars."""
    prefix = get_settings().api_key_prefix
    return f"{prefix}{secrets.token_hex(32)}"


def hash_api_key(raw_key: str) -> str:
    """Hash an API key with bcrypt for storage."""
    rounds = get_settings().bcrypt_rounds
    return bcrypt.hashpw(raw_key.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_api_key(raw_key: str, hashed: str) -> bool:
    """Verify an API key against its bcrypt hash.

    Returns False for empty or malformed hashes instead of raising, so a
    corrupt row cannot break the scan over all records.
    """
    if not raw_key or not hashed:
        return False
    try:
        return bcrypt.checkpw(raw_key.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Skipping API key record with malformed hash")
        return False
