"""
API key generation and verification.

Keys look like sk_live_<64 hex> and are shown to the feeder exactly once.
Only two one-way digests are stored:

- a salted slow hash (Werkzeug pbkdf2) used to verify the key
- a keyed HMAC-SHA256 digest used to find the feeder row without
  scanning every hash
"""

import hashlib
import hmac
import re
import secrets
from typing import Optional

from werkzeug.security import check_password_hash, generate_password_hash

API_KEY_PREFIX = 'sk_live_'
FEEDER_ID_PREFIX = 'feeder_'

API_KEY_PATTERN = re.compile(r'^sk_live_[0-9a-fA-F]{64}$')
FEEDER_ID_PATTERN = re.compile(r'^feeder_[0-9a-f]{24}$')


def generate_api_key() -> str:
    return f'{API_KEY_PREFIX}{secrets.token_hex(32)}'


def generate_feeder_id() -> str:
    return f'{FEEDER_ID_PREFIX}{secrets.token_hex(12)}'


def is_valid_api_key_format(api_key: Optional[str]) -> bool:
    """Cheap shape check, done before any storage lookup."""
    return isinstance(api_key, str) and API_KEY_PATTERN.match(api_key) is not None


def extract_bearer_token(header: Optional[str]) -> Optional[str]:
    """Return the token of an 'Authorization: Bearer <token>' header, else None."""
    if not header or not isinstance(header, str):
        return None
    parts = header.split(' ')
    if len(parts) == 2 and parts[0] == 'Bearer' and parts[1]:
        return parts[1]
    return None


def hash_api_key(api_key: str, method: str = 'pbkdf2:sha256:260000') -> str:
    return generate_password_hash(api_key, method=method)


def verify_api_key(api_key: str, api_key_hash: str) -> bool:
    try:
        return check_password_hash(api_key_hash, api_key)
    except ValueError:
        # Unparseable stored hash
        return False


def lookup_digest(api_key: str, secret: str) -> str:
    """Keyed digest of an API key; deterministic, so it can be indexed."""
    return hmac.new(secret.encode('utf-8'), api_key.encode('utf-8'), hashlib.sha256).hexdigest()
