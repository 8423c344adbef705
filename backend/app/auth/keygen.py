"""
API key generation.

Keys look like nai_<32 hex chars>: a readable product prefix plus 128 bits
from the OS CSPRNG. The full key is the lookup value, so it is shown to its
owner in the dashboard and never rewritten.
"""

import secrets

KEY_PREFIX = "nai_"
_RANDOM_HEX_CHARS = 32


def generate_api_key() -> str:
    """Return a fresh nai_ key."""
    return f"{KEY_PREFIX}{secrets.token_hex(_RANDOM_HEX_CHARS // 2)}"


def looks_like_api_key(value: str) -> bool:
    """Cheap shape check used to skip a DB round-trip for obvious junk."""
    body = value[len(KEY_PREFIX):]
    return (
        value.startswith(KEY_PREFIX)
        and len(body) == _RANDOM_HEX_CHARS
        and all(c in "0123456789abcdef" for c in body)
    )
