from __future__ import annotations

import hashlib
import secrets
from typing import NamedTuple

# 24 random bytes -> 192 bits, 32 url-safe characters
TOKEN_BYTES = 24


class IssuedToken(NamedTuple):
    raw: str
    hash: str


def hash_token(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def issue() -> IssuedToken:
    """New cancellation token. Only ``hash`` may be persisted or logged."""
    raw = secrets.token_urlsafe(TOKEN_BYTES)
    return IssuedToken(raw=raw, hash=hash_token(raw))


def verify(candidate: str) -> str:
    """Lookup key for a presented token; matching is done against stored hashes."""
    return hash_token(candidate.strip())
