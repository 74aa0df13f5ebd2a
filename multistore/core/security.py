"""Security utilities: admin token checks and JWT helpers."""

import hashlib
import secrets
from datetime import datetime, timedelta, timezone

from jose import jwt

from multistore.core.config import Settings, get_settings

# ── Admin token hashing (SHA-256, deterministic for comparison) ──

def hash_token(raw_token: str) -> str:
    """One-way SHA-256 hash; the settings only ever hold the digest."""
    return hashlib.sha256(raw_token.encode()).hexdigest()


def verify_admin_token(raw_token: str, settings: Settings | None = None) -> bool:
    settings = settings or get_settings()
    if not settings.admin_token_hash:
        return False
    return secrets.compare_digest(hash_token(raw_token), settings.admin_token_hash)


# ── JWT ───────────────────────────────────────────────────────

def create_jwt(
    subject: str,
    store_key: str,
    settings: Settings | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Mint a token carrying the tenant claim (used by tooling and tests)."""
    settings = settings or get_settings()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=60))
    payload = {
        "sub": subject,
        settings.tenant_claim: store_key,
        "exp": expire,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_jwt(token: str, settings: Settings | None = None) -> dict:
    """Decode and verify a JWT. Raises jose.JWTError on failure."""
    settings = settings or get_settings()
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
