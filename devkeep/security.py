"""
devkeep/security.py

Password hashing, access tokens and symmetric encryption.

- bcrypt for account passwords and hidden-space PINs
- PyJWT (HS256) access tokens carrying sub/email/exp
- Fernet for credential passwords and chat message bodies
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

import bcrypt
import jwt
from cryptography.fernet import Fernet, InvalidToken

from devkeep.config import ACCESS_TOKEN_MINUTES, ALGORITHM, ENCRYPTION_KEY, SECRET_KEY
from devkeep.errors import Internal, Unauthenticated


# ---------------------------------------------------------
# Passwords
# ---------------------------------------------------------
def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


# ---------------------------------------------------------
# Access tokens
# ---------------------------------------------------------
def create_access_token(data: dict, expires_minutes: Optional[int] = None) -> str:
    payload = dict(data)
    minutes = expires_minutes if expires_minutes is not None else ACCESS_TOKEN_MINUTES
    payload["exp"] = datetime.utcnow() + timedelta(minutes=minutes)
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> dict:
    """
    Verify JWT access token and return decoded payload.

    Raises:
        Unauthenticated: If token is expired or invalid
    """
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise Unauthenticated("Token expired")
    except jwt.InvalidTokenError:
        raise Unauthenticated("Invalid token")


# ---------------------------------------------------------
# Encryption at rest
# ---------------------------------------------------------
def _fernet() -> Fernet:
    if not ENCRYPTION_KEY:
        raise Internal("ENCRYPTION_KEY is not configured")
    return Fernet(ENCRYPTION_KEY.encode("utf-8"))


def encrypt_secret(plaintext: str) -> str:
    return _fernet().encrypt(plaintext.encode("utf-8")).decode("utf-8")


def decrypt_secret(ciphertext: str) -> str:
    """Decrypt a stored value. Raises InvalidToken for non-ciphertext input."""
    return _fernet().decrypt(ciphertext.encode("utf-8")).decode("utf-8")


def decrypt_or_plain(value: str) -> str:
    """Decrypt message bodies; rows written before encryption come back as-is."""
    try:
        return decrypt_secret(value)
    except InvalidToken:
        return value
