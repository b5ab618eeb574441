import time
from typing import Optional

import jwt
from fastapi import Request
from passlib.context import CryptContext

from .config import get_settings
from .errors import AuthError, ForbiddenError

# Use pbkdf2_sha256 as default to avoid bcrypt 72-byte limitation in some envs;
# bcrypt stays verifiable for hashes imported from older deployments.
pwd_context = CryptContext(schemes=["pbkdf2_sha256", "bcrypt"], deprecated="auto")

ALGORITHM = "HS256"


def create_access_token(user_id: int, role: str, expires_delta: Optional[int] = None) -> str:
    settings = get_settings()
    now = int(time.time())
    exp = now + (expires_delta or settings.jwt_expires_seconds)
    payload = {"sub": str(user_id), "role": role, "iat": now, "exp": exp}
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGORITHM)


def decode_access_token(token: Optional[str]) -> dict:
    if not token:
        raise AuthError("No token provided")
    try:
        payload = jwt.decode(
            token,
            get_settings().jwt_secret,
            algorithms=[ALGORITHM],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise AuthError("Token expired") from e
    except jwt.PyJWTError as e:
        raise AuthError("Invalid token") from e
    if payload.get("role") not in ("user", "admin"):
        raise AuthError("Invalid token")
    return payload


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(plain, hashed)
    except (ValueError, TypeError):
        # unknown or corrupt hash format counts as a mismatch
        return False


def bearer_token(request: Request) -> Optional[str]:
    auth = request.headers.get("authorization")
    if auth and auth.lower().startswith("bearer "):
        return auth.split(None, 1)[1].strip() or None
    return None


def require_auth(request: Request) -> dict:
    """FastAPI dependency: the verified token payload of the caller."""
    return decode_access_token(bearer_token(request))


def require_admin(request: Request) -> dict:
    """FastAPI dependency: like ``require_auth`` but the role must be admin."""
    payload = require_auth(request)
    if payload.get("role") != "admin":
        raise ForbiddenError("Admin access required")
    return payload
