"""
Plote - Credentials

Passwords and reset tokens are both stored as bcrypt hashes. Access tokens are
HS256 JWTs whose subject is the user id.
"""
from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from jose import JWTError, jwt
import bcrypt
from fastapi.security import HTTPBearer
import secrets

from app.core.config import settings
from app.core.exceptions import InvalidTokenError

# A missing header is reported by get_current_user, not by FastAPI
security = HTTPBearer(auto_error=False)

ACCESS_TOKEN_TYPE = "access"
BCRYPT_MAX_BYTES = 72


def _bcrypt_input(secret: str) -> bytes:
    # bcrypt ignores (newer releases reject) anything past 72 bytes
    return secret.encode('utf-8')[:BCRYPT_MAX_BYTES]


def get_password_hash(password: str) -> str:
    """bcrypt hash with BCRYPT_ROUNDS work factor; also used for reset tokens"""
    salt = bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(_bcrypt_input(password), salt).decode('utf-8')


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(_bcrypt_input(plain_password), hashed_password.encode('utf-8'))
    except ValueError:
        # not a bcrypt hash at all
        return False


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {**data, "exp": datetime.utcnow() + lifetime, "type": ACCESS_TOKEN_TYPE}
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    """
    Verify signature, expiry and token type of a bearer token.

    Every failure raises the same InvalidTokenError, so clients cannot tell an
    expired token from a forged one.
    """
    try:
        claims = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise InvalidTokenError()

    if claims.get("type") != ACCESS_TOKEN_TYPE or not claims.get("sub"):
        raise InvalidTokenError()
    return claims


def generate_reset_token() -> str:
    """64 hex chars; only its hash is persisted"""
    return secrets.token_hex(32)


def reset_token_expiry() -> datetime:
    return datetime.utcnow() + timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES)
