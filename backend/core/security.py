# backend/core/security.py
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
import jwt

from config.settings import get_settings
from config.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()

ALGORITHM = settings.JWT_ALGORITHM
SECRET_KEY = settings.JWT_SECRET_KEY
ACCESS_TOKEN_EXPIRE_SECONDS = settings.JWT_ACCESS_TOKEN_EXPIRES


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token."""
    to_encode = data.copy()
    if "sub" in to_encode:
        to_encode["sub"] = str(to_encode["sub"])
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(seconds=ACCESS_TOKEN_EXPIRE_SECONDS))
    to_encode.update({"exp": expire, "iat": datetime.now(timezone.utc), "type": "access"})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode and verify an access token. Raises jwt.PyJWTError on failure."""
    payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    if payload.get("type", "access") != "access":
        raise jwt.InvalidTokenError("Not an access token")
    return payload


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """Verify JWT token and return payload, or None when invalid."""
    try:
        return decode_access_token(token)
    except jwt.ExpiredSignatureError:
        logger.warning("Token has expired")
        return None
    except jwt.PyJWTError as e:
        logger.warning(f"Invalid token: {e}")
        return None
