from datetime import datetime, timedelta, timezone
from jose import jwt, JWTError
from typing import Optional, Dict, Any
from merchant_pipeline.core.config import settings


# Creates a signed access token for an actor email (used by tooling and tests)
def create_access_token(data: dict, expires_delta: Optional[timedelta] = None, secret: Optional[str] = None) -> str:
    try:
        to_encode = data.copy()
        expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES))
        to_encode.update({"exp": expire})
        return jwt.encode(to_encode, secret or settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    except Exception as e:
        raise ValueError("Failed to create access token") from e


# Decodes and validates a JWT token returning its payload
def decode_token(token: str, secret: Optional[str] = None) -> Optional[Dict[str, Any]]:
    try:
        return jwt.decode(token, secret or settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None


# Admin access is granted by the actor's email domain
def is_admin_email(email: str, admin_domain: Optional[str] = None) -> bool:
    domain = (admin_domain or settings.ADMIN_EMAIL_DOMAIN or "").lower().lstrip("@")
    if not email or not domain:
        return False
    return email.lower().endswith(f"@{domain}")
