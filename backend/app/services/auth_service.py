"""JWT handling. Tokens are issued by the account service; here they are verified."""
from datetime import timedelta
from typing import Optional

import jwt

from app.config import settings
from app.core.clock import utcnow


def create_access_token(
    subject: str,
    role: str,
    name: str = "",
) -> str:
    """Mint a token the way the account service does (tooling and tests)."""
    now = utcnow()
    expire = now + timedelta(minutes=settings.jwt_expire_minutes)
    payload = {
        "sub": subject,
        "role": role,
        "name": name,
        "exp": expire,
        "iat": now,
    }
    return jwt.encode(
        payload,
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )


def decode_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.PyJWTError:
        return None
