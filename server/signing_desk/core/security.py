from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt

ALGORITHM = "HS256"


def create_access_token(
    subject: str,
    secret_key: str,
    *,
    email: str,
    role: Optional[str] = None,
    expires_delta: timedelta = timedelta(hours=1),
) -> str:
    claims: Dict[str, Any] = {
        "sub": subject,
        "email": email,
        "exp": datetime.now(timezone.utc) + expires_delta,
    }
    if role:
        claims["role"] = role
    return jwt.encode(claims, secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str, secret_key: str) -> Dict[str, Any]:
    return jwt.decode(token, secret_key, algorithms=[ALGORITHM])
