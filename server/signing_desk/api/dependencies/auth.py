from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from signing_desk.core.config import get_settings
from signing_desk.core.security import decode_access_token
from signing_desk.domain.envelope import Actor

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Actor:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception

    settings = get_settings()
    try:
        # jose rejects expired tokens itself.
        payload = decode_access_token(credentials.credentials, settings.secret_key)
    except JWTError as exc:
        raise credentials_exception from exc

    subject: str | None = payload.get("sub")
    email: str | None = payload.get("email")
    if subject is None or email is None:
        raise credentials_exception
    return Actor(id=subject, email=email, role=payload.get("role"), name=payload.get("name"))
