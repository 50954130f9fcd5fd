from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID
from jose import jwt
from purchasing.core.config import settings


# 1. ACCESS TOKEN CREATOR
# Login lives outside this service; this is used by seed.py and the tests
# to mint tokens the order API accepts.
def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire})

    if "type" not in to_encode:
        to_encode["type"] = "access"

    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return encoded_jwt


def create_user_token(user_id: UUID, is_admin: bool = False, expires_delta: Optional[timedelta] = None) -> str:
    return create_access_token({"sub": str(user_id), "is_admin": is_admin}, expires_delta)


# 2. TOKEN DECODER
# Raises jose.JWTError on a bad signature or an expired token.
def decode_access_token(token: str) -> dict:
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
