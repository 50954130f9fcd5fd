from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from purchasing.core.security import decode_access_token
from purchasing.models.user import Actor, UserRole

# 1. SETUP OAUTH2
# Tokens are issued by the auth service; this API only verifies them.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


# 2. GET CURRENT ACTOR (Base Dependency)
async def get_current_actor(token: str = Depends(oauth2_scheme)) -> Actor:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_access_token(token)
    except JWTError:
        raise credentials_exception

    if payload.get("type", "access") != "access":
        raise credentials_exception

    subject = payload.get("sub")
    if subject is None:
        raise credentials_exception
    try:
        user_id = UUID(str(subject))
    except ValueError:
        raise credentials_exception

    role = UserRole.ADMIN if payload.get("is_admin") is True else UserRole.STAFF
    return Actor(user_id=user_id, role=role)


# 3. GET ADMIN ACTOR (Used by Admin Routes)
async def get_admin_actor(actor: Actor = Depends(get_current_actor)) -> Actor:
    """
    Blocks anyone who is not an Admin.
    """
    if not actor.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access Denied: Only administrators can perform this action.",
        )
    return actor
