"""Authentication helpers and FastAPI security dependencies.

`get_current_user` validates the bearer token and returns the matching
`User` row; `get_admin_user` additionally requires the `admin` role.
Token verification raises HTTPExceptions on failure so both can be used
directly inside route dependencies.
"""

from typing import Optional

from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from sqlmodel import Session
from .config import settings
from .database import get_session
from . import models, repositories

bearer_scheme = HTTPBearer()


def decode_token(token: str) -> dict:
    """Decode and verify a JWT token.

    Returns the decoded payload on success or raises an HTTPException
    with status 401 on failure.
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail='token expired')
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail='invalid token')


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Security(bearer_scheme),
    db: Session = Depends(get_session),
) -> models.User:
    payload = decode_token(credentials.credentials)
    sid = payload.get('sid')
    if not sid:
        raise HTTPException(status_code=401, detail='invalid token payload')
    user = repositories.UserRepository(db).get_by_sid(sid)
    if not user:
        raise HTTPException(status_code=401, detail='user not found')
    return user


def get_admin_user(user: models.User = Depends(get_current_user)) -> models.User:
    if user.role != 'admin':
        raise HTTPException(status_code=403, detail='admin access required')
    return user


optional_bearer = HTTPBearer(auto_error=False)


def get_token_sid(credentials: Optional[HTTPAuthorizationCredentials] = Security(optional_bearer)) -> Optional[str]:
    """Student id from a valid bearer token, or None for anonymous callers.

    Used where signing in is optional; a bad token is treated as no token.
    """
    if credentials is None:
        return None
    try:
        payload = jwt.decode(credentials.credentials, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.PyJWTError:
        return None
    return payload.get('sid')
