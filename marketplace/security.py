"""
API Security Module
====================
Password hashing and the FastAPI dependencies that resolve who is calling.

get_current_user: reads the session cookie and loads the user.
                  Raises AuthError (HTTP 401) when there is no live session.
require_role:     dependency factory; raises ForbiddenError (HTTP 403)
                  when the current user lacks the role.
"""

from fastapi import Depends, Request
from passlib.context import CryptContext

from marketplace.config import SESSION_COOKIE_NAME
from marketplace.errors import AuthError, ForbiddenError
from marketplace.schemas import User

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def get_optional_user(request: Request) -> User | None:
    """Current user if the session cookie is valid, else None."""
    token = request.cookies.get(SESSION_COOKIE_NAME)
    user_id = request.app.state.sessions.get_user_id(token)
    if user_id is None:
        return None
    return request.app.state.store.get_user(user_id)


def get_current_user(user: User | None = Depends(get_optional_user)) -> User:
    """
    Resolve the authenticated user from the session cookie.

    Raises:
        AuthError: no cookie, unknown or expired session, or deleted user
    """
    if user is None:
        raise AuthError("Authentication required")
    return user


def require_role(*roles: str):
    def role_dep(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise ForbiddenError("Insufficient permissions")
        return user
    return role_dep
