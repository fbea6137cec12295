"""FastAPI dependencies resolving the bearer token to a caller."""

from __future__ import annotations

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from . import config, tokens, users
from .errors import AuthError, Forbidden
from .models import TokenClaims, User

_bearer_scheme = HTTPBearer(auto_error=False)


def current_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> TokenClaims:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthError("Token required")
    return tokens.verify_token(credentials.credentials, config.get_signing_secret())


def current_user(claims: TokenClaims = Depends(current_claims)) -> User:
    return users.find_by_phone(claims.phone)


def require_admin(user: User = Depends(current_user)) -> User:
    if user.role != "admin":
        raise Forbidden("Administrator role required")
    return user
