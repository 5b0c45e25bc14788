"""
Request authorization.

``get_current_user`` is the dependency every protected route declares. It
reads the bearer token, verifies it, loads the user it names and puts the
public user record on ``request.state.user``.
"""
import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer

from backend.accounts import AccountService, serialize_user
from backend.errors import ExpiredTokenError, InvalidTokenError, UnauthorizedError
from backend.security import TokenService
from backend.tasks import TaskRepository

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def get_token_service(request: Request) -> TokenService:
    return request.app.state.tokens


def get_account_service(request: Request) -> AccountService:
    return request.app.state.accounts


def get_task_repository(request: Request) -> TaskRepository:
    return request.app.state.tasks


def get_current_user(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    tokens: TokenService = Depends(get_token_service),
    accounts: AccountService = Depends(get_account_service),
) -> dict:
    if not token:
        raise UnauthorizedError("Not authorized, no token provided")

    try:
        user_id = tokens.verify(token)
    except ExpiredTokenError as e:
        logger.info("Rejected expired token")
        raise UnauthorizedError("Token has expired, please login again") from e
    except InvalidTokenError as e:
        logger.info("Rejected invalid token: %s", e)
        raise UnauthorizedError("Not authorized, token failed verification") from e

    user = accounts.find_by_id(user_id)
    if not user:
        raise UnauthorizedError("User belonging to this token no longer exists")

    current = serialize_user(user)
    request.state.user = current
    return current
