from typing import Iterator, Optional

from fastapi import Depends, Header, Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session

import errors
from auth_utils import TokenService
from context import AppContext
from credentials import CredentialStore
from models import User
from services import AuthService, TaskService


# --- Authorization Gate ---
def resolve_user(db: Session, tokens: TokenService, token: Optional[str]) -> User:
    """
    Map a session token to the acting user.

    Looks the user up on every call (no caching), so a removed user loses
    access on the next request.

    Raises:
        errors.Unauthenticated: token missing, invalid, expired, or user gone.
    """
    claims = tokens.verify(token)
    if claims is None:
        raise errors.Unauthenticated()
    user = CredentialStore(db).get_user_by_id(claims.user_id)
    if user is None:
        raise errors.Unauthenticated()
    return user


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    # header like: Bearer <token>
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


# --- FastAPI Dependencies ---
def get_context(request: Request) -> AppContext:
    return request.app.state.context


def get_db(context: AppContext = Depends(get_context)) -> Iterator[Session]:
    with context.session() as db:
        yield db


def get_current_user(
    request: Request,
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    context: AppContext = Depends(get_context),
) -> User:
    # Browser clients send the cookie; socket clients uploading files send the header.
    token = request.cookies.get(context.settings.cookie_name) or bearer_token(authorization)
    return resolve_user(db, context.tokens, token)


def get_auth_service(db: Session = Depends(get_db), context: AppContext = Depends(get_context)) -> AuthService:
    return context.auth_service(db)


def get_task_service(db: Session = Depends(get_db), context: AppContext = Depends(get_context)) -> TaskService:
    return context.task_service(db)


# --- Rate Limiter ---
limiter = Limiter(key_func=get_remote_address)
