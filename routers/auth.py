from fastapi import APIRouter, Depends, Response, status
from starlette.requests import Request

from context import AppContext
from dependencies import get_auth_service, get_context, get_current_user, limiter
from models import User
from schemas import LoginRequest, RegisterRequest
from services import AuthService

router = APIRouter(
    prefix="/auth",
    tags=["auth"]
)


def set_session_cookie(response: Response, context: AppContext, token: str) -> None:
    settings = context.settings
    response.set_cookie(
        settings.cookie_name,
        token,
        httponly=True,
        secure=settings.cookie_secure,
        max_age=settings.token_ttl_hours * 60 * 60,
        samesite="lax",
    )


@router.post("/register", status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def register(
    request: Request,
    payload: RegisterRequest,
    response: Response,
    service: AuthService = Depends(get_auth_service),
    context: AppContext = Depends(get_context),
):
    """
    Register a new user and log them in.

    The password is stored as a bcrypt hash and never echoed back; the
    session token only travels in the httpOnly cookie.

    Raises:
        400: invalid input, username or email already taken.
        429: more than 10 registrations per minute from one address.
    """
    result = service.register(payload)
    set_session_cookie(response, context, result.token)
    return {"message": "User created successfully", "user": result.user}


@router.post("/login")
@limiter.limit("10/minute")  # brute force protection
def login(
    request: Request,
    payload: LoginRequest,
    response: Response,
    service: AuthService = Depends(get_auth_service),
    context: AppContext = Depends(get_context),
):
    """
    Check credentials and set the session cookie (24h).

    Raises:
        401: wrong username or password (not told apart).
        429: more than 10 attempts per minute from one address.
    """
    result = service.login(payload)
    set_session_cookie(response, context, result.token)
    return {"message": "Login successful", "user": result.user}


@router.post("/logout")
def logout(response: Response, context: AppContext = Depends(get_context)):
    response.delete_cookie(context.settings.cookie_name)
    return {"message": "Logout successful"}


@router.get("/me")
def me(user: User = Depends(get_current_user), service: AuthService = Depends(get_auth_service)):
    return {"user": service.me(user)}
