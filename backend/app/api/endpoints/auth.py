from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from datetime import datetime
from urllib.parse import urlencode

from app.core.database import get_db
from app.core.config import settings
from app.core.exceptions import AuthenticationError, ConflictError, UserNotFoundError, ValidationError
from app.core.security import (
    verify_password,
    get_password_hash,
    create_access_token,
    generate_reset_token,
    reset_token_expiry,
)
from app.core.logging_config import logger, set_user_id
from app.core.rate_limiter import rate_limit, LOGIN_LIMIT, REGISTER_LIMIT, FORGOT_PASSWORD_LIMIT
from app.models.user import User
from app.schemas.auth import (
    UserRegister,
    UserLogin,
    ForgotPasswordRequest,
    ResetPasswordRequest,
    UserResponse,
    AuthResponse,
    UserDetailsResponse,
    ForgotPasswordResponse,
    MessageResponse,
)
from app.modules.auth.dependencies import get_current_user


router = APIRouter()

# (column, label) pairs checked in this order at registration
UNIQUE_FIELDS = (
    ("username", "Username"),
    ("email", "Email"),
    ("roll_number", "Roll number"),
    ("mobile_number", "Mobile number"),
)

INVALID_RESET_TOKEN = "Invalid or expired token."


def client_ip_of(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
@rate_limit(REGISTER_LIMIT)
async def register(
    request: Request,
    user_data: UserRegister,
    db: AsyncSession = Depends(get_db)
):
    """Register new user (rate limited: 3/min)"""
    client_ip = client_ip_of(request)

    for column, label in UNIQUE_FIELDS:
        value = getattr(user_data, column)
        result = await db.execute(
            select(User.id).where(getattr(User, column) == value)
        )
        if result.scalar_one_or_none():
            logger.log_auth_event(
                event="register",
                success=False,
                username=user_data.username,
                reason=f"{label} already registered",
                client_ip=client_ip
            )
            raise ConflictError(f"{label} already registered", field=column)

    user = User(
        username=user_data.username,
        email=user_data.email,
        hashed_password=get_password_hash(user_data.password),
        college=user_data.college,
        branch=user_data.branch,
        roll_number=user_data.roll_number,
        mobile_number=user_data.mobile_number,
    )

    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        # Lost a race with a concurrent registration
        await db.rollback()
        raise ConflictError("User already exists")
    await db.refresh(user)

    set_user_id(user.id)
    logger.log_auth_event(event="register", success=True, username=user.username, client_ip=client_ip)

    return AuthResponse(
        message="User registered successfully",
        token=create_access_token({"sub": user.id}),
        user=UserResponse.model_validate(user),
    )


@router.post("/login", response_model=AuthResponse)
@rate_limit(LOGIN_LIMIT)
async def login(
    request: Request,
    credentials: UserLogin,
    db: AsyncSession = Depends(get_db)
):
    """Login user (rate limited: 5/min)"""
    client_ip = client_ip_of(request)

    result = await db.execute(
        select(User).where(User.username == credentials.username)
    )
    user = result.scalar_one_or_none()

    if not user or not verify_password(credentials.password, user.hashed_password):
        logger.log_auth_event(
            event="login",
            success=False,
            username=credentials.username,
            reason="Invalid credentials",
            client_ip=client_ip
        )
        raise AuthenticationError("Invalid credentials")

    set_user_id(user.id)
    logger.log_auth_event(event="login", success=True, username=user.username, client_ip=client_ip)

    return AuthResponse(
        message="Login successful",
        token=create_access_token({"sub": user.id}),
        user=UserResponse.model_validate(user),
    )


@router.get("/user/details", response_model=UserDetailsResponse)
async def get_user_details(
    current_user: User = Depends(get_current_user)
):
    """Profile of the authenticated user"""
    return UserDetailsResponse(user=UserResponse.model_validate(current_user))


# ============================================
# Password Reset Endpoints
# ============================================

@router.post("/forgot-password", response_model=ForgotPasswordResponse)
@rate_limit(FORGOT_PASSWORD_LIMIT)
async def forgot_password(
    request: Request,
    payload: ForgotPasswordRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Request password reset.

    Demo flow: the token and reset link come back in the response instead
    of being emailed. Only a bcrypt hash of the token is stored.
    """
    result = await db.execute(
        select(User).where(User.username == payload.username)
    )
    user = result.scalar_one_or_none()

    if not user:
        logger.log_auth_event(
            event="forgot_password",
            success=False,
            username=payload.username,
            reason="Unknown user",
            client_ip=client_ip_of(request)
        )
        raise UserNotFoundError(payload.username)

    reset_token = generate_reset_token()
    user.reset_token_hash = get_password_hash(reset_token)
    user.reset_token_expires = reset_token_expiry()
    await db.commit()

    query = urlencode({"token": reset_token, "username": user.username})
    reset_link = f"{settings.FRONTEND_URL.rstrip('/')}/reset-password?{query}"

    logger.log_auth_event(event="forgot_password", success=True, username=user.username)

    return ForgotPasswordResponse(
        message="Password reset token generated",
        token=reset_token,
        resetLink=reset_link,
    )


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    payload: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db)
):
    """Reset password using the token from forgot-password"""
    result = await db.execute(
        select(User).where(User.username == payload.username)
    )
    user = result.scalar_one_or_none()

    token_ok = (
        user is not None
        and user.reset_token_hash is not None
        and user.reset_token_expires is not None
        and user.reset_token_expires > datetime.utcnow()
        and verify_password(payload.token, user.reset_token_hash)
    )
    if not token_ok:
        logger.log_auth_event(
            event="reset_password",
            success=False,
            username=payload.username,
            reason="Invalid or expired token"
        )
        raise ValidationError(INVALID_RESET_TOKEN, field="token")

    user.hashed_password = get_password_hash(payload.new_password)
    user.reset_token_hash = None
    user.reset_token_expires = None
    await db.commit()

    logger.log_auth_event(event="reset_password", success=True, username=user.username)

    return MessageResponse(message="Password has been reset successfully")
