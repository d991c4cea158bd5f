from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
from datetime import datetime, timedelta, timezone
import logging
from app.core.config import settings
from app.core.exceptions import AuthenticationError
from app.core.limiter import limiter
from app.database import get_db
from app.models.user import User, UserSession
from app.services import auth as auth_service
from app.services.audit import AuditService
from app.services.notification import NotificationService
from app.services.leave_balance import initialize_employee_balances
from app.schemas.auth import (
    LoginRequest, Token, UserResponse, UserCreate, ProfileUpdate,
    PasswordChange, PasswordReset, RefreshRequest,
)
from app.routers.auth_deps import get_current_user, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/auth",
    tags=["auth"]
)


def _user_summary(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "role": user.role.value,
        "full_name": user.full_name,
        "employee_code": user.employee_code,
        "department": user.department,
    }


def _issue_tokens(db: Session, user: User, request: Request) -> dict:
    access_token = auth_service.create_access_token(data=auth_service.build_token_claims(user))
    refresh_token = auth_service.create_refresh_token(data={"sub": user.email})

    expires_at = datetime.now(timezone.utc) + timedelta(days=auth_service.REFRESH_TOKEN_EXPIRE_DAYS)
    db.add(UserSession(
        user_id=user.id,
        refresh_token=refresh_token,
        expires_at=expires_at,
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    ))
    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_type": "bearer",
        "user": _user_summary(user),
    }


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def register(
    user_data: UserCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin())
):
    """Create an employee account and open its leave balances."""
    if db.query(User).filter(User.email == user_data.email).first():
        raise HTTPException(status_code=400, detail="Email already registered")
    if db.query(User).filter(User.employee_code == user_data.employee_code).first():
        raise HTTPException(status_code=400, detail="Employee code already in use")
    if user_data.manager_id is not None and not db.query(User).filter(User.id == user_data.manager_id).first():
        raise HTTPException(status_code=400, detail="Manager not found")

    user = User(
        **user_data.model_dump(exclude={"password"}),
        hashed_password=auth_service.get_password_hash(user_data.password),
    )
    db.add(user)
    db.flush()
    AuditService(db).log_data_modification(
        current_user, "user", user.id, "user_registered",
        before_state=None,
        after_state={"email": user.email, "role": user.role, "department": user.department},
        request=request,
    )
    db.commit()
    db.refresh(user)

    try:
        initialize_employee_balances(db, user.id)
    except Exception as e:
        # The account stays usable; balances are created lazily on first request
        db.rollback()
        logger.error(f"Balance initialization failed for new user {user.id}: {e}", exc_info=True)

    logger.info(f"User {user.email} registered by admin {current_user.id}")
    return user


@router.post("/login", response_model=Token)
@limiter.limit(settings.login_rate_limit)
def login(request: Request, login_data: LoginRequest, db: Session = Depends(get_db)):
    # JSON body rather than form-data for frontend compatibility
    audit = AuditService(db)
    user = db.query(User).filter(User.email == login_data.email).first()
    if not user or not auth_service.verify_password(login_data.password, user.hashed_password):
        audit.log_authentication(
            "failed_login", email=login_data.email, is_successful=False,
            error_message="invalid_credentials", request=request,
        )
        db.commit()
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(status_code=403, detail="User is inactive")

    user.last_login = datetime.now(timezone.utc)
    tokens = _issue_tokens(db, user, request)
    audit.log_authentication("login", user=user, request=request)
    db.commit()

    logger.info(f"User {user.id} logged in")
    return tokens


@router.post("/refresh", response_model=Token)
def refresh_token(data: RefreshRequest, request: Request, db: Session = Depends(get_db)):
    payload = auth_service.decode_access_token(data.refresh_token)
    if payload is None or payload.get("type") != "refresh":
        raise AuthenticationError("Invalid refresh token")

    db_session = db.query(UserSession).filter(
        UserSession.refresh_token == data.refresh_token,
        UserSession.is_revoked.is_(False),
    ).first()
    if not db_session:
        raise AuthenticationError("Session expired or revoked")

    user = db_session.user
    if not user or not user.is_active:
        raise AuthenticationError("User inactive or not found")

    # Rotation: revoke old, create new
    db_session.is_revoked = True
    tokens = _issue_tokens(db, user, request)
    db.commit()
    return tokens


@router.post("/logout")
def logout(
    data: RefreshRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    db_session = db.query(UserSession).filter(
        UserSession.refresh_token == data.refresh_token,
        UserSession.user_id == current_user.id,
    ).first()
    if db_session:
        db_session.is_revoked = True
    AuditService(db).log_authentication("logout", user=current_user, request=request)
    db.commit()
    return {"success": True, "message": "Successfully logged out"}


@router.get("/me", response_model=UserResponse)
def get_me(current_user: User = Depends(get_current_user)):
    return current_user


@router.get("/profile", response_model=UserResponse)
def get_profile(current_user: User = Depends(get_current_user)):
    return current_user


@router.put("/profile", response_model=UserResponse)
def update_profile(
    update_data: ProfileUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Update current user's profile information."""
    changes = update_data.model_dump(exclude_unset=True, exclude_none=True)
    before = {field: getattr(current_user, field) for field in changes}
    for field, value in changes.items():
        setattr(current_user, field, value)

    AuditService(db).log_data_modification(
        current_user, "user", current_user.id, "update_profile", before, changes, request=request
    )
    db.commit()
    db.refresh(current_user)
    return current_user


@router.put("/change-password")
def change_password(
    data: PasswordChange,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Securely update current user's password."""
    if not auth_service.verify_password(data.current_password, current_user.hashed_password):
        raise HTTPException(status_code=400, detail="Incorrect current password")

    current_user.hashed_password = auth_service.get_password_hash(data.new_password)
    AuditService(db).log_authentication("change_password", user=current_user, request=request)
    db.commit()

    return {"success": True, "message": "Password updated successfully"}


@router.put("/reset-user-password/{user_id}")
def reset_user_password(
    user_id: int,
    data: PasswordReset,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin())
):
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    user.hashed_password = auth_service.get_password_hash(data.new_password)
    # Existing refresh tokens stop working
    db.query(UserSession).filter(UserSession.user_id == user.id).update(
        {UserSession.is_revoked: True}, synchronize_session=False
    )
    AuditService(db).log_data_modification(
        current_user, "user", user.id, "reset_user_password", None, {"password": "changed"}, request=request
    )
    NotificationService.notify_user(
        db, user.id, "Password Reset", "Your password was reset by an administrator", "warning"
    )
    db.commit()
    return {"success": True, "message": f"Password reset for {user.email}"}
