from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from datetime import datetime, timedelta
import logging

from techconnect.core.config import settings
from techconnect.core.deps import get_current_user
from techconnect.db.session import get_db
from techconnect.db.models import User
from techconnect.utils.security import hash_password, verify_password, create_access_token
from techconnect.schemas.auth import UserCreate, UserLogin, Token
from techconnect.schemas.user import UserOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _token_for(user: User) -> dict:
    token = create_access_token({"sub": str(user.id), "role": user.role})
    return {
        "access_token": token,
        "token_type": "bearer",
        "user_id": str(user.id),
        "role": user.role
    }


@router.post("/register", response_model=Token, status_code=201)
def register(user_data: UserCreate, db: Session = Depends(get_db)):
    """Register a client or company account"""
    email = user_data.email.lower()
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=400, detail="Email already registered")
    try:
        password_hash = hash_password(user_data.password)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    new_user = User(
        email=email,
        password_hash=password_hash,
        name=user_data.name,
        role=user_data.role,
        phone=user_data.phone,
    )
    db.add(new_user)
    db.commit()
    db.refresh(new_user)
    logger.info(f"Registered {new_user.role} account {new_user.id}")

    return _token_for(new_user)


@router.post("/login", response_model=Token)
def login(user_data: UserLogin, db: Session = Depends(get_db)):
    """
    Login with email/password - returns access token.

    After MAX_FAILED_LOGINS consecutive failures the account is locked for
    LOGIN_LOCK_MINUTES.
    """
    user = db.query(User).filter(User.email == user_data.email.lower()).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials"
        )

    now = datetime.utcnow()
    if user.lock_until and user.lock_until > now:
        minutes = int((user.lock_until - now).total_seconds() // 60) + 1
        raise HTTPException(
            status_code=status.HTTP_423_LOCKED,
            detail=f"Account locked after too many failed attempts. Try again in {minutes} minute(s)."
        )

    try:
        ok = verify_password(user_data.password, user.password_hash)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    if not ok:
        user.failed_login_attempts = (user.failed_login_attempts or 0) + 1
        if user.failed_login_attempts >= settings.MAX_FAILED_LOGINS:
            user.lock_until = now + timedelta(minutes=settings.LOGIN_LOCK_MINUTES)
            user.failed_login_attempts = 0
            logger.warning(f"Account {user.id} locked after repeated failed logins")
        db.commit()
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials"
        )

    user.failed_login_attempts = 0
    user.lock_until = None
    user.last_login = now
    db.commit()
    return _token_for(user)


@router.get("/me", response_model=UserOut)
def me(current_user: User = Depends(get_current_user)):
    return current_user
