from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from uuid import UUID

from techconnect.db.session import get_db
from techconnect.db.models import User
from techconnect.schemas.user import UserRoleUpdate, UserOut, UserUpdate, EmailPreferencesUpdate
from techconnect.core.deps import get_current_user, get_current_admin
from techconnect.utils.permissions import is_admin, ROLES
from techconnect.utils.pagination import PaginationParams, create_paginated_response, paginate_query

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=UserOut)
def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Get current user information"""
    return current_user


@router.put("/me", response_model=UserOut)
def update_profile(
    data: UserUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(current_user, key, value)
    db.commit()
    db.refresh(current_user)
    return current_user


@router.get("/me/email-preferences")
def get_email_preferences(current_user: User = Depends(get_current_user)):
    return {"email_notifications": bool(current_user.email_notifications)}


@router.put("/me/email-preferences")
def update_email_preferences(
    preferences: EmailPreferencesUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Enable or disable notification emails"""
    current_user.email_notifications = preferences.email_notifications
    db.commit()
    return {"email_notifications": current_user.email_notifications}


@router.put("/{user_id}/role")
def update_user_role(
    user_id: UUID,
    role_update: UserRoleUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin)
):
    """Change a user's role. Admin only."""
    if role_update.role not in ROLES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid role. Must be one of: {', '.join(ROLES)}"
        )

    target_user = db.query(User).filter(User.id == user_id).first()
    if not target_user:
        raise HTTPException(status_code=404, detail="User not found")

    old_role = target_user.role
    target_user.role = role_update.role
    db.commit()

    return {
        "message": f"User role updated from {old_role} to {role_update.role}",
        "user_id": str(user_id),
        "old_role": old_role,
        "new_role": role_update.role
    }


@router.get("/")
def list_users(
    pagination: PaginationParams = Depends(),
    role: str = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin)
):
    """List users. Admin only."""
    query = db.query(User)
    if role:
        query = query.filter(User.role == role)
    query = query.order_by(User.created_at.desc())
    items, total = paginate_query(query, pagination.skip, pagination.limit)
    items = [UserOut.model_validate(u) for u in items]
    return create_paginated_response(items, total, pagination.page, pagination.limit)


@router.get("/{user_id}", response_model=UserOut)
def get_user(
    user_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Users can see themselves; admins can see everyone"""
    if current_user.id != user_id and not is_admin(current_user):
        raise HTTPException(status_code=403, detail="Not authorized to view this user")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user
