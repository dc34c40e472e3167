from pydantic import BaseModel, EmailStr, validator
from typing import Optional

# bcrypt limit in bytes
MAX_BCRYPT_BYTES = 72


def _check_password(v: str) -> str:
    if v is None:
        raise ValueError("password must be provided")
    if len(v) < 6:
        raise ValueError("Password must be at least 6 characters")
    if len(v.encode("utf-8")) > MAX_BCRYPT_BYTES:
        raise ValueError(f"Password must be at most {MAX_BCRYPT_BYTES} bytes")
    return v


class UserCreate(BaseModel):
    email: EmailStr
    password: str
    name: str
    role: str = "client"  # client, company
    phone: Optional[str] = None

    @validator("password")
    def password_length(cls, v: str):
        return _check_password(v)

    @validator("name")
    def name_not_blank(cls, v: str):
        if not v or not v.strip():
            raise ValueError("Name is required")
        return v.strip()

    @validator("role")
    def role_allowed(cls, v: str):
        # Admin accounts are provisioned out of band
        if v not in ("client", "company"):
            raise ValueError("role must be 'client' or 'company'")
        return v


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str
    user_id: str
    role: str
