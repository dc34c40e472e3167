import bcrypt
from datetime import datetime, timedelta
from typing import Optional
from jose import JWTError, jwt
from techconnect.core.config import settings

# Bcrypt has a 72-byte input limit
MAX_BCRYPT_BYTES = 72


def hash_password(password: str) -> str:
    if password is None:
        raise ValueError("password must be provided")

    pw_bytes = password.encode("utf-8")
    if len(pw_bytes) > MAX_BCRYPT_BYTES:
        raise ValueError(f"password must be at most {MAX_BCRYPT_BYTES} bytes")

    password_hash = bcrypt.hashpw(pw_bytes, bcrypt.gensalt())
    return password_hash.decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not plain_password or not hashed_password:
        return False
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> Optional[dict]:
    """Return the token payload, or None when the token is invalid or expired."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
