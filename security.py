import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

from database import get_db, serialize, to_object_id
from errors import ValidationError
from visibility import Viewer

SECRET_KEY = os.getenv("JWT_SECRET", "dev-secret-key-change")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", 60 * 12))

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def token_for_user(user: Dict[str, Any]) -> str:
    return create_access_token({"sub": str(user["_id"]), "role": user.get("role", "user")})


def _user_from_token(token: str, db: Database) -> Optional[Dict[str, Any]]:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id = payload.get("sub")
        if user_id is None:
            return None
        return db["user"].find_one({"_id": to_object_id(user_id)})
    except (JWTError, ValidationError):
        return None


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    out = serialize(user)
    out.pop("password_hash", None)
    return out


async def get_current_user(token: str = Depends(oauth2_scheme), db: Database = Depends(get_db)):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired token. Please log in again.",
        headers={"WWW-Authenticate": "Bearer"},
    )
    user = _user_from_token(token, db)
    if not user:
        raise credentials_exception
    if user.get("is_active") is False:
        raise HTTPException(status_code=403, detail="Account is disabled. Contact support.")
    return public_user(user)


async def get_current_viewer(current_user=Depends(get_current_user)) -> Viewer:
    return Viewer.from_user(current_user)


async def get_optional_viewer(token: Optional[str] = Depends(optional_oauth2_scheme),
                              db: Database = Depends(get_db)) -> Viewer:
    """Viewer for public endpoints: a missing or bad token means a guest."""
    if not token:
        return Viewer.guest()
    user = _user_from_token(token, db)
    if not user or user.get("is_active") is False:
        return Viewer.guest()
    return Viewer.from_user(user)


async def require_admin(current_user=Depends(get_current_user)):
    if current_user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin access required for this action.")
    return current_user
