import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from bson.objectid import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException, Depends, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr

from database import db

# Auth configuration
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 30))  # 30 days
VERIFICATION_TOKEN_EXPIRE_MINUTES = 5
PASSWORD_RESET_PURPOSE = "password_reset"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def verify_password(plain_password: str, password_hash: str) -> bool:
    return pwd_context.verify(plain_password, password_hash)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def create_verification_token(user: dict) -> str:
    """Short-lived token proving the holder just confirmed an OTP."""
    return create_access_token(
        {"sub": str(user["_id"]), "is_admin": user.get("is_admin", False), "purpose": PASSWORD_RESET_PURPOSE},
        timedelta(minutes=VERIFICATION_TOKEN_EXPIRE_MINUTES),
    )


def decode_token(token: str) -> dict:
    """Raises JWTError on a bad signature or an expired token."""
    return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])


def to_object_id(value: str, resource: str = "Resource") -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=404, detail=f"{resource} not found")


def find_one(collection: str, filter_dict: dict):
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db[collection].find_one(filter_dict)


# Dependencies
class CurrentUser(BaseModel):
    id: str
    email: EmailStr
    name: str
    is_admin: bool = False
    subscription: str = "Free"


def get_current_user(token: str = Depends(oauth2_scheme)) -> CurrentUser:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_token(token)
        user_id: str = payload.get("sub")
        if user_id is None or payload.get("purpose"):
            raise credentials_exception
        oid = ObjectId(user_id)
    except (JWTError, InvalidId):
        raise credentials_exception

    user = find_one("user", {"_id": oid})
    if not user:
        raise credentials_exception

    return CurrentUser(
        id=str(user["_id"]),
        email=user["email"],
        name=user["name"],
        is_admin=user.get("is_admin", False),
        subscription=user.get("subscription", "Free"),
    )


def get_current_admin(current: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not current.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current


def get_optional_user(token: Optional[str] = Depends(optional_oauth2_scheme)) -> Optional[CurrentUser]:
    if not token:
        return None
    return get_current_user(token)
