# auth_utils.py
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from psycopg import AsyncConnection

from vidtube import crud
from vidtube.config import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    ACCESS_TOKEN_SECRET,
    ALGORITHM,
    REFRESH_TOKEN_EXPIRE_DAYS,
    REFRESH_TOKEN_SECRET,
)
from vidtube.database import get_db_connection

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
# auto_error is off so the cookie can be used when no header is sent
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="users/login", auto_error=False)

ACCESS_TOKEN_COOKIE = "accessToken"
REFRESH_TOKEN_COOKIE = "refreshToken"
COOKIE_OPTIONS = {"httponly": True, "secure": True}

def verify_password(plain_password, hashed_password):
    """Verify a plain password against a hashed password"""
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password):
    """Hash a password"""
    return pwd_context.hash(password)

def _encode(data: dict, secret: str, expires_delta: timedelta) -> str:
    to_encode = data.copy()
    to_encode.update({"exp": datetime.now(timezone.utc) + expires_delta})
    return jwt.encode(to_encode, secret, algorithm=ALGORITHM)

def create_access_token(user: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token carrying the user's identity claims"""
    claims = {
        "sub": str(user["id"]),
        "username": user["username"],
        "email": user["email"],
        "full_name": user["full_name"],
    }
    return _encode(claims, ACCESS_TOKEN_SECRET, expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))

def create_refresh_token(user_id: int, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT refresh token; it only identifies the user"""
    return _encode({"sub": str(user_id)}, REFRESH_TOKEN_SECRET, expires_delta or timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS))

def decode_user_id(token: str, secret: str) -> Optional[int]:
    """Return the user id a token was signed for, or None if it does not verify"""
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError:
        return None
    subject = payload.get("sub")
    if subject is None or not str(subject).isdigit():
        return None
    return int(subject)

async def issue_tokens(conn: AsyncConnection, user: Dict[str, Any]) -> Dict[str, str]:
    """Create a fresh access/refresh pair and persist the refresh token"""
    access_token = create_access_token(user)
    refresh_token = create_refresh_token(user["id"])
    await crud.set_refresh_token(conn, user["id"], refresh_token)
    return {"access_token": access_token, "refresh_token": refresh_token}

def _request_token(request: Request, bearer: Optional[str]) -> Optional[str]:
    return request.cookies.get(ACCESS_TOKEN_COOKIE) or bearer

async def get_current_user(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    conn: AsyncConnection = Depends(get_db_connection)
) -> dict:
    """Get current user from the access token cookie or Authorization header"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    raw_token = _request_token(request, token)
    if not raw_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized request",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = decode_user_id(raw_token, ACCESS_TOKEN_SECRET)
    if user_id is None:
        raise credentials_exception

    user = await crud.get_user(conn, user_id)
    if user is None:
        raise credentials_exception

    return user

async def get_optional_user(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    conn: AsyncConnection = Depends(get_db_connection)
) -> Optional[dict]:
    """Like get_current_user, but an absent or invalid token means an anonymous caller"""
    raw_token = _request_token(request, token)
    if not raw_token:
        return None
    user_id = decode_user_id(raw_token, ACCESS_TOKEN_SECRET)
    if user_id is None:
        return None
    return await crud.get_user(conn, user_id)
