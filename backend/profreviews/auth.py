import logging
import bcrypt
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt, ExpiredSignatureError
from fastapi import Depends, HTTPException, Request
from sqlmodel import Session
from .database import get_session
from .models import User, Role, Status
from .config import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_DAYS, ADMIN_EMAILS, ALLOWED_EMAIL_DOMAIN

logger = logging.getLogger(__name__)

def verify_password(plain_password, hashed_password):
    try:
        return bcrypt.checkpw(plain_password.encode('utf-8'), hashed_password.encode('utf-8'))
    except ValueError:
        return False

def get_password_hash(password):
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(days=ACCESS_TOKEN_DAYS))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

def decode_token(token: str):
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except ExpiredSignatureError:
        logger.info("Token has expired")
        return None
    except JWTError as e:
        logger.info("JWT error: %s", e)
        return None

def is_university_email(email: str) -> bool:
    return bool(email) and email.strip().lower().endswith("@" + ALLOWED_EMAIL_DOMAIN)

def is_admin(user: Optional[User]) -> bool:
    if not user:
        return False
    return user.role == Role.ADMIN or user.email.lower() in ADMIN_EMAILS

def _token_from_request(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return request.cookies.get("access_token")

def _user_from_token(token: str, session: Session) -> User:
    payload = decode_token(token)
    if not payload:
        raise HTTPException(status_code=401, detail="Session expired or invalid token")

    try:
        user_id = int(payload.get("sub"))
    except (ValueError, TypeError):
        raise HTTPException(status_code=401, detail="Invalid token payload")

    user = session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if user.status == Status.SUSPENDED:
        raise HTTPException(status_code=403, detail="Account suspended.")
    return user

def get_current_user(request: Request, session: Session = Depends(get_session)):
    token = _token_from_request(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return _user_from_token(token, session)

def get_optional_user(request: Request, session: Session = Depends(get_session)) -> Optional[User]:
    """Like get_current_user, but anonymous requests get None instead of a 401."""
    token = _token_from_request(request)
    if not token:
        return None
    return _user_from_token(token, session)

def get_device_id(request: Request) -> str:
    """Anonymous visitors are tracked by the X-Device-Id header, falling back to the client IP."""
    device_id = request.headers.get("x-device-id", "").strip()
    if device_id:
        return device_id[:128]
    host = request.client.host if request.client else "unknown"
    return f"ip:{host}"

def require_admin(current_user: User = Depends(get_current_user)):
    if not is_admin(current_user):
        raise HTTPException(status_code=403, detail="Not enough permissions")
    return current_user
