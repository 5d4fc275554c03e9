from datetime import timedelta
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response
from pydantic import BaseModel, EmailStr, Field
from sqlmodel import Session, select
from ..access_context import AccessContext, get_access
from ..audit import log_action
from ..auth import (
    verify_password, get_password_hash, create_access_token, is_university_email,
    is_admin, get_current_user, get_optional_user, get_device_id,
)
from ..config import ACCESS_TOKEN_DAYS, ALLOWED_EMAIL_DOMAIN
from ..database import get_session
from ..models import User, Role, Status, utcnow

router = APIRouter(prefix="/auth", tags=["auth"])

MAX_FAILED_ATTEMPTS = 4
LOCKOUT_MINUTES = 10

class LoginRequest(BaseModel):
    email: EmailStr
    password: str

class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)

def _user_data(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "role": user.role,
        "is_admin": is_admin(user),
        "has_unlimited_access": user.has_unlimited_access is True,
    }

@router.post("/register")
async def register(
    request: Request,
    data: RegisterRequest,
    session: Session = Depends(get_session)
):
    email = data.email.lower()
    if not is_university_email(email):
        raise HTTPException(status_code=400, detail=f"Only @{ALLOWED_EMAIL_DOMAIN} accounts may register.")

    existing = session.exec(select(User).where(User.email == email)).first()
    if existing:
        raise HTTPException(status_code=400, detail="An account with this email already exists.")

    user = User(email=email, password_hash=get_password_hash(data.password), role=Role.STUDENT)
    session.add(user)
    session.commit()
    session.refresh(user)

    log_action(session, action="REGISTER", actor=user, request=request,
               detail=f"Registered {email}")

    return {"success": True, "message": "Registration successful", "data": {"user": _user_data(user)}}

@router.post("/login")
async def login(
    request: Request,
    response: Response,
    login_data: LoginRequest,
    session: Session = Depends(get_session),
    access: AccessContext = Depends(get_access),
):
    email = login_data.email.lower()
    account = session.exec(select(User).where(User.email == email)).first()

    if not account:
        log_action(session, action="LOGIN_FAILED", actor_email=email,
                   detail="Invalid email", request=request)
        raise HTTPException(status_code=401, detail="Invalid email or password.")

    now = utcnow()
    if account.lockout_until and account.lockout_until > now:
        retry_in = int((account.lockout_until - now).total_seconds() / 60) + 1
        raise HTTPException(status_code=403, detail=f"Account locked due to multiple failed attempts. Please retry in {retry_in} minutes.")

    if not verify_password(login_data.password, account.password_hash):
        account.failed_attempts += 1
        msg = f"Invalid email or password. Attempt {account.failed_attempts}/{MAX_FAILED_ATTEMPTS}"

        if account.failed_attempts >= MAX_FAILED_ATTEMPTS:
            account.lockout_until = now + timedelta(minutes=LOCKOUT_MINUTES)
            account.failed_attempts = 0 # Reset for next cycle after lockout
            msg = f"Too many failed attempts. Account locked for {LOCKOUT_MINUTES} minutes."

        session.add(account)
        session.commit()

        log_action(session, action="LOGIN_FAILED", actor=account, detail=msg, request=request)
        raise HTTPException(status_code=401, detail=msg)

    if account.status == Status.SUSPENDED:
        raise HTTPException(status_code=403, detail="Account suspended.")

    # Success
    account.failed_attempts = 0
    account.lockout_until = None
    session.add(account)
    session.commit()

    access_token = create_access_token(data={"sub": str(account.id), "email": account.email, "role": account.role.value})

    max_age = ACCESS_TOKEN_DAYS * 24 * 60 * 60
    response.set_cookie(
        key="access_token",
        value=access_token,
        httponly=True,
        max_age=max_age,
        expires=max_age,
        samesite="lax",
        path="/"
    )

    access.on_signed_in(account.id, get_device_id(request))

    log_action(session, action="LOGIN", actor=account,
               detail=f"Successful login as {account.role.value}", request=request)

    return {
        "success": True,
        "message": "Login successful",
        "data": {
            "access_token": access_token,
            "token_type": "bearer",
            "user": _user_data(account),
        }
    }

@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    current_user: Optional[User] = Depends(get_optional_user),
    session: Session = Depends(get_session),
    access: AccessContext = Depends(get_access),
):
    if current_user:
        access.on_signed_out(current_user.id, get_device_id(request))
    log_action(session, action="LOGOUT", actor=current_user, detail="User logged out", request=request)
    response.delete_cookie(key="access_token", path="/")
    return {"success": True, "message": "Logged out successfully"}

@router.get("/me")
async def me(current_user: User = Depends(get_current_user)):
    return {"success": True, "data": _user_data(current_user)}
