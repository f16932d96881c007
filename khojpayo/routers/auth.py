import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field
from sqlmodel import Session, select
from google.oauth2 import id_token
from google.auth.transport import requests as grequests

from khojpayo import config
from khojpayo.db.db import get_session
from khojpayo.models.user import Profile
from khojpayo.utils.auth_helper import (
    SESSION_COOKIE,
    caller_id,
    create_access_token,
    get_current_user_required,
    get_optional_db_user,
    hash_password,
    verify_password,
)
from khojpayo.utils.form_validator import require_email

logger = logging.getLogger(__name__)

router = APIRouter()


def profile_role(role: Optional[str]) -> str:
    # only organization accounts are distinguished at signup
    return "organization" if role == "organization" else "individual"


def set_session_cookie(response: Response, token: str):
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=config.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        httponly=True,
        samesite="lax",
        secure=config.ENVIRONMENT != "development",
    )


class SignupRequest(BaseModel):
    email: str
    password: str = Field(min_length=8)
    name: str = Field(min_length=1)
    role: str
    phone: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


class GoogleIDToken(BaseModel):
    id_token: str


class TokenResponse(BaseModel):
    access_token: str
    user_id: str


@router.post("/signup", status_code=201)
def signup(
    payload: SignupRequest,
    response: Response,
    session: Session = Depends(get_session),
):
    email = require_email(payload.email)
    role = profile_role(payload.role)

    existing = session.exec(select(Profile).where(Profile.email == email)).first()
    if existing:
        raise HTTPException(status_code=400, detail="An account with this email already exists")

    profile = Profile(
        email=email,
        name=payload.name.strip(),
        role=role,
        phone=payload.phone or None,
        password_hash=hash_password(payload.password),
    )

    session.add(profile)
    session.commit()
    session.refresh(profile)

    logger.info("signup %s as %s", profile.id, role)

    token = create_access_token(profile)
    set_session_cookie(response, token)

    return {
        "success": True,
        "user": {
            "id": str(profile.id),
            "email": profile.email,
            "name": profile.name,
            "role": profile.role,
        },
        "access_token": token,
    }


@router.post("/login", response_model=TokenResponse)
def login(
    payload: LoginRequest,
    response: Response,
    session: Session = Depends(get_session),
):
    email = (payload.email or "").strip().lower()
    profile = session.exec(select(Profile).where(Profile.email == email)).first()

    if not profile or not verify_password(payload.password, profile.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    token = create_access_token(profile)
    set_session_cookie(response, token)

    return TokenResponse(access_token=token, user_id=str(profile.id))


@router.post("/logout")
def logout(response: Response):
    response.delete_cookie(SESSION_COOKIE)
    return {"success": True}


@router.post("/google", response_model=TokenResponse)
def google_auth(
    payload: GoogleIDToken,
    response: Response,
    session: Session = Depends(get_session),
):
    if not config.GOOGLE_CLIENT_ID:
        raise HTTPException(status_code=500, detail="Google sign in is not configured")

    try:
        idinfo = id_token.verify_oauth2_token(payload.id_token, grequests.Request(), config.GOOGLE_CLIENT_ID)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid Google ID token")

    # idinfo now trusted and parsed by Google libs
    google_id = idinfo["sub"]
    email = (idinfo.get("email") or "").lower()

    # Google only vouches for addresses it verified
    if idinfo.get("email_verified") not in (True, "true"):
        raise HTTPException(status_code=401, detail="Google account email is not verified")

    profile = session.exec(select(Profile).where(Profile.google_id == google_id)).first()

    if not profile and email:
        # link an existing password account
        profile = session.exec(select(Profile).where(Profile.email == email)).first()
        if profile:
            profile.google_id = google_id
            session.add(profile)

    if not profile:
        profile = Profile(
            google_id=google_id,
            email=email,
            name=idinfo.get("name") or email.split("@")[0],
            avatar_url=idinfo.get("picture"),
            role="individual",
        )
        session.add(profile)

    session.commit()
    session.refresh(profile)

    token = create_access_token(profile)
    set_session_cookie(response, token)

    return TokenResponse(access_token=token, user_id=str(profile.id))


class FixProfileRequest(BaseModel):
    id: uuid.UUID
    email: str
    name: Optional[str] = None
    role: Optional[str] = None
    phone: Optional[str] = None


@router.post("/fix-profile")
def fix_profile(
    payload: FixProfileRequest,
    session: Session = Depends(get_session),
    current_user=Depends(get_current_user_required),
):
    """
    Create the profile row for an identity that has none.
    Allowed for the identity itself or a platform admin.
    """
    caller = get_optional_db_user(session, current_user)
    is_admin = caller is not None and caller.role == "admin"

    if caller_id(current_user) != payload.id and not is_admin:
        raise HTTPException(status_code=403, detail="Forbidden")

    if session.get(Profile, payload.id):
        return {"success": True, "message": "Profile already exists"}

    email = require_email(payload.email)

    if session.exec(select(Profile).where(Profile.email == email)).first():
        raise HTTPException(status_code=400, detail="Email is already used by another profile")

    profile = Profile(
        id=payload.id,
        email=email,
        name=payload.name or email.split("@")[0],
        role=profile_role(payload.role),
        phone=payload.phone or None,
    )

    session.add(profile)
    session.commit()
    session.refresh(profile)

    logger.info("created missing profile %s", profile.id)

    return {"success": True, "profile": profile.public_dict()}
