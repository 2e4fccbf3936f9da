# mentorship_matching/routers/auth_router.py
import logging
from datetime import timedelta, datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas import UserCreate, UserResponse, Token
from ..models import User, MentorRegistration, MenteeRegistration
from ..security import authenticate_user, create_access_token, get_password_hash, get_current_active_user, get_user
from ..config import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["authentication"])
settings = get_settings()

@router.post("/register", response_model=UserResponse, status_code=201)
async def register_user(user: UserCreate, db: Session = Depends(get_db)):
    """Register a new user. Administrators are promoted out of band."""
    if get_user(db, user.username):
        raise HTTPException(status_code=409, detail="Username already registered")

    db_user = User(username=user.username, hashed_password=get_password_hash(user.password))
    try:
        db.add(db_user)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Username already registered")
    db.refresh(db_user)
    logger.info(f"Registered user {db_user.id} ({db_user.username}).")
    return db_user

@router.post("/token", response_model=Token)
async def login(
    response: Response,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db)
):
    """Issue a bearer token and mirror it into an HttpOnly cookie"""
    user = authenticate_user(db, form_data.username, form_data.password)
    if not user:
        logger.info(f"Failed login for {form_data.username}.")
        raise HTTPException(status_code=401, detail="Incorrect username or password")

    access_token_expires = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    access_token = create_access_token(data={"sub": user.username}, expires_delta=access_token_expires)

    response.set_cookie(
        key="access_token",
        value=access_token,
        httponly=True,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        expires=datetime.now(timezone.utc) + access_token_expires,
        samesite="lax",
        secure=settings.COOKIE_SECURE,
    )
    return {"access_token": access_token, "token_type": "bearer"}

@router.get("/users/me", response_model=UserResponse)
async def get_current_user_profile(
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    """Current user with their mentor/mentee registration ids per program"""
    mentor_registrations = db.query(MentorRegistration).filter(MentorRegistration.user_id == current_user.id).all()
    mentee_registrations = db.query(MenteeRegistration).filter(MenteeRegistration.user_id == current_user.id).all()

    return UserResponse(
        id=current_user.id,
        username=current_user.username,
        is_active=current_user.is_active,
        is_admin=current_user.is_admin,
        created_at=current_user.created_at,
        updated_at=current_user.updated_at,
        mentor_registration_ids={r.program_id: r.id for r in mentor_registrations},
        mentee_registration_ids={r.program_id: r.id for r in mentee_registrations},
    )

@router.post("/logout", status_code=200)
async def logout(response: Response):
    """Logout user by clearing cookie"""
    response.delete_cookie(key="access_token")
    return {"message": "Logged out successfully"}