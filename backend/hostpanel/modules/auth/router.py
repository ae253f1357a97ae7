import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from hostpanel.core.database import get_db
from hostpanel.core.limiter import limiter
from hostpanel.core.security import create_access_token, get_password_hash, verify_password
from hostpanel.modules.auth.deps import get_current_user
from hostpanel.modules.users.models import User
from hostpanel.modules.users.schemas import Token, UserCreate, UserResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


def _issue_token(request: Request, user: User) -> dict:
    settings = request.app.state.settings
    token = create_access_token(
        {"sub": user.username},
        settings.secret_key,
        settings.algorithm,
        settings.access_token_expire_minutes,
    )
    return {"access_token": token, "token_type": "bearer"}


@router.get("/setup")
def setup_status(db: Session = Depends(get_db)):
    return {"needs_setup": db.query(User).count() == 0}


@router.post("/setup", response_model=Token)
def create_first_user(payload: UserCreate, request: Request, db: Session = Depends(get_db)):
    # Only the very first account can be created this way
    if db.query(User).count() > 0:
        raise HTTPException(status_code=400, detail="Setup already done")

    user = User(username=payload.username.strip(), hashed_password=get_password_hash(payload.password))
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("first user created: %s", user.username)
    return _issue_token(request, user)


@router.post("/token", response_model=Token)
@limiter.limit("5/minute")
def login_for_access_token(request: Request, form_data: OAuth2PasswordRequestForm = Depends(),
                           db: Session = Depends(get_db)):
    user = db.query(User).filter(User.username == form_data.username).first()

    if not user or not verify_password(form_data.password, user.hashed_password):
        logger.warning("failed login for %s", form_data.username)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return _issue_token(request, user)


@router.get("/me", response_model=UserResponse)
def read_me(current_user: User = Depends(get_current_user)):
    return current_user
