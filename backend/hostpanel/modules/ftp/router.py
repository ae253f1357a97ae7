import logging
import re

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from hostpanel.core.config import Settings
from hostpanel.core.database import get_db
from hostpanel.core.deps import get_config, get_messages
from hostpanel.core.exceptions import InvalidInput, NotFound
from hostpanel.core.flash import MessageQueue
from hostpanel.core.security import generate_password, get_password_hash
from hostpanel.modules.auth.deps import get_current_user
from hostpanel.modules.ftp import schemas
from hostpanel.modules.ftp.models import FtpUser
from hostpanel.modules.ftp.service import sync_ftp
from hostpanel.modules.sites.models import Site
from hostpanel.modules.sites.service import get_site
from hostpanel.modules.users.models import User
from hostpanel.modules.wizard.deps import require_wizard_complete
from hostpanel.system import ftp_manager
from hostpanel.system.paths import clean_route

logger = logging.getLogger(__name__)

USERNAME_RE = re.compile(r"^[a-zA-Z0-9_.-]+$")

router = APIRouter(
    prefix="/sites",
    tags=["FTP"],
    dependencies=[Depends(get_current_user), Depends(require_wizard_complete)],
)


def _get_ftp_user(db: Session, site: Site, user_id: int) -> FtpUser:
    user = db.query(FtpUser).filter(FtpUser.id == user_id, FtpUser.site_id == site.id).first()
    if not user:
        raise NotFound("FTP user not found")
    return user


def _sync(db: Session, cfg: Settings, messages: MessageQueue, current_user: User):
    _, warnings = sync_ftp(db, cfg)
    for text in warnings:
        messages.warn(current_user.username, text)


def _credentials(user: FtpUser, site: Site, password: str) -> dict:
    return {
        "id": user.id,
        "login": ftp_manager.login_name(user.username, site.domain),
        "password": password,
        "home": ftp_manager.ftp_home(site.docroot, user.default_route or ""),
    }


@router.post("/{site_id}/ftp-users", response_model=schemas.FtpCredentials, status_code=201)
def create_ftp_user(
        site_id: int,
        payload: schemas.FtpUserCreate,
        db: Session = Depends(get_db),
        cfg: Settings = Depends(get_config),
        messages: MessageQueue = Depends(get_messages),
        current_user: User = Depends(get_current_user),
):
    site = get_site(db, site_id)
    username = payload.username.strip()
    if not USERNAME_RE.match(username):
        raise InvalidInput("Username may contain letters, digits, '.', '_' and '-'")
    route = clean_route(payload.default_route)
    ftp_manager.ftp_home(site.docroot, route)

    if db.query(FtpUser).filter(FtpUser.site_id == site.id, FtpUser.username == username).first():
        raise InvalidInput("FTP user already exists for this site")

    password = payload.password or generate_password()
    user = FtpUser(
        site_id=site.id,
        username=username,
        password_hash=get_password_hash(password),
        password_plain=password,
        crypt_hash=ftp_manager.crypt_hash(password),
        default_route=route,
    )
    db.add(user)
    _sync(db, cfg, messages, current_user)
    db.commit()
    db.refresh(user)

    if not site.ftp_enabled:
        messages.warn(current_user.username, f"FTP is disabled for {site.domain}; the account is inactive until enabled")
    logger.info("ftp user %s added to %s", username, site.domain)
    return _credentials(user, site, password)


@router.put("/{site_id}/ftp-users/{user_id}", response_model=schemas.FtpUserResponse)
def update_ftp_user(
        site_id: int,
        user_id: int,
        payload: schemas.FtpUserUpdate,
        db: Session = Depends(get_db),
        cfg: Settings = Depends(get_config),
        messages: MessageQueue = Depends(get_messages),
        current_user: User = Depends(get_current_user),
):
    site = get_site(db, site_id)
    user = _get_ftp_user(db, site, user_id)
    route = clean_route(payload.default_route)
    ftp_manager.ftp_home(site.docroot, route)

    user.default_route = route
    _sync(db, cfg, messages, current_user)
    db.commit()
    db.refresh(user)
    return user


@router.post("/{site_id}/ftp-users/{user_id}/reset-password", response_model=schemas.FtpCredentials)
def reset_ftp_password(
        site_id: int,
        user_id: int,
        db: Session = Depends(get_db),
        cfg: Settings = Depends(get_config),
        messages: MessageQueue = Depends(get_messages),
        current_user: User = Depends(get_current_user),
):
    site = get_site(db, site_id)
    user = _get_ftp_user(db, site, user_id)

    password = generate_password()
    user.password_hash = get_password_hash(password)
    user.password_plain = password
    user.crypt_hash = ftp_manager.crypt_hash(password)
    # passwd file first; a failed write leaves the stored record untouched
    _sync(db, cfg, messages, current_user)
    db.commit()
    return _credentials(user, site, password)


@router.delete("/{site_id}/ftp-users/{user_id}")
def delete_ftp_user(
        site_id: int,
        user_id: int,
        db: Session = Depends(get_db),
        cfg: Settings = Depends(get_config),
        messages: MessageQueue = Depends(get_messages),
        current_user: User = Depends(get_current_user),
):
    site = get_site(db, site_id)
    user = _get_ftp_user(db, site, user_id)
    username = user.username
    db.delete(user)
    _sync(db, cfg, messages, current_user)
    db.commit()
    return {"message": f"FTP user {username} deleted"}
