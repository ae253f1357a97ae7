import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from hostpanel.core.config import Settings
from hostpanel.core.database import get_db
from hostpanel.core.deps import get_base_settings, get_config
from hostpanel.core.exceptions import InvalidInput
from hostpanel.modules.auth.deps import get_current_user
from hostpanel.modules.settings import schemas
from hostpanel.modules.settings.service import KNOWN_KEYS, MASK, effective_settings, get_setting, set_setting
from hostpanel.modules.users.models import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/settings", tags=["Settings"])

PATH_KEYS = ("nginx_sites_available", "php_pool_dir", "mail_path")


def _response(db: Session, cfg: Settings) -> dict:
    return {
        "nginx_sites_available": cfg.nginx_sites_available,
        "php_pool_dir": cfg.php_pool_dir,
        "mail_path": cfg.mail_path,
        "mysql_root_password": MASK if cfg.mysql_root_password else "",
        "server_public_ip": get_setting(db, "server_public_ip"),
    }


@router.get("", response_model=schemas.SettingsResponse)
def read_settings(db: Session = Depends(get_db), cfg: Settings = Depends(get_config),
                  current_user: User = Depends(get_current_user)):
    return _response(db, cfg)


@router.post("", response_model=schemas.SettingsResponse)
def update_settings(payload: schemas.SettingsUpdate, db: Session = Depends(get_db),
                    current_user: User = Depends(get_current_user),
                    base: Settings = Depends(get_base_settings)):
    changed = []
    for key in KNOWN_KEYS:
        value = getattr(payload, key)
        # empty fields and the masked placeholder leave the stored value alone
        if value is None or value == "" or value == MASK:
            continue
        if key in PATH_KEYS and not value.startswith("/"):
            raise InvalidInput(f"{key} must be an absolute path")
        set_setting(db, key, value)
        changed.append(key)

    db.commit()
    if changed:
        logger.info("settings updated: %s", ", ".join(changed))
    return _response(db, effective_settings(db, base))
