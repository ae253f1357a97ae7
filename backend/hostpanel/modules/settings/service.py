from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from hostpanel.core.config import Settings
from hostpanel.modules.settings.models import Setting

MASK = "********"

# Stored keys that override the environment configuration
OVERRIDE_KEYS = ("nginx_sites_available", "php_pool_dir", "mail_path", "mysql_root_password")
KNOWN_KEYS = OVERRIDE_KEYS + ("server_public_ip",)


def get_setting(db: Session, key: str) -> Optional[str]:
    row = db.get(Setting, key)
    return row.value if row else None


def set_setting(db: Session, key: str, value: str):
    row = db.get(Setting, key)
    if row is None:
        db.add(Setting(key=key, value=value))
    else:
        row.value = value
        row.updated_at = datetime.utcnow()


def stored_settings(db: Session) -> dict:
    return {row.key: row.value for row in db.query(Setting).all()}


def effective_settings(db: Session, base: Settings) -> Settings:
    """Environment settings with the operator's saved values laid over them."""
    stored = stored_settings(db)
    overrides = {k: stored[k] for k in OVERRIDE_KEYS if stored.get(k)}
    if not overrides:
        return base
    return base.model_copy(update=overrides)
