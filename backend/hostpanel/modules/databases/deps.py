from typing import Optional

from fastapi import Depends

from hostpanel.core.config import Settings
from hostpanel.core.deps import get_config
from hostpanel.core.exceptions import NotConfigured
from hostpanel.system.mysql_manager import MySQLManager


def get_mysql_manager(cfg: Settings = Depends(get_config)) -> Optional[MySQLManager]:
    """None until a MySQL root password is saved in Settings."""
    if not cfg.mysql_root_password:
        return None
    return MySQLManager(
        cfg.mysql_root_password,
        host=cfg.mysql_host,
        backup_dir=cfg.backup_dir,
        timeout=cfg.install_timeout,
    )


def require_mysql(mysql: Optional[MySQLManager]) -> MySQLManager:
    if mysql is None:
        raise NotConfigured("MySQL root password not set in Settings")
    return mysql
