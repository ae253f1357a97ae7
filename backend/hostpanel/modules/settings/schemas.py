from typing import Optional

from pydantic import BaseModel


class SettingsResponse(BaseModel):
    nginx_sites_available: str
    php_pool_dir: str
    mail_path: str
    mysql_root_password: str  # masked
    server_public_ip: Optional[str] = None


class SettingsUpdate(BaseModel):
    nginx_sites_available: Optional[str] = None
    php_pool_dir: Optional[str] = None
    mail_path: Optional[str] = None
    mysql_root_password: Optional[str] = None
    server_public_ip: Optional[str] = None
