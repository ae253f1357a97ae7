from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, field_validator

WIZARD_STEPS = ("welcome", "php", "web_server", "database", "node", "email", "ftp", "certbot", "install", "finish")
SUPPORTED_PHP_VERSIONS = ("7.4", "8.0", "8.1", "8.2", "8.3", "8.4")


class WizardStateResponse(BaseModel):
    step: str
    completed: bool
    php_versions: Optional[str] = None
    php_fpm_config: Optional[str] = None
    web_server: Optional[str] = None
    database_choice: Optional[str] = None
    database_config: Optional[str] = None
    node_version: Optional[str] = None
    email_installed: bool = False
    ftp_installed: bool = False
    certbot_installed: bool = False
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PhpChoice(BaseModel):
    versions: List[str]
    fpm_config: str = "default"

    @field_validator("versions")
    @classmethod
    def check_versions(cls, value):
        unknown = [v for v in value if v not in SUPPORTED_PHP_VERSIONS]
        if unknown:
            raise ValueError(f"Unsupported PHP version(s): {', '.join(unknown)}")
        return value

    @field_validator("fpm_config")
    @classmethod
    def check_config(cls, value):
        if value not in ("default", "optimized"):
            raise ValueError("fpm_config must be 'default' or 'optimized'")
        return value


class DatabaseChoice(BaseModel):
    choice: str = "mysql"
    config: str = "default"
    root_password: Optional[str] = None

    @field_validator("choice")
    @classmethod
    def check_choice(cls, value):
        if value not in ("mysql", "mariadb"):
            raise ValueError("choice must be 'mysql' or 'mariadb'")
        return value

    @field_validator("config")
    @classmethod
    def check_config(cls, value):
        if value not in ("default", "optimized"):
            raise ValueError("config must be 'default' or 'optimized'")
        return value


class ComponentsChoice(BaseModel):
    node_version: Optional[str] = None
    email: bool = False
    ftp: bool = False
    certbot: bool = False

    @field_validator("node_version")
    @classmethod
    def check_node(cls, value):
        if value in (None, ""):
            return None
        if value not in ("18", "20", "22"):
            raise ValueError("node_version must be 18, 20 or 22")
        return value
