from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class SiteBase(BaseModel):
    domain: str
    app_type: Literal["php", "node"] = "php"
    php_version: Optional[str] = None  # defaults to DEFAULT_PHP_VERSION for PHP sites
    node_port: Optional[int] = Field(default=None, ge=1, le=65535)
    ssl: bool = False
    ftp_enabled: bool = False
    htaccess_compat: bool = False


class SiteCreate(SiteBase):
    docroot: Optional[str] = None  # defaults to <SITES_BASE_DIR>/<domain>


class SiteUpdate(SiteBase):
    docroot: Optional[str] = None


class SiteResponse(BaseModel):
    id: int
    domain: str
    docroot: str
    app_type: str
    php_version: Optional[str] = None
    node_port: Optional[int] = None
    ssl: bool
    ftp_enabled: bool
    htaccess_compat: bool
    dedicated_pool: bool
    php_options: Optional[Dict[str, str]] = None
    enabled: bool
    clone_repo_url: Optional[str] = None
    clone_branch: Optional[str] = None
    clone_subfolder: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PhpOptionsUpdate(BaseModel):
    memory_limit: Optional[str] = None
    upload_max_filesize: Optional[str] = None
    max_execution_time: Optional[str] = None
    post_max_size: Optional[str] = None
    max_input_vars: Optional[str] = None
    # free-form "key=value" lines
    extra_options: Optional[str] = None


class PhpModulesUpdate(BaseModel):
    modules: List[str]


class WordPressInstall(BaseModel):
    folder: Optional[str] = None  # subfolder under the docroot, empty for the root


class ScriptUninstall(BaseModel):
    script_id: str = "wordpress"
    subfolder: Optional[str] = None


class CloneRequest(BaseModel):
    repo_url: str
    branch: Optional[str] = None
    target: Optional[str] = None  # subfolder under the docroot


class RepoUpdate(BaseModel):
    repo_url: str
    branch: Optional[str] = None


class AppDirRequest(BaseModel):
    subfolder: Optional[str] = None


class EnvUpdate(BaseModel):
    subfolder: Optional[str] = None
    content: str = ""
