import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel


class Settings(BaseModel):
    # Panel
    database_url: str = "sqlite:///./hostpanel.db"
    secret_key: str = "UNSAFE_DEFAULT_KEY_CHANGE_THIS"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30
    cors_origins: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]
    log_level: str = "INFO"
    rate_limit_enabled: bool = True
    first_superuser: Optional[str] = None
    first_superuser_password: Optional[str] = None

    # Host layout
    sites_base_dir: str = "/var/www"
    nginx_sites_available: str = "/etc/nginx/sites-available"
    nginx_sites_enabled: str = "/etc/nginx/sites-enabled"
    php_fpm_socket_dir: str = "/run/php"
    php_pool_dir: str = "/etc/php"
    letsencrypt_dir: str = "/etc/letsencrypt"
    proftpd_passwd_file: str = "/etc/proftpd/ftpd.passwd"
    proftpd_conf_dir: str = "/etc/proftpd/conf.d"
    ftp_uid: int = 33
    ftp_gid: int = 33
    mail_path: str = "/var/mail/vhosts"
    backup_dir: str = "/var/backups/hostpanel"

    # MySQL / MariaDB
    mysql_host: str = "localhost"
    mysql_root_password: str = ""

    # External commands
    command_timeout: int = 60
    install_timeout: int = 1800
    default_php_version: str = "8.2"

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        """
        Read every field from the upper-cased environment variable of the
        same name (DATABASE_URL, NGINX_SITES_AVAILABLE, ...). A .env file in
        the working directory is loaded first.
        """
        load_dotenv(env_file)

        values = {}
        for name in cls.model_fields:
            raw = os.getenv(name.upper())
            if raw is None or raw == "":
                continue
            if name == "cors_origins":
                values[name] = [o.strip() for o in raw.split(",") if o.strip()]
            else:
                values[name] = raw
        return cls(**values)
