import logging
import os

from passlib.hash import sha512_crypt

from hostpanel.core.exceptions import InvalidInput
from hostpanel.system import runner
from hostpanel.system.nginx_manager import atomic_write
from hostpanel.system.paths import clean_route, resolve_docroot_path

logger = logging.getLogger(__name__)

CONF_NAME = "hostpanel.conf"

PROFTPD_CONF_TEMPLATE = """# HostPanel virtual FTP users (AuthUserFile only)
<IfModule mod_auth_pam.c>
  AuthPAM off
</IfModule>
AuthOrder mod_auth_file.c
AuthUserFile {passwd_file}
RequireValidShell off
UseFtpUsers off
DefaultRoot ~
"""


def crypt_hash(password: str) -> str:
    """SHA-512 crypt(3) hash ($6$...) as read by mod_auth_file."""
    if not password:
        raise InvalidInput("Password is required")
    return sha512_crypt.using(rounds=5000).hash(password)


def ftp_home(docroot: str, route: str = "") -> str:
    route = clean_route(route)
    home = resolve_docroot_path(docroot, route)
    if home is None:
        raise InvalidInput("Home folder must stay inside the site docroot")
    return home


def login_name(username: str, domain: str) -> str:
    return f"{username.strip()}@{domain}"


def render_passwd(rows, cfg) -> str:
    """
    `rows` are (FtpUser, Site) pairs. Only sites with FTP enabled and users
    that have a crypt hash are written.
    """
    lines = []
    for user, site in rows:
        if not site.ftp_enabled or not user.crypt_hash:
            continue
        try:
            home = ftp_home(site.docroot, user.default_route or "")
        except InvalidInput:
            logger.warning("ftp: skipping %s, home escapes %s", user.username, site.docroot)
            continue
        lines.append(
            f"{login_name(user.username, site.domain)}:{user.crypt_hash}:"
            f"{cfg.ftp_uid}:{cfg.ftp_gid}::{home}:/sbin/nologin"
        )
    return "\n".join(lines) + ("\n" if lines else "")


def write_proftpd_conf(cfg):
    path = os.path.join(cfg.proftpd_conf_dir, CONF_NAME)
    atomic_write(path, PROFTPD_CONF_TEMPLATE.format(passwd_file=cfg.proftpd_passwd_file))


def sync_ftp_users(rows, cfg):
    """
    Rewrite the ProFTPD passwd file from the panel rows and reload proftpd.
    Returns (written_users, warnings); ownership, mode and reload are best-effort.
    """
    content = render_passwd(rows, cfg)
    atomic_write(cfg.proftpd_passwd_file, content, mode=0o640)
    count = content.count("\n")
    logger.info("ftp: %s users written to %s", count, cfg.proftpd_passwd_file)

    warnings = []
    chown = runner.try_command(["chown", "root:root", cfg.proftpd_passwd_file], timeout=10)
    if not chown.ok:
        warnings.append(f"chown passwd file: {chown.output or 'failed'}")

    try:
        write_proftpd_conf(cfg)
    except OSError as e:
        warnings.append(f"proftpd config: {e}")

    reload = runner.try_command(["systemctl", "reload", "proftpd"], timeout=30)
    if not reload.ok:
        warnings.append(f"proftpd reload: {reload.output or 'failed'}")

    for warning in warnings:
        logger.warning("ftp sync: %s", warning)
    return count, warnings
