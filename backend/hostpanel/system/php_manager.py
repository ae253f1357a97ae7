import logging
import os
import re
from typing import Optional

from hostpanel.core.exceptions import ExternalToolError, InvalidInput
from hostpanel.system import runner
from hostpanel.system.nginx_manager import atomic_write, php_socket, safe_name

logger = logging.getLogger(__name__)

VERSION_RE = re.compile(r"^\d+\.\d+$")
APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}

# module id, label, apt package suffix
COMMON_PHP_MODULES = [
    ("curl", "cURL", "curl"),
    ("mbstring", "MBString", "mbstring"),
    ("xml", "XML", "xml"),
    ("zip", "Zip", "zip"),
    ("gd", "GD", "gd"),
    ("intl", "Intl", "intl"),
    ("bcmath", "BCMath", "bcmath"),
    ("soap", "SOAP", "soap"),
    ("imap", "IMAP", "imap"),
    ("exif", "Exif", "exif"),
    ("gettext", "Gettext", "gettext"),
    ("redis", "Redis", "redis"),
    ("mysqli", "MySQLi", "mysql"),
    ("pdo_mysql", "PDO MySQL", "mysql"),
]
MODULE_IDS = {m[0] for m in COMMON_PHP_MODULES}

# Dedicated pool: the site's own FPM workers and socket
POOL_TEMPLATE = """; HostPanel dedicated pool for {domain}
[{pool}]
user = www-data
group = www-data

listen = {socket}
listen.owner = www-data
listen.group = www-data
listen.mode = 0660

pm = dynamic
pm.max_children = 10
pm.start_servers = 2
pm.min_spare_servers = 1
pm.max_spare_servers = 3

php_admin_value[open_basedir] = {docroot}:/tmp:/var/lib/php/sessions
"""


def validate_version(version: str) -> str:
    if not version or not VERSION_RE.match(version):
        raise InvalidInput("Invalid PHP version")
    return version


# --- MODULES ---

def loaded_modules(version: str) -> set:
    result = runner.try_command([f"php{validate_version(version)}", "-m"], timeout=10)
    loaded = set()
    for line in result.stdout.splitlines():
        name = line.strip().lower()
        if name and not name.startswith("["):
            loaded.add(name)
    return loaded


def module_states(version: str) -> list:
    loaded = loaded_modules(version)
    return [{"id": mid, "label": label, "enabled": mid in loaded} for mid, label, _ in COMMON_PHP_MODULES]


def set_module(version: str, module: str, enable: bool):
    """
    phpenmod / phpdismod for the FPM SAPI only. Enabling a module whose ini
    is missing installs php<ver>-<pkg> first. No FPM restart here.
    """
    version = validate_version(version)
    if module not in MODULE_IDS:
        raise InvalidInput(f"Unknown module: {module}")

    if not enable:
        runner.run_command(["phpdismod", "-s", "fpm", module], env=APT_ENV, check=True, tool="phpdismod")
        return

    result = runner.run_command(["phpenmod", "-s", "fpm", module], env=APT_ENV, tool="phpenmod")
    if result.ok:
        return
    if "Cannot find" not in (result.stdout + result.stderr):
        raise ExternalToolError("phpenmod", result.output, result.returncode)

    package = next(pkg for mid, _, pkg in COMMON_PHP_MODULES if mid == module)
    runner.run_command(
        ["apt-get", "install", "-y", "-qq", f"php{version}-{package}"],
        env=APT_ENV, timeout=300, check=True, tool="apt-get install",
    )
    runner.run_command(["phpenmod", "-s", "fpm", module], env=APT_ENV, check=True, tool="phpenmod")


def restart_fpm(version: str):
    runner.run_command(
        ["systemctl", "restart", f"php{validate_version(version)}-fpm"],
        timeout=30, check=True, tool="systemctl restart",
    )


# --- DEDICATED POOL ---

def pool_path(site, cfg) -> str:
    version = site.php_version or cfg.default_php_version
    return os.path.join(cfg.php_pool_dir, version, "fpm", "pool.d", f"hostpanel-{safe_name(site.domain)}.conf")


def render_pool(site, cfg) -> str:
    return POOL_TEMPLATE.format(
        domain=site.domain,
        pool=safe_name(site.domain).replace(".", "_"),
        socket=php_socket(site, cfg),
        docroot=site.docroot,
    )


def write_pool(site, cfg):
    """`site.dedicated_pool` must already be set so the socket path is the site's own."""
    atomic_write(pool_path(site, cfg), render_pool(site, cfg))
    logger.info("php: pool written for %s", site.domain)


def remove_pool(site, cfg) -> bool:
    path = pool_path(site, cfg)
    if os.path.exists(path):
        os.unlink(path)
        return True
    return False


def read_pool(path: str) -> Optional[str]:
    try:
        with open(path) as f:
            return f.read()
    except FileNotFoundError:
        return None


def restore_pool(path: str, content: Optional[str]):
    """Put a pool file back the way `read_pool` saw it; None means it did not exist."""
    if content is None:
        if os.path.exists(path):
            os.unlink(path)
    else:
        atomic_write(path, content)
