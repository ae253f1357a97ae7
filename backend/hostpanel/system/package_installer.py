"""
Setup-wizard installs: apt packages for PHP-FPM, Node.js, MySQL/MariaDB,
mail, FTP and certbot, plus the drop-in config files that go with them.

An install is a plan of steps; each step is a list of actions (a command or
a small file task). The plan runs either blocking (`run_install`) or as a
text stream that ends with a `DONE:<code>` line (`stream_install`).
"""
import logging
import os
import socket
import tempfile
from typing import Callable, List, Optional

import requests

from hostpanel.core.exceptions import ExternalToolError
from hostpanel.system import runner

logger = logging.getLogger(__name__)

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}
NODE_VERSIONS = ("18", "20", "22")
NODESOURCE_URL = "https://deb.nodesource.com/setup_{version}.x"
MYSQL_CONF_DIRS = {
    "mysql": "/etc/mysql/mysql.conf.d",
    "mariadb": "/etc/mysql/mariadb.conf.d",
}

UPLOAD_INI = """; HostPanel: allow larger uploads (e.g. WordPress media)
upload_max_filesize = 64M
post_max_size = 64M
"""

MAIL_INI = """; HostPanel: PHP mail() via system sendmail (Postfix)
sendmail_path = "/usr/sbin/sendmail -t -i"
"""

FPM_PERFORMANCE_POOL = """; HostPanel performance tuning for PHP-FPM {version}
[www]
pm = dynamic
pm.max_children = 50
pm.start_servers = 5
pm.min_spare_servers = 5
pm.max_spare_servers = 10
pm.max_requests = 500
"""

OPCACHE_INI = """; HostPanel OPcache tuning for PHP-FPM {version}
opcache.enable=1
opcache.memory_consumption=128
opcache.interned_strings_buffer=8
opcache.max_accelerated_files=10000
opcache.validate_timestamps=0
opcache.revalidate_freq=0
"""

INNODB_CNF = """# HostPanel database performance tuning
[mysqld]
innodb_buffer_pool_size = 256M
innodb_log_file_size = 64M
innodb_flush_log_at_trx_commit = 2
innodb_flush_method = O_DIRECT
"""

POSTFIX_GENERIC = """# HostPanel: default envelope sender for PHP (www-data)
www-data@{hostname} noreply@{hostname}
www-data noreply@{hostname}
"""


class Command:
    def __init__(self, args: list, input: Optional[str] = None, timeout: Optional[int] = None):
        self.args = args
        self.input = input
        self.timeout = timeout

    def describe(self) -> str:
        return "$ " + " ".join(self.args)


class Task:
    """In-process step (file writes, downloads). Returns a short log line."""

    def __init__(self, description: str, func: Callable[[], str]):
        self.description = description
        self.func = func

    def describe(self) -> str:
        return f"> {self.description}"


def apt_install(*packages) -> Command:
    return Command(["apt-get", "install", "-y", "-q", *packages])


def _write_file(path: str, content: str) -> str:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)
    return f"wrote {path}"


def _write_ini_dropins(php_root: str, version: str, name: str, content: str) -> Task:
    def write():
        written = []
        for sapi in ("fpm", "cli"):
            sapi_dir = os.path.join(php_root, version, sapi)
            if not os.path.isdir(sapi_dir):
                continue
            written.append(_write_file(os.path.join(sapi_dir, "conf.d", name), content))
        return "\n".join(written) or f"php {version}: no fpm/cli directory, skipped"
    return Task(f"PHP {version}: {name}", write)


def _download_nodesource(version: str) -> Task:
    target = os.path.join(tempfile.gettempdir(), f"hostpanel-nodesource-{version}.sh")

    def download():
        url = NODESOURCE_URL.format(version=version)
        response = requests.get(url, timeout=60)
        response.raise_for_status()
        with open(target, "w", encoding="utf-8") as f:
            f.write(response.text)
        return f"downloaded {url}"
    return Task(f"Download NodeSource setup for Node.js {version}", download)


def _postfix_generic_task() -> Task:
    def write():
        return _write_file("/etc/postfix/generic", POSTFIX_GENERIC.format(hostname=socket.gethostname() or "localhost"))
    return Task("Postfix sender rewrite for www-data", write)


def installed_php_versions(php_root: str = "/etc/php") -> list:
    if not os.path.isdir(php_root):
        return []
    versions = []
    for name in os.listdir(php_root):
        parts = name.split(".")
        if len(parts) == 2 and all(p.isdigit() for p in parts) and os.path.isdir(os.path.join(php_root, name)):
            versions.append(name)
    return sorted(versions)


# --- PLAN ---

def php_steps(versions: list, optimized: bool, php_root: str) -> list:
    actions = [
        Command(["add-apt-repository", "-y", "ppa:ondrej/php"]),
        Command(["apt-get", "update", "-q"]),
    ]
    for v in versions:
        actions.append(apt_install(f"php{v}-fpm", f"php{v}-mysql", f"php{v}-curl",
                                   f"php{v}-mbstring", f"php{v}-xml", f"php{v}-zip"))
        if optimized:
            base = os.path.join(php_root, v, "fpm")
            actions.append(Task(f"PHP {v}: performance pool", lambda b=base, ver=v: _write_file(
                os.path.join(b, "pool.d", "99-performance.conf"), FPM_PERFORMANCE_POOL.format(version=ver))))
            actions.append(Task(f"PHP {v}: opcache", lambda b=base, ver=v: _write_file(
                os.path.join(b, "conf.d", "99-opcache-performance.ini"), OPCACHE_INI.format(version=ver))))
        actions.append(_write_ini_dropins(php_root, v, "98-uploads.ini", UPLOAD_INI))
        actions.append(_write_ini_dropins(php_root, v, "99-mail.ini", MAIL_INI))
        actions.append(Command(["systemctl", "restart", f"php{v}-fpm"]))
    return actions


def node_steps(version: str) -> list:
    script = os.path.join(tempfile.gettempdir(), f"hostpanel-nodesource-{version}.sh")
    return [
        _download_nodesource(version),
        Command(["bash", script], timeout=300),
        Command(["apt-get", "update", "-q"]),
        apt_install("nodejs"),
    ]


def database_steps(choice: str, optimized: bool, root_password: Optional[str]) -> list:
    package = "mariadb-server" if choice == "mariadb" else "mysql-server"
    actions = []
    password = (root_password or "").replace("\r", " ").replace("\n", " ").strip()
    if password:
        selections = (
            f"{package} mysql-server/root_password password {password}\n"
            f"{package} mysql-server/root_password_again password {password}\n"
        )
        actions.append(Command(["debconf-set-selections"], input=selections))
    actions.append(apt_install(package))
    if optimized:
        conf_dir = MYSQL_CONF_DIRS.get(choice, MYSQL_CONF_DIRS["mysql"])
        actions.append(Task("InnoDB tuning", lambda: _write_file(
            os.path.join(conf_dir, "99-hostpanel-performance.cnf"), INNODB_CNF)))
        actions.append(Command(["systemctl", "restart", "mysql"]))
    return actions


def mail_steps(php_root: str) -> list:
    actions = [apt_install("postfix", "dovecot-core", "dovecot-imapd", "dovecot-lmtpd")]
    for v in installed_php_versions(php_root):
        actions.append(_write_ini_dropins(php_root, v, "98-uploads.ini", UPLOAD_INI))
        actions.append(_write_ini_dropins(php_root, v, "99-mail.ini", MAIL_INI))
        actions.append(Command(["systemctl", "restart", f"php{v}-fpm"]))
    actions.append(_postfix_generic_task())
    actions.append(Command(["postmap", "/etc/postfix/generic"]))
    actions.append(Command(["postconf", "-e", "smtp_generic_maps = hash:/etc/postfix/generic"]))
    actions.append(Command(["systemctl", "reload", "postfix"]))
    return actions


def build_plan(state, root_password: Optional[str] = None, php_root: str = "/etc/php") -> list:
    """List of (step name, actions) derived from the wizard state."""
    plan = [("apt-get update", [Command(["apt-get", "update", "-q"])])]

    versions = [v.strip() for v in (state.php_versions or "").split(",") if v.strip()]
    if versions:
        optimized = state.php_fpm_config == "optimized"
        name = "PHP-FPM " + ", ".join(versions) + (" (optimized)" if optimized else "")
        plan.append((name, php_steps(versions, optimized, php_root)))

    if state.node_version in NODE_VERSIONS:
        plan.append((f"Node.js {state.node_version}", node_steps(state.node_version)))

    choice = state.database_choice or "mysql"
    db_optimized = state.database_config == "optimized"
    plan.append((
        f"Database ({choice}{', optimized' if db_optimized else ''})",
        database_steps(choice, db_optimized, root_password),
    ))

    if state.email_installed:
        plan.append(("Mail (Postfix + Dovecot)", mail_steps(php_root)))
    if state.ftp_installed:
        plan.append(("FTP (ProFTPD)", [apt_install("proftpd-basic")]))
    if state.certbot_installed:
        plan.append(("Certbot", [apt_install("certbot", "python3-certbot-nginx")]))
    return plan


# --- EXECUTION ---

def _run_task(task: Task):
    try:
        return True, task.func()
    except (OSError, requests.RequestException) as e:
        return False, f"{task.description} failed: {e}"


def run_install(state, root_password: Optional[str] = None, php_root: str = "/etc/php",
                timeout: int = 1800):
    """Blocking install. Returns (success, log); stops at the first failing step."""
    log: List[str] = []
    for name, actions in build_plan(state, root_password, php_root):
        log.append(f"[{name}]")
        for action in actions:
            if isinstance(action, Task):
                ok, out = _run_task(action)
            else:
                try:
                    result = runner.run_command(action.args, input=action.input, env=APT_ENV,
                                                timeout=action.timeout or timeout)
                    ok, out = result.ok, (result.stdout + result.stderr)
                except ExternalToolError as e:
                    ok, out = False, e.message
            if out and out.strip():
                log.append(out.strip())
            if not ok:
                log.append(f"Error in step: {name}")
                logger.error("install step failed: %s", name)
                return False, "\n".join(log)
    logger.info("wizard install finished")
    return True, "\n".join(log)


def stream_install(state, root_password: Optional[str] = None, php_root: str = "/etc/php",
                   timeout: int = 1800):
    """Same plan as run_install, yielded as text. The last line is DONE:<exit code>."""
    for name, actions in build_plan(state, root_password, php_root):
        yield f"\n[{name}]\n"
        for action in actions:
            yield action.describe() + "\n"
            if isinstance(action, Task):
                ok, out = _run_task(action)
                yield out + "\n"
                code = 0 if ok else 1
            elif action.input is not None:
                # stdin-fed commands are short; run them blocking
                try:
                    result = runner.run_command(action.args, input=action.input, env=APT_ENV,
                                                timeout=action.timeout or timeout)
                    code = result.returncode
                    if result.output:
                        yield result.output + "\n"
                except ExternalToolError as e:
                    code = e.returncode or 1
                    yield e.message + "\n"
            else:
                command = runner.StreamingCommand(action.args, timeout=action.timeout or timeout, env=APT_ENV)
                for line in command:
                    yield line
                code = command.returncode if command.returncode is not None else 1

            if code != 0:
                yield f"Error in step: {name}\n"
                yield f"DONE:{code}\n"
                return
    yield "DONE:0\n"
