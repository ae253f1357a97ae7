import logging

from hostpanel.core.exceptions import InvalidInput
from hostpanel.system import runner

logger = logging.getLogger(__name__)

ALLOWED_UNITS = {"nginx", "mysql", "postfix", "dovecot", "proftpd"}
ACTIONS = ("start", "stop", "restart")
SERVICE_TIMEOUT = 30


def php_versions(state) -> list:
    raw = getattr(state, "php_versions", None) or ""
    return [v.strip() for v in raw.split(",") if v.strip()]


def installed_services(state) -> list:
    services = [{"id": "nginx", "label": "Nginx (web server)", "unit": "nginx"}]
    for v in php_versions(state) or ["8.2"]:
        services.append({"id": f"php{v}-fpm", "label": f"PHP {v} FPM", "unit": f"php{v}-fpm"})

    db_label = "MariaDB" if getattr(state, "database_choice", "mysql") == "mariadb" else "MySQL"
    services.append({"id": "mysql", "label": db_label, "unit": "mysql"})

    if getattr(state, "email_installed", False):
        services.append({"id": "postfix", "label": "Postfix (mail)", "unit": "postfix"})
        services.append({"id": "dovecot", "label": "Dovecot (IMAP/LMTP)", "unit": "dovecot"})
    if getattr(state, "ftp_installed", False):
        services.append({"id": "proftpd", "label": "ProFTPD", "unit": "proftpd"})
    return services


def is_allowed_unit(unit: str, state) -> bool:
    if unit in ALLOWED_UNITS:
        return True
    if unit.startswith("php") and unit.endswith("-fpm"):
        return unit[3:-4] in php_versions(state)
    return False


def require_allowed(unit: str, state) -> str:
    if not is_allowed_unit(unit, state):
        raise InvalidInput(f"Service not allowed: {unit}")
    return unit


def service_status(unit: str) -> str:
    result = runner.try_command(["systemctl", "is-active", unit], timeout=10)
    out = result.stdout.strip()
    if out == "active":
        return "active"
    return out or "inactive"


def control_service(unit: str, action: str):
    if action not in ACTIONS:
        raise InvalidInput(f"Unknown action: {action}")
    runner.run_command(["systemctl", action, unit], timeout=SERVICE_TIMEOUT, check=True, tool=f"systemctl {action}")
    logger.info("service %s: %s", unit, action)


def service_logs(unit: str, lines: int = 100) -> str:
    lines = max(1, min(int(lines or 100), 1000))
    result = runner.run_command(
        ["journalctl", "-u", unit, "-n", str(lines), "--no-pager"],
        timeout=SERVICE_TIMEOUT,
        check=True,
        tool="journalctl",
    )
    return result.stdout
