import json
import logging

from hostpanel.system import runner

logger = logging.getLogger(__name__)

APP_PREFIX = "hostpanel-site-"
START_TIMEOUT = 30


def app_name(site_id: int) -> str:
    return f"{APP_PREFIX}{int(site_id)}"


def _save():
    # Persist the process list so apps come back after a reboot
    runner.try_command(["pm2", "save"], timeout=START_TIMEOUT)


def start_app(site_id: int, workdir: str, port: int):
    """
    (Re)start the site's app as `npm run start` with PORT set.
    Any previous process under the same name is removed first.
    """
    name = app_name(site_id)
    runner.try_command(["pm2", "delete", name], timeout=START_TIMEOUT)
    runner.run_command(
        ["pm2", "start", "npm", "--name", name, "--", "run", "start"],
        cwd=workdir,
        env={"PORT": str(port or 3000)},
        timeout=START_TIMEOUT,
        check=True,
        tool="pm2 start",
    )
    _save()
    logger.info("pm2: started %s on port %s", name, port)


def restart_app(site_id: int):
    runner.run_command(["pm2", "restart", app_name(site_id)], timeout=START_TIMEOUT, check=True, tool="pm2 restart")
    _save()


def stop_app(site_id: int):
    runner.run_command(["pm2", "stop", app_name(site_id)], timeout=START_TIMEOUT, check=True, tool="pm2 stop")
    _save()


def delete_app(site_id: int) -> bool:
    """Best-effort: a missing process is not an error."""
    result = runner.try_command(["pm2", "delete", app_name(site_id)], timeout=START_TIMEOUT)
    _save()
    return result.ok


def app_status(site_id: int) -> str:
    """running / stopped / errored / not_found, or unknown when pm2 is unavailable."""
    result = runner.try_command(["pm2", "jlist"], timeout=15)
    if not result.ok:
        return "unknown"
    try:
        processes = json.loads(result.stdout or "[]")
    except ValueError:
        return "unknown"

    name = app_name(site_id)
    for proc in processes:
        if proc.get("name") == name:
            status = (proc.get("pm2_env") or {}).get("status", "unknown")
            return "running" if status == "online" else status
    return "not_found"


def app_logs(site_id: int, lines: int = 80):
    lines = max(1, min(int(lines or 80), 200))
    result = runner.try_command(
        ["pm2", "logs", app_name(site_id), "--nostream", "--lines", str(lines)],
        timeout=15,
    )
    return result.stdout if result.ok and result.stdout else None
