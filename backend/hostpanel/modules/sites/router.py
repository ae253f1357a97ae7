import logging
import os
from typing import List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from hostpanel.core.config import Settings
from hostpanel.core.database import get_db
from hostpanel.core.deps import get_config, get_messages
from hostpanel.core.exceptions import InvalidInput
from hostpanel.core.flash import MessageQueue
from hostpanel.modules.auth.deps import get_current_user
from hostpanel.modules.databases.deps import get_mysql_manager
from hostpanel.modules.sites import models, schemas, service
from hostpanel.modules.users.models import User
from hostpanel.modules.wizard.deps import require_wizard_complete
from hostpanel.system import (
    git_manager, nginx_manager, php_manager, pm2_manager, runner, ssl_manager, wordpress_installer,
)
from hostpanel.system.paths import clean_subfolder, resolve_docroot_path

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/sites",
    tags=["Sites"],
    dependencies=[Depends(get_current_user), Depends(require_wizard_complete)],
)


def _flash(messages: MessageQueue, user: User, warnings: List[str]):
    for text in warnings:
        messages.warn(user.username, text)


@router.get("", response_model=List[schemas.SiteResponse])
def list_sites(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return db.query(models.Site).order_by(models.Site.domain).all()


@router.post("", response_model=schemas.SiteResponse, status_code=201)
def create_site(
        payload: schemas.SiteCreate,
        db: Session = Depends(get_db),
        cfg: Settings = Depends(get_config),
        messages: MessageQueue = Depends(get_messages),
        current_user: User = Depends(get_current_user),
):
    site, warnings = service.create_site(db, cfg, payload)
    _flash(messages, current_user, warnings)
    return site


@router.get("/{site_id}")
def read_site(
        site_id: int,
        db: Session = Depends(get_db),
        cfg: Settings = Depends(get_config),
        mysql=Depends(get_mysql_manager),
        current_user: User = Depends(get_current_user),
):
    site = service.get_site(db, site_id)
    return service.site_detail(db, cfg, site, mysql)


@router.put("/{site_id}", response_model=schemas.SiteResponse)
def update_site(
        site_id: int,
        payload: schemas.SiteUpdate,
        db: Session = Depends(get_db),
        cfg: Settings = Depends(get_config),
        messages: MessageQueue = Depends(get_messages),
        current_user: User = Depends(get_current_user),
):
    site = service.get_site(db, site_id)
    site, warnings = service.update_site(db, cfg, site, payload)
    _flash(messages, current_user, warnings)
    return site


@router.delete("/{site_id}")
def delete_site(
        site_id: int,
        db: Session = Depends(get_db),
        cfg: Settings = Depends(get_config),
        mysql=Depends(get_mysql_manager),
        messages: MessageQueue = Depends(get_messages),
        current_user: User = Depends(get_current_user),
):
    site = service.get_site(db, site_id)
    domain = site.domain
    warnings = service.delete_site(db, cfg, site, mysql)
    _flash(messages, current_user, warnings)
    return {"message": f"Site {domain} deleted", "warnings": warnings}


@router.get("/{site_id}/vhost")
def read_vhost(site_id: int, db: Session = Depends(get_db), cfg: Settings = Depends(get_config),
               current_user: User = Depends(get_current_user)):
    """Rendered server block, as it is (or would be) on disk."""
    site = service.get_site(db, site_id)
    return {"path": nginx_manager.vhost_path(site.domain, cfg), "content": nginx_manager.render_vhost(site, cfg)}


# --- SSL ---

@router.get("/{site_id}/ssl")
def ssl_status(site_id: int, db: Session = Depends(get_db), cfg: Settings = Depends(get_config),
               current_user: User = Depends(get_current_user)):
    site = service.get_site(db, site_id)
    status = ssl_manager.cert_status(site.domain, cfg)
    status["enabled"] = bool(site.ssl)
    return status


@router.post("/{site_id}/ssl/install")
def install_ssl(site_id: int, db: Session = Depends(get_db), cfg: Settings = Depends(get_config),
                current_user: User = Depends(get_current_user)):
    site = service.get_site(db, site_id)
    service.install_ssl(db, cfg, site)
    return {"message": f"SSL enabled for {site.domain}"}


@router.post("/{site_id}/ssl/renew")
def renew_ssl(site_id: int, db: Session = Depends(get_db), cfg: Settings = Depends(get_config),
              current_user: User = Depends(get_current_user)):
    site = service.get_site(db, site_id)
    if not site.ssl:
        raise InvalidInput("SSL is not enabled for this site")
    ssl_manager.renew_cert(site.domain)
    nginx_manager.reload_nginx()
    return {"message": f"Certificate renewed for {site.domain}"}


@router.post("/{site_id}/ssl/delete")
def delete_ssl(site_id: int, db: Session = Depends(get_db), cfg: Settings = Depends(get_config),
               current_user: User = Depends(get_current_user)):
    site = service.get_site(db, site_id)
    service.remove_ssl(db, cfg, site)
    return {"message": f"SSL removed for {site.domain}"}


# --- PHP ---

@router.put("/{site_id}/php-options")
def update_php_options(
        site_id: int,
        payload: schemas.PhpOptionsUpdate,
        db: Session = Depends(get_db),
        cfg: Settings = Depends(get_config),
        messages: MessageQueue = Depends(get_messages),
        current_user: User = Depends(get_current_user),
):
    site = service.get_php_site(db, site_id)
    warnings = service.update_php_options(db, cfg, site, payload)
    _flash(messages, current_user, warnings)
    return {"php_options": site.php_options or {}, "warnings": warnings}


@router.get("/{site_id}/php-modules")
def read_php_modules(site_id: int, db: Session = Depends(get_db), cfg: Settings = Depends(get_config),
                     current_user: User = Depends(get_current_user)):
    site = service.get_php_site(db, site_id)
    version = site.php_version or cfg.default_php_version
    return {"php_version": version, "modules": php_manager.module_states(version)}


@router.put("/{site_id}/php-modules")
def update_php_modules(
        site_id: int,
        payload: schemas.PhpModulesUpdate,
        db: Session = Depends(get_db),
        cfg: Settings = Depends(get_config),
        messages: MessageQueue = Depends(get_messages),
        current_user: User = Depends(get_current_user),
):
    site = service.get_php_site(db, site_id)
    warnings = service.set_php_modules(site, cfg, payload.modules)
    _flash(messages, current_user, warnings)
    version = site.php_version or cfg.default_php_version
    return {"php_version": version, "modules": php_manager.module_states(version), "warnings": warnings}


@router.post("/{site_id}/php-pool")
def enable_php_pool(site_id: int, db: Session = Depends(get_db), cfg: Settings = Depends(get_config),
                    current_user: User = Depends(get_current_user)):
    site = service.get_php_site(db, site_id)
    service.enable_dedicated_pool(db, cfg, site)
    return {"message": "Dedicated PHP-FPM pool enabled", "socket": nginx_manager.php_socket(site, cfg)}


@router.delete("/{site_id}/php-pool")
def disable_php_pool(
        site_id: int,
        db: Session = Depends(get_db),
        cfg: Settings = Depends(get_config),
        messages: MessageQueue = Depends(get_messages),
        current_user: User = Depends(get_current_user),
):
    site = service.get_php_site(db, site_id)
    warnings = service.disable_dedicated_pool(db, cfg, site)
    _flash(messages, current_user, warnings)
    return {"message": "Site uses the shared PHP-FPM pool again", "warnings": warnings}


# --- SCRIPTS ---

@router.post("/{site_id}/scripts/wordpress")
def install_wordpress(
        site_id: int,
        payload: schemas.WordPressInstall,
        db: Session = Depends(get_db),
        messages: MessageQueue = Depends(get_messages),
        current_user: User = Depends(get_current_user),
):
    site = service.get_php_site(db, site_id)
    target = resolve_docroot_path(site.docroot, clean_subfolder(payload.folder))
    if target is None:
        raise InvalidInput("Invalid path")

    if not wordpress_installer.install(target):
        messages.warn(current_user.username, f"Could not chown {target} to www-data")
    return {"message": "WordPress installed", "path": target}


@router.post("/{site_id}/scripts/uninstall")
def uninstall_script(site_id: int, payload: schemas.ScriptUninstall, db: Session = Depends(get_db)):
    site = service.get_site(db, site_id)
    if payload.script_id != "wordpress":
        raise InvalidInput("Unknown script")
    target = resolve_docroot_path(site.docroot, clean_subfolder(payload.subfolder))
    if target is None:
        raise InvalidInput("Invalid path")

    wordpress_installer.uninstall(target, site.docroot)
    return {"message": "WordPress removed"}


# --- NODE: REPOSITORY ---

@router.post("/{site_id}/clone")
def clone_repository(
        site_id: int,
        payload: schemas.CloneRequest,
        db: Session = Depends(get_db),
        messages: MessageQueue = Depends(get_messages),
        current_user: User = Depends(get_current_user),
):
    site = service.get_node_site(db, site_id)
    repo_url = git_manager.clean_repo_url(payload.repo_url)
    branch = git_manager.clean_branch(payload.branch)
    subfolder = clean_subfolder(payload.target)

    target = resolve_docroot_path(site.docroot, subfolder)
    if target is None:
        raise InvalidInput("Invalid path")
    if os.path.isdir(target) and os.listdir(target):
        raise InvalidInput("Target folder is not empty")

    os.makedirs(os.path.dirname(target), exist_ok=True)
    git_manager.clone(repo_url, target, branch)
    if not git_manager.chown_web(target):
        messages.warn(current_user.username, f"Could not chown {target} to www-data")

    site.clone_repo_url = repo_url
    site.clone_branch = branch or None
    site.clone_subfolder = subfolder or None
    db.commit()
    return {"message": "Repository cloned", "path": target}


@router.put("/{site_id}/repo")
def update_repository(
        site_id: int,
        payload: schemas.RepoUpdate,
        db: Session = Depends(get_db),
        current_user: User = Depends(get_current_user),
):
    site = service.get_node_site(db, site_id)
    workdir = service.node_workdir(site)
    if not git_manager.is_repo(workdir):
        raise InvalidInput("No git repository in the app folder")

    repo_url = git_manager.clean_repo_url(payload.repo_url)
    branch = git_manager.clean_branch(payload.branch)
    git_manager.set_remote(workdir, repo_url, branch)

    site.clone_repo_url = repo_url
    site.clone_branch = branch or None
    db.commit()
    return {"message": "Repository updated"}


@router.post("/{site_id}/repo/pull")
def pull_repository(
        site_id: int,
        payload: Optional[schemas.AppDirRequest] = None,
        db: Session = Depends(get_db),
        messages: MessageQueue = Depends(get_messages),
        current_user: User = Depends(get_current_user),
):
    site = service.get_node_site(db, site_id)
    workdir = service.node_workdir(site, payload.subfolder if payload else None)
    if not git_manager.is_repo(workdir):
        raise InvalidInput("No git repository in the app folder")

    git_manager.pull(workdir, site.clone_branch or "")
    if not git_manager.chown_web(workdir):
        messages.warn(current_user.username, f"Could not chown {workdir} to www-data")
    return {"message": "Repository updated from origin"}


# --- NODE: DEPENDENCIES ---

def _package_dir(site: models.Site, subfolder: Optional[str]) -> str:
    workdir = service.node_workdir(site, subfolder)
    if not os.path.isfile(os.path.join(workdir, "package.json")):
        raise InvalidInput("No package.json in the app folder")
    return workdir


@router.post("/{site_id}/npm-install")
def npm_install(
        site_id: int,
        payload: Optional[schemas.AppDirRequest] = None,
        db: Session = Depends(get_db),
        cfg: Settings = Depends(get_config),
        messages: MessageQueue = Depends(get_messages),
        current_user: User = Depends(get_current_user),
):
    site = service.get_node_site(db, site_id)
    workdir = _package_dir(site, payload.subfolder if payload else None)

    result = runner.run_command(
        ["npm", "install"], cwd=workdir, timeout=cfg.install_timeout, check=True, tool="npm install",
    )
    if not git_manager.chown_web(workdir):
        messages.warn(current_user.username, f"Could not chown {workdir} to www-data")
    return {"message": "Dependencies installed", "output": result.stdout[-4000:]}


@router.get("/{site_id}/npm-install/stream")
def npm_install_stream(
        site_id: int,
        subfolder: Optional[str] = None,
        db: Session = Depends(get_db),
        cfg: Settings = Depends(get_config),
        current_user: User = Depends(get_current_user),
):
    site = service.get_node_site(db, site_id)
    workdir = _package_dir(site, subfolder)
    command = runner.StreamingCommand(["npm", "install"], timeout=cfg.install_timeout, cwd=workdir)

    def generate():
        yield f"$ npm install ({workdir})\n"
        for line in command:
            yield line
        if command.returncode == 0:
            git_manager.chown_web(workdir)
        yield f"\n\nDONE:{command.returncode}\n"

    logger.info("npm install (stream) for site %s by %s", site.domain, current_user.username)
    return StreamingResponse(generate(), media_type="text/plain; charset=utf-8",
                             headers={"Cache-Control": "no-store"})


# --- NODE: ENV FILE ---

@router.get("/{site_id}/env")
def read_env(site_id: int, subfolder: Optional[str] = None, db: Session = Depends(get_db),
             current_user: User = Depends(get_current_user)):
    site = service.get_node_site(db, site_id)
    path = os.path.join(service.node_workdir(site, subfolder), ".env")
    if not os.path.isfile(path):
        return {"exists": False, "content": ""}
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        return {"exists": True, "content": f.read()}


@router.put("/{site_id}/env")
def write_env(site_id: int, payload: schemas.EnvUpdate, db: Session = Depends(get_db),
              current_user: User = Depends(get_current_user)):
    site = service.get_node_site(db, site_id)
    workdir = service.node_workdir(site, payload.subfolder)
    if not os.path.isdir(workdir):
        raise InvalidInput("App folder does not exist")

    content = payload.content.replace("\r\n", "\n")
    if content and not content.endswith("\n"):
        content += "\n"
    nginx_manager.atomic_write(os.path.join(workdir, ".env"), content, mode=0o640)
    runner.try_command(["chown", "www-data:www-data", os.path.join(workdir, ".env")], timeout=10)
    return {"message": ".env saved"}


# --- NODE: PROCESS ---

@router.post("/{site_id}/node/start")
def start_node_app(
        site_id: int,
        payload: Optional[schemas.AppDirRequest] = None,
        db: Session = Depends(get_db),
        current_user: User = Depends(get_current_user),
):
    site = service.get_node_site(db, site_id)
    workdir = _package_dir(site, payload.subfolder if payload else None)
    pm2_manager.start_app(site.id, workdir, site.node_port)
    return {"message": "App started", "status": pm2_manager.app_status(site.id)}


@router.post("/{site_id}/node/restart")
def restart_node_app(site_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    site = service.get_node_site(db, site_id)
    pm2_manager.restart_app(site.id)
    return {"message": "App restarted", "status": pm2_manager.app_status(site.id)}


@router.post("/{site_id}/node/stop")
def stop_node_app(site_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    site = service.get_node_site(db, site_id)
    pm2_manager.stop_app(site.id)
    return {"message": "App stopped", "status": pm2_manager.app_status(site.id)}


@router.delete("/{site_id}/node")
def delete_node_app(site_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    site = service.get_node_site(db, site_id)
    removed = pm2_manager.delete_app(site.id)
    return {"message": "App removed from pm2" if removed else "App was not running under pm2"}


@router.get("/{site_id}/node/logs")
def node_logs(site_id: int, lines: int = 80, db: Session = Depends(get_db),
              current_user: User = Depends(get_current_user)):
    site = service.get_node_site(db, site_id)
    logs = pm2_manager.app_logs(site.id, lines)
    return {"name": pm2_manager.app_name(site.id), "logs": logs or "No logs available"}
