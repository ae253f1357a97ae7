import logging
import os
from typing import List, Optional

from sqlalchemy.orm import Session

from hostpanel.core.exceptions import ExternalToolError, InvalidInput, NotFound
from hostpanel.core.validators import validate_domain
from hostpanel.modules.databases.models import Database
from hostpanel.modules.ftp.service import sync_ftp
from hostpanel.modules.sites import models, schemas
from hostpanel.system import nginx_manager, php_manager, pm2_manager, runner, ssl_manager
from hostpanel.system.paths import clean_subfolder, resolve_docroot_path, validate_docroot

logger = logging.getLogger(__name__)

DEFAULT_INDEX_PHP = "<?php echo '<h1>{domain}</h1><p>Site is ready.</p>'; ?>\n"


def get_site(db: Session, site_id: int) -> models.Site:
    site = db.get(models.Site, site_id)
    if not site:
        raise NotFound("Site not found")
    return site


def get_node_site(db: Session, site_id: int) -> models.Site:
    site = get_site(db, site_id)
    if site.app_type != "node":
        raise InvalidInput("Only available for Node sites")
    return site


def get_php_site(db: Session, site_id: int) -> models.Site:
    site = get_site(db, site_id)
    if site.app_type != "php":
        raise InvalidInput("Only available for PHP sites")
    return site


def node_workdir(site: models.Site, subfolder: Optional[str] = None) -> str:
    """App directory: the docroot, or one subfolder of it (defaults to the clone target)."""
    if subfolder is None:
        subfolder = site.clone_subfolder or ""
    safe = clean_subfolder(subfolder)
    workdir = resolve_docroot_path(site.docroot, safe)
    if workdir is None:
        raise InvalidInput("Invalid path")
    return workdir


def _check_php_version(version: str) -> str:
    try:
        return php_manager.validate_version(version)
    except InvalidInput:
        raise InvalidInput(f"Invalid PHP version: {version}")


def _normalize(payload, cfg, db: Session, site_id: Optional[int] = None) -> dict:
    """Validated column values for a create/update payload."""
    domain = validate_domain(payload.domain)

    duplicate = db.query(models.Site).filter(models.Site.domain == domain)
    if site_id is not None:
        duplicate = duplicate.filter(models.Site.id != site_id)
    if duplicate.first():
        raise InvalidInput("Domain already exists")

    docroot = validate_docroot(payload.docroot or os.path.join(cfg.sites_base_dir, domain))

    values = {
        "domain": domain,
        "docroot": docroot,
        "app_type": payload.app_type,
        "ssl": payload.ssl,
        "ftp_enabled": payload.ftp_enabled,
        "php_version": None,
        "node_port": None,
        "htaccess_compat": False,
    }
    if payload.app_type == "php":
        values["php_version"] = _check_php_version(payload.php_version or cfg.default_php_version)
        values["htaccess_compat"] = payload.htaccess_compat
    else:
        if payload.node_port is None:
            raise InvalidInput("Node app requires a valid port (1-65535)")
        taken = db.query(models.Site).filter(models.Site.node_port == payload.node_port)
        if site_id is not None:
            taken = taken.filter(models.Site.id != site_id)
        if taken.first():
            raise InvalidInput(f"Port {payload.node_port} is already used by another site")
        values["node_port"] = payload.node_port
    return values


def prepare_docroot(site: models.Site) -> List[str]:
    """Create the docroot (and a placeholder index.php for PHP). Best-effort."""
    warnings = []
    try:
        os.makedirs(site.docroot, exist_ok=True)
        if site.app_type == "php":
            index_php = os.path.join(site.docroot, "index.php")
            if not os.listdir(site.docroot):
                with open(index_php, "w") as f:
                    f.write(DEFAULT_INDEX_PHP.format(domain=site.domain))
    except OSError as e:
        warnings.append(f"Could not prepare docroot {site.docroot}: {e}")
        return warnings

    chown = runner.try_command(["chown", "-R", "www-data:www-data", site.docroot], timeout=60)
    if not chown.ok:
        warnings.append(f"chown {site.docroot}: {chown.output or 'failed'}")
    return warnings


def create_site(db: Session, cfg, payload: schemas.SiteCreate):
    """
    Returns (site, warnings). With SSL requested the certificate is obtained
    first; if certbot fails nothing is created.
    """
    values = _normalize(payload, cfg, db)

    if values["ssl"]:
        ssl_manager.obtain_cert(values["domain"])

    site = models.Site(**values)
    db.add(site)
    db.flush()

    try:
        nginx_manager.apply_site(site, cfg)
    except ExternalToolError:
        db.rollback()
        raise
    # nginx -t does not need the folder; a refused site leaves nothing on disk
    warnings = prepare_docroot(site)

    db.commit()
    db.refresh(site)
    logger.info("site created: %s (%s)", site.domain, site.app_type)
    return site, warnings


def update_site(db: Session, cfg, site: models.Site, payload: schemas.SiteUpdate):
    values = _normalize(payload, cfg, db, site_id=site.id)
    old_domain = site.domain
    old_version = site.php_version or cfg.default_php_version
    old_pool = php_manager.pool_path(site, cfg) if site.dedicated_pool else None
    old_pool_content = php_manager.read_pool(old_pool) if old_pool else None
    ftp_changed = (
        values["ftp_enabled"] != site.ftp_enabled
        or values["docroot"] != site.docroot
        or values["domain"] != site.domain
    )

    # SSL newly needed for this domain: certificate first
    if values["ssl"] and (not site.ssl or values["domain"] != old_domain):
        if not ssl_manager.cert_status(values["domain"], cfg)["exists"]:
            ssl_manager.obtain_cert(values["domain"])

    for key, value in values.items():
        setattr(site, key, value)
    if site.app_type != "php":
        site.dedicated_pool = False
        site.php_options = None
    db.flush()

    warnings = []
    new_pool = None
    new_version = site.php_version or cfg.default_php_version
    if site.dedicated_pool:
        # the old pool stays in place until nginx accepts the new vhost
        new_pool = php_manager.pool_path(site, cfg)
        php_manager.write_pool(site, cfg)
        try:
            php_manager.restart_fpm(new_version)
        except ExternalToolError as e:
            warnings.append(e.message)

    try:
        nginx_manager.apply_site(site, cfg, old_domain=old_domain)
    except ExternalToolError:
        db.rollback()
        if new_pool:
            _restore_pools(new_pool, new_version, old_pool, old_pool_content, old_version)
        raise

    if old_pool and old_pool != new_pool and os.path.exists(old_pool):
        os.unlink(old_pool)
        if old_version != new_version or new_pool is None:
            try:
                php_manager.restart_fpm(old_version)
            except ExternalToolError as e:
                warnings.append(e.message)

    if ftp_changed:
        _, ftp_warnings = sync_ftp(db, cfg)
        warnings.extend(ftp_warnings)

    db.commit()
    db.refresh(site)
    logger.info("site updated: %s", site.domain)
    return site, warnings


def _restore_pools(new_pool: str, new_version: str, old_pool: Optional[str], old_content: Optional[str],
                   old_version: str):
    """Undo a pool rewrite after nginx refused the matching vhost."""
    if new_pool != old_pool and os.path.exists(new_pool):
        os.unlink(new_pool)
    if old_pool:
        php_manager.restore_pool(old_pool, old_content)
    for version in sorted({new_version, old_version}):
        try:
            php_manager.restart_fpm(version)
        except ExternalToolError as e:
            logger.warning("php%s-fpm restart after rollback failed: %s", version, e.message)


def delete_site(db: Session, cfg, site: models.Site, mysql=None) -> List[str]:
    """
    Cascade: vhost files, FTP users (passwd resync), grants, databases
    (engine DROP best-effort), pm2 app, dedicated pool, the row itself.
    nginx is reloaded once at the end.
    """
    warnings = []
    domain = site.domain

    nginx_manager.remove_vhost(domain, cfg)

    for ftp_user in list(site.ftp_users):
        db.delete(ftp_user)
    _, ftp_warnings = sync_ftp(db, cfg)
    warnings.extend(ftp_warnings)
    db.expire(site, ["ftp_users"])

    databases = db.query(Database).filter(Database.site_id == site.id).all()
    for database in databases:
        # grant rows go with the database row (cascade)
        for grant in database.grants:
            if mysql is not None:
                try:
                    mysql.revoke(grant.user.username, database.name, grant.user.host)
                except ExternalToolError as e:
                    warnings.append(f"Revoke on {database.name}: {e.message}")
        if mysql is None:
            warnings.append(f"Database {database.name} not dropped: MySQL root password not set")
        else:
            try:
                mysql.drop_database(database.name)
            except ExternalToolError as e:
                warnings.append(f"Drop {database.name}: {e.message}")
        db.delete(database)
    db.flush()
    db.expire(site, ["databases"])

    if site.app_type == "node":
        pm2_manager.delete_app(site.id)
    if site.dedicated_pool:
        php_manager.remove_pool(site, cfg)

    db.delete(site)
    db.commit()
    logger.info("site deleted: %s", domain)

    nginx_manager.reload_nginx()
    return warnings


# --- SSL ---

def install_ssl(db: Session, cfg, site: models.Site):
    ssl_manager.obtain_cert(site.domain)
    site.ssl = True
    db.flush()
    try:
        nginx_manager.apply_site(site, cfg)
    except ExternalToolError:
        db.rollback()
        raise
    db.commit()


def remove_ssl(db: Session, cfg, site: models.Site):
    """Serve plain HTTP again, then delete the certificate."""
    if site.ssl:
        site.ssl = False
        db.flush()
        try:
            nginx_manager.apply_site(site, cfg)
        except ExternalToolError:
            db.rollback()
            raise
        db.commit()
    ssl_manager.delete_cert(site.domain)


# --- PHP ---

COMMON_INI_KEYS = ("memory_limit", "upload_max_filesize", "max_execution_time", "post_max_size", "max_input_vars")


def build_php_options(payload: schemas.PhpOptionsUpdate) -> dict:
    options = {}
    for key in COMMON_INI_KEYS:
        value = (getattr(payload, key) or "").strip()
        if value:
            options[key] = value
    for line in (payload.extra_options or "").splitlines():
        if "=" not in line or line.index("=") == 0:
            continue
        key, value = line.split("=", 1)
        options[key.strip()] = value.strip()
    return nginx_manager.clean_php_options(options)


def update_php_options(db: Session, cfg, site: models.Site, payload: schemas.PhpOptionsUpdate) -> List[str]:
    options = build_php_options(payload)
    site.php_options = options or None
    db.flush()
    try:
        nginx_manager.apply_site(site, cfg)
    except ExternalToolError:
        db.rollback()
        raise
    db.commit()

    warnings = []
    try:
        php_manager.restart_fpm(site.php_version or cfg.default_php_version)
    except ExternalToolError as e:
        warnings.append(f"Options saved, PHP-FPM restart failed: {e.diagnostic}")
    return warnings


def set_php_modules(site: models.Site, cfg, wanted: List[str]) -> List[str]:
    version = site.php_version or cfg.default_php_version
    unknown = [m for m in wanted if m not in php_manager.MODULE_IDS]
    if unknown:
        raise InvalidInput(f"Unknown module(s): {', '.join(unknown)}")

    loaded = php_manager.loaded_modules(version)
    wanted_set = set(wanted)
    for module in sorted(wanted_set - loaded):
        php_manager.set_module(version, module, True)
    for module in sorted(m for m in php_manager.MODULE_IDS if m in loaded and m not in wanted_set):
        php_manager.set_module(version, module, False)

    warnings = []
    try:
        php_manager.restart_fpm(version)
    except ExternalToolError as e:
        warnings.append(f"Modules changed, PHP-FPM restart failed: {e.diagnostic}")
    return warnings


def enable_dedicated_pool(db: Session, cfg, site: models.Site):
    """
    Own FPM pool + socket for this site. The pool must be live before
    nginx points at its socket, so a failed FPM restart undoes the pool file.
    """
    site.dedicated_pool = True
    db.flush()
    php_manager.write_pool(site, cfg)
    try:
        php_manager.restart_fpm(site.php_version or cfg.default_php_version)
        nginx_manager.apply_site(site, cfg)
    except ExternalToolError:
        php_manager.remove_pool(site, cfg)
        db.rollback()
        raise
    db.commit()


def disable_dedicated_pool(db: Session, cfg, site: models.Site) -> List[str]:
    site.dedicated_pool = False
    db.flush()
    try:
        nginx_manager.apply_site(site, cfg)
    except ExternalToolError:
        db.rollback()
        raise
    db.commit()

    warnings = []
    php_manager.remove_pool(site, cfg)
    try:
        php_manager.restart_fpm(site.php_version or cfg.default_php_version)
    except ExternalToolError as e:
        warnings.append(f"Pool removed, PHP-FPM restart failed: {e.diagnostic}")
    return warnings


# --- DETAIL ---

def site_detail(db: Session, cfg, site: models.Site, mysql=None) -> dict:
    databases = db.query(Database).filter(Database.site_id == site.id).order_by(Database.name).all()
    sizes = {}
    if mysql is not None and databases:
        try:
            sizes = mysql.database_sizes([d.name for d in databases])
        except ExternalToolError as e:
            logger.warning("database sizes unavailable: %s", e.message)

    detail = schemas.SiteResponse.model_validate(site).model_dump()
    detail["databases"] = [
        {
            "id": d.id,
            "name": d.name,
            "size": sizes.get(d.name),
            "grants": [
                {
                    "db_user_id": g.db_user_id,
                    "username": g.user.username,
                    "password": g.user.password_plain,
                    "privileges": g.privileges.value,
                }
                for g in sorted(d.grants, key=lambda g: g.user.username)
            ],
        }
        for d in databases
    ]
    detail["ftp_users"] = [
        {
            "id": u.id,
            "username": u.username,
            "login": f"{u.username}@{site.domain}",
            "password": u.password_plain,
            "default_route": u.default_route or "",
        }
        for u in sorted(site.ftp_users, key=lambda u: u.username)
    ]
    detail["ssl_status"] = ssl_manager.cert_status(site.domain, cfg) if site.ssl else None
    detail["node_status"] = pm2_manager.app_status(site.id) if site.app_type == "node" else None
    detail["has_mysql_password"] = mysql is not None
    return detail
