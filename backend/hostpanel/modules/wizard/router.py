import logging

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from hostpanel.core.config import Settings
from hostpanel.core.database import get_db
from hostpanel.core.deps import get_config
from hostpanel.core.exceptions import InvalidInput
from hostpanel.modules.auth.deps import get_current_user
from hostpanel.modules.settings.service import get_setting, set_setting
from hostpanel.modules.users.models import User
from hostpanel.modules.wizard import schemas
from hostpanel.modules.wizard.service import get_wizard_state, snapshot_state
from hostpanel.system import package_installer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/wizard", tags=["Setup Wizard"])


@router.get("", response_model=schemas.WizardStateResponse)
def read_state(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    state = get_wizard_state(db)
    db.commit()
    return state


@router.post("/step/{step}", response_model=schemas.WizardStateResponse)
def set_step(step: str, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    if step not in schemas.WIZARD_STEPS:
        raise InvalidInput(f"Unknown step: {step}")
    state = get_wizard_state(db)
    state.step = step
    db.commit()
    return state


@router.post("/php", response_model=schemas.WizardStateResponse)
def choose_php(payload: schemas.PhpChoice, db: Session = Depends(get_db),
               current_user: User = Depends(get_current_user)):
    state = get_wizard_state(db)
    state.php_versions = ",".join(payload.versions)
    state.php_fpm_config = payload.fpm_config
    state.step = "web_server"
    db.commit()
    return state


@router.post("/database", response_model=schemas.WizardStateResponse)
def choose_database(payload: schemas.DatabaseChoice, db: Session = Depends(get_db),
                    current_user: User = Depends(get_current_user)):
    state = get_wizard_state(db)
    state.database_choice = payload.choice
    state.database_config = payload.config
    if payload.root_password:
        # used by debconf during install and by every database operation after
        set_setting(db, "mysql_root_password", payload.root_password)
    state.step = "node"
    db.commit()
    return state


@router.post("/components", response_model=schemas.WizardStateResponse)
def choose_components(payload: schemas.ComponentsChoice, db: Session = Depends(get_db),
                      current_user: User = Depends(get_current_user)):
    state = get_wizard_state(db)
    state.node_version = payload.node_version
    state.email_installed = payload.email
    state.ftp_installed = payload.ftp
    state.certbot_installed = payload.certbot
    state.step = "install"
    db.commit()
    return state


@router.post("/install")
def run_install(db: Session = Depends(get_db), cfg: Settings = Depends(get_config),
                current_user: User = Depends(get_current_user)):
    state = get_wizard_state(db)
    logger.info("wizard install started by %s", current_user.username)
    success, log = package_installer.run_install(
        state,
        root_password=get_setting(db, "mysql_root_password"),
        php_root=cfg.php_pool_dir,
        timeout=cfg.install_timeout,
    )
    if success:
        state.step = "finish"
    db.commit()
    return {"success": success, "log": log}


@router.get("/install/stream")
def stream_install(db: Session = Depends(get_db), cfg: Settings = Depends(get_config),
                   current_user: User = Depends(get_current_user)):
    state = snapshot_state(get_wizard_state(db))
    root_password = get_setting(db, "mysql_root_password")
    db.commit()
    logger.info("wizard install (stream) started by %s", current_user.username)
    generator = package_installer.stream_install(
        state,
        root_password=root_password,
        php_root=cfg.php_pool_dir,
        timeout=cfg.install_timeout,
    )
    return StreamingResponse(generator, media_type="text/plain; charset=utf-8",
                             headers={"Cache-Control": "no-store"})


@router.post("/complete", response_model=schemas.WizardStateResponse)
def complete(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    state = get_wizard_state(db)
    state.completed = True
    state.step = "finish"
    db.commit()
    return state
