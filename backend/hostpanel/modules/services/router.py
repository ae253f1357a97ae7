import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from hostpanel.core.database import get_db
from hostpanel.core.exceptions import InvalidInput
from hostpanel.modules.auth.deps import get_current_user
from hostpanel.modules.users.models import User
from hostpanel.modules.wizard.service import get_wizard_state
from hostpanel.system import service_manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/services", tags=["Services"], dependencies=[Depends(get_current_user)])


@router.get("")
def list_services(db: Session = Depends(get_db)):
    state = get_wizard_state(db)
    services = service_manager.installed_services(state)
    for service in services:
        service["status"] = service_manager.service_status(service["unit"])
    return services


@router.post("/{unit}/{action}")
def control_service(unit: str, action: str, db: Session = Depends(get_db),
                    current_user: User = Depends(get_current_user)):
    service_manager.require_allowed(unit, get_wizard_state(db))
    if action not in service_manager.ACTIONS:
        raise InvalidInput(f"Unknown action: {action}")

    logger.info("%s requested %s on %s", current_user.username, action, unit)
    service_manager.control_service(unit, action)
    return {"unit": unit, "action": action, "status": service_manager.service_status(unit)}


@router.get("/{unit}/logs")
def service_logs(unit: str, lines: int = 100, db: Session = Depends(get_db)):
    service_manager.require_allowed(unit, get_wizard_state(db))
    return {"unit": unit, "logs": service_manager.service_logs(unit, lines)}
