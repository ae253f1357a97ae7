from fastapi import Depends
from sqlalchemy.orm import Session

from hostpanel.core.database import get_db
from hostpanel.core.exceptions import NotConfigured
from hostpanel.modules.wizard.service import get_wizard_state


def require_wizard_complete(db: Session = Depends(get_db)):
    state = get_wizard_state(db)
    if not state.completed:
        raise NotConfigured("Finish the setup wizard first")
    return state
