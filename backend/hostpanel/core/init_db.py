import logging

from sqlalchemy.orm import Session

from hostpanel.core.config import Settings
from hostpanel.core.security import get_password_hash
from hostpanel.modules.users.models import User
from hostpanel.modules.wizard.service import get_wizard_state

logger = logging.getLogger(__name__)


def init_db(db: Session, settings: Settings):
    """
    Runs on every start. Creates the wizard row and, when FIRST_SUPERUSER and
    FIRST_SUPERUSER_PASSWORD are set, that account if it does not exist yet.
    Without them the first account comes from POST /auth/setup.
    """
    get_wizard_state(db)

    username = settings.first_superuser
    password = settings.first_superuser_password
    if username and password:
        user = db.query(User).filter(User.username == username).first()
        if not user:
            db.add(User(username=username, hashed_password=get_password_hash(password)))
            logger.info("[INIT] superuser %s created", username)
        else:
            logger.info("[INIT] superuser %s already exists, skipping", username)

    db.commit()
