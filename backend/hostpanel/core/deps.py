from fastapi import Depends, Request
from sqlalchemy.orm import Session

from hostpanel.core.config import Settings
from hostpanel.core.database import get_db
from hostpanel.core.flash import MessageQueue
from hostpanel.modules.settings.service import effective_settings


def get_base_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_config(request: Request, db: Session = Depends(get_db)) -> Settings:
    return effective_settings(db, request.app.state.settings)


def get_messages(request: Request) -> MessageQueue:
    return request.app.state.messages
