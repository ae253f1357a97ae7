from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class MailDomainCreate(BaseModel):
    domain: str


class MailDomainResponse(BaseModel):
    id: int
    domain: str
    mailbox_count: int = 0
    created_at: Optional[datetime] = None
