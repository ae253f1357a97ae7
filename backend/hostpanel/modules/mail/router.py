import logging
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from hostpanel.core.database import get_db
from hostpanel.core.exceptions import InvalidInput, NotFound
from hostpanel.core.validators import validate_domain
from hostpanel.modules.auth.deps import get_current_user
from hostpanel.modules.mail import models, schemas
from hostpanel.modules.wizard.deps import require_wizard_complete

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/mail",
    tags=["Mail"],
    dependencies=[Depends(get_current_user), Depends(require_wizard_complete)],
)


@router.get("", response_model=List[schemas.MailDomainResponse])
def list_mail_domains(db: Session = Depends(get_db)):
    rows = (
        db.query(models.MailDomain, func.count(models.Mailbox.id))
        .outerjoin(models.Mailbox, models.Mailbox.mail_domain_id == models.MailDomain.id)
        .group_by(models.MailDomain.id)
        .order_by(models.MailDomain.domain)
        .all()
    )
    return [
        {"id": d.id, "domain": d.domain, "mailbox_count": count, "created_at": d.created_at}
        for d, count in rows
    ]


@router.post("/domains", response_model=schemas.MailDomainResponse, status_code=201)
def add_mail_domain(payload: schemas.MailDomainCreate, db: Session = Depends(get_db)):
    domain = validate_domain(payload.domain)
    if db.query(models.MailDomain).filter(models.MailDomain.domain == domain).first():
        raise InvalidInput("Mail domain already exists")

    mail_domain = models.MailDomain(domain=domain)
    db.add(mail_domain)
    db.commit()
    db.refresh(mail_domain)
    logger.info("mail domain added: %s", domain)
    return {"id": mail_domain.id, "domain": mail_domain.domain, "mailbox_count": 0,
            "created_at": mail_domain.created_at}


@router.delete("/domains/{domain_id}")
def delete_mail_domain(domain_id: int, db: Session = Depends(get_db)):
    mail_domain = db.get(models.MailDomain, domain_id)
    if not mail_domain:
        raise NotFound("Mail domain not found")
    domain = mail_domain.domain
    db.delete(mail_domain)
    db.commit()
    return {"message": f"Mail domain {domain} deleted"}
