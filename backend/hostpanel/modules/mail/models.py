from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from hostpanel.core.database import Base


class MailDomain(Base):
    __tablename__ = "mail_domains"

    id = Column(Integer, primary_key=True, index=True)
    domain = Column(String(253), unique=True, index=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    mailboxes = relationship("Mailbox", back_populates="mail_domain", cascade="all, delete-orphan")


class Mailbox(Base):
    __tablename__ = "mailboxes"
    __table_args__ = (UniqueConstraint("mail_domain_id", "local_part", name="uq_mailbox_address"),)

    id = Column(Integer, primary_key=True, index=True)
    mail_domain_id = Column(Integer, ForeignKey("mail_domains.id"), nullable=False)
    local_part = Column(String(64), nullable=False)
    password_hash = Column(String, nullable=True)

    mail_domain = relationship("MailDomain", back_populates="mailboxes")
