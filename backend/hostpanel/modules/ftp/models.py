from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from hostpanel.core.database import Base


class FtpUser(Base):
    __tablename__ = "ftp_users"
    __table_args__ = (UniqueConstraint("site_id", "username", name="uq_ftp_site_username"),)

    id = Column(Integer, primary_key=True, index=True)
    site_id = Column(Integer, ForeignKey("sites.id"), nullable=False)
    username = Column(String(64), nullable=False)
    password_hash = Column(String, nullable=False)
    password_plain = Column(String, nullable=True)
    crypt_hash = Column(String, nullable=True)  # $6$ for the ProFTPD passwd file
    default_route = Column(String, default="")  # subfolder under the docroot
    created_at = Column(DateTime, default=datetime.utcnow)

    site = relationship("Site", back_populates="ftp_users")
