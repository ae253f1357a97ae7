from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from hostpanel.core.database import Base


class WizardState(Base):
    """Singleton row (id=1) tracking setup progress and chosen components."""
    __tablename__ = "wizard_state"

    id = Column(Integer, primary_key=True, default=1)
    step = Column(String, default="welcome")
    completed = Column(Boolean, default=False)

    php_versions = Column(String, default="8.2")  # "8.1,8.2"
    php_fpm_config = Column(String, default="default")  # default, optimized
    web_server = Column(String, default="nginx")
    database_choice = Column(String, default="mysql")  # mysql, mariadb
    database_config = Column(String, default="default")
    node_version = Column(String, nullable=True)  # 18, 20, 22

    email_installed = Column(Boolean, default=False)
    ftp_installed = Column(Boolean, default=False)
    certbot_installed = Column(Boolean, default=False)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
