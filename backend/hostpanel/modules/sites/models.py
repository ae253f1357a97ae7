from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from hostpanel.core.database import Base


class Site(Base):
    __tablename__ = "sites"

    id = Column(Integer, primary_key=True, index=True)
    domain = Column(String(253), unique=True, index=True, nullable=False)
    docroot = Column(String, nullable=False)
    app_type = Column(String(10), default="php")  # php, node

    # PHP only
    php_version = Column(String(10), nullable=True)
    htaccess_compat = Column(Boolean, default=False)
    dedicated_pool = Column(Boolean, default=False)
    php_options = Column(JSON, nullable=True)  # {"memory_limit": "256M"}

    # Node only
    node_port = Column(Integer, nullable=True)
    clone_repo_url = Column(String(2048), nullable=True)
    clone_branch = Column(String, nullable=True)
    clone_subfolder = Column(String, nullable=True)

    ssl = Column(Boolean, default=False)
    ftp_enabled = Column(Boolean, default=False)
    enabled = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    databases = relationship("Database", back_populates="site")
    ftp_users = relationship("FtpUser", back_populates="site", cascade="all, delete-orphan")
