from datetime import datetime

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from hostpanel.core.database import Base
from hostpanel.system.mysql_manager import Privilege


class Database(Base):
    __tablename__ = "databases"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(64), unique=True, index=True, nullable=False)
    site_id = Column(Integer, ForeignKey("sites.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    site = relationship("Site", back_populates="databases")
    grants = relationship("DbGrant", back_populates="database", cascade="all, delete-orphan")


class DbUser(Base):
    __tablename__ = "db_users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(32), unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    # Recoverable copy so the panel can show credentials again
    password_plain = Column(String, nullable=True)
    host = Column(String, default="localhost")
    created_at = Column(DateTime, default=datetime.utcnow)

    grants = relationship("DbGrant", back_populates="user", cascade="all, delete-orphan")


class DbGrant(Base):
    __tablename__ = "db_grants"
    __table_args__ = (UniqueConstraint("database_id", "db_user_id", name="uq_grant_database_user"),)

    id = Column(Integer, primary_key=True, index=True)
    database_id = Column(Integer, ForeignKey("databases.id"), nullable=False)
    db_user_id = Column(Integer, ForeignKey("db_users.id"), nullable=False)
    privileges = Column(Enum(Privilege), default=Privilege.ALL, nullable=False)

    database = relationship("Database", back_populates="grants")
    user = relationship("DbUser", back_populates="grants")
