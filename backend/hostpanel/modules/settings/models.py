from datetime import datetime

from sqlalchemy import Column, DateTime, String, Text

from hostpanel.core.database import Base


class Setting(Base):
    __tablename__ = "settings"

    key = Column(String(64), primary_key=True)
    value = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
