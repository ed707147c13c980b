from sqlalchemy import Column, String, DateTime
from datetime import datetime
from models.base import Base, JSONType


class SystemSetting(Base):
    """
    Key-value store for runtime settings.

    Known keys:
    - processing_speed: hot-reloadable processing config
    - marketplace_tokens: marketplace access token (+ optional user id)
    - fx_rate: latest exchange rate with its source
    """
    __tablename__ = "system_settings"

    key = Column(String(100), primary_key=True)
    value = Column(JSONType, nullable=False)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
