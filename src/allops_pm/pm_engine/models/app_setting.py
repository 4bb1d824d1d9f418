from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, String, Text

from allops_pm.models.base import Base


class AppSetting(Base):
    __tablename__ = "app_settings"

    setting_key = Column(String(120), primary_key=True)
    setting_value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
