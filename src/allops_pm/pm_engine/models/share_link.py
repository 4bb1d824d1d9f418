from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text

from allops_pm.models.base import Base

SHARE_LINK_TYPE_PROJECT = "project"


class ShareLink(Base):
    """
    Append-only log of externally hosted diagram URLs per customer.

    The external workflow may insert rows here directly; the newest
    `project` row is the customer's current diagram.
    """

    __tablename__ = "url_share"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(Integer, ForeignKey("customer.id"), nullable=False)
    url = Column(Text, nullable=False)
    type = Column(String(40), nullable=False, default=SHARE_LINK_TYPE_PROJECT)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (Index("ix_url_share_owner_created", "owner_id", "created_at"),)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "url": self.url,
            "type": self.type,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
