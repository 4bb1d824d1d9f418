"""
Time-bucketed monitoring snapshots.

One table per import family, each holding exactly one row per
(plan_id, env_id, bucket_key). `bucket_key` is never NULL so the unique
constraint also covers snapshots whose date could not be derived; the empty
string stands for the unknown bucket.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Dict, Optional, Type

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declared_attr

from allops_pm.models.base import Base

UNKNOWN_BUCKET = ""


class SnapshotFamily(str, enum.Enum):
    CONTENT_SIZING = "content-sizing"
    API_RESPONSE = "api-response"
    OTHER_APP_RESPONSE = "other-app-response"


def bucket_to_key(bucket: Optional[str]) -> str:
    return bucket or UNKNOWN_BUCKET


def key_to_bucket(bucket_key: Optional[str]) -> Optional[str]:
    return bucket_key or None


class SnapshotMixin:
    id = Column(Integer, primary_key=True, autoincrement=True)
    bucket_key = Column(String(10), nullable=False, default=UNKNOWN_BUCKET)
    payload = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False)
    record_count = Column(Integer, nullable=False, default=1)
    imported_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    @declared_attr
    def plan_id(cls):
        return Column(Integer, ForeignKey("pm_plan.id"), nullable=False, index=True)

    @declared_attr
    def env_id(cls):
        return Column(Integer, ForeignKey("env.id"), nullable=False)

    @declared_attr
    def __table_args__(cls):
        return (
            UniqueConstraint(
                "plan_id", "env_id", "bucket_key", name=f"uq_{cls.__tablename__}_key"
            ),
        )

    @property
    def bucket(self) -> Optional[str]:
        return key_to_bucket(self.bucket_key)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "env_id": self.env_id,
            "bucket": self.bucket,
            "payload": self.payload,
            "record_count": self.record_count,
            "imported_at": self.imported_at.isoformat() if self.imported_at else None,
        }


class ContentSizingSnapshot(SnapshotMixin, Base):
    __tablename__ = "pm_app_content_sizing"


class ApiResponseSnapshot(SnapshotMixin, Base):
    __tablename__ = "pm_api_response"


class OtherAppResponseSnapshot(SnapshotMixin, Base):
    __tablename__ = "pm_app_other_api_response"


SNAPSHOT_MODELS: Dict[SnapshotFamily, Type[SnapshotMixin]] = {
    SnapshotFamily.CONTENT_SIZING: ContentSizingSnapshot,
    SnapshotFamily.API_RESPONSE: ApiResponseSnapshot,
    SnapshotFamily.OTHER_APP_RESPONSE: OtherAppResponseSnapshot,
}
