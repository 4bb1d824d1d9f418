from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional, Type

from sqlalchemy.orm import Session

from allops_pm.pm_engine.models.snapshot import SnapshotMixin, bucket_to_key

_KEY_COLUMNS = ["plan_id", "env_id", "bucket_key"]


class SnapshotStore:
    """Keyed replace of snapshot rows; the caller owns the transaction."""

    def __init__(self, session: Session):
        self.session = session

    def replace(
        self,
        model: Type[SnapshotMixin],
        *,
        plan_id: int,
        env_id: int,
        bucket: Optional[str],
        payload: Any,
        record_count: int = 1,
    ) -> None:
        values = {
            "plan_id": plan_id,
            "env_id": env_id,
            "bucket_key": bucket_to_key(bucket),
            "payload": payload,
            "record_count": record_count,
            "imported_at": datetime.utcnow(),
        }
        bind = self.session.get_bind()
        dialect = bind.dialect.name if bind is not None else "unknown"

        # Single-statement upsert so concurrent imports of one key cannot interleave.
        if dialect in ("postgresql", "sqlite"):
            if dialect == "postgresql":
                from sqlalchemy.dialects.postgresql import insert as dialect_insert
            else:
                from sqlalchemy.dialects.sqlite import insert as dialect_insert

            stmt = dialect_insert(model).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=_KEY_COLUMNS,
                set_={
                    "payload": stmt.excluded.payload,
                    "record_count": stmt.excluded.record_count,
                    "imported_at": stmt.excluded.imported_at,
                },
            )
            self.session.execute(stmt)
            return

        (
            self.session.query(model)
            .filter(
                model.plan_id == plan_id,
                model.env_id == env_id,
                model.bucket_key == values["bucket_key"],
            )
            .delete(synchronize_session=False)
        )
        self.session.add(model(**values))
        self.session.flush()

    def list_for_plan(self, model: Type[SnapshotMixin], plan_id: int) -> List[SnapshotMixin]:
        return (
            self.session.query(model)
            .filter(model.plan_id == plan_id)
            .order_by(model.env_id.asc(), model.bucket_key.desc())
            .populate_existing()
            .all()
        )
