"""
Snapshot Import Service
Validates monitoring payloads against the plan/customer/environment anchors and
replaces the time-bucketed snapshot rows they map to.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from allops_pm.database import transaction
from allops_pm.exceptions import InternalError, InvalidInputError, MismatchError, NotFoundError
from allops_pm.pm_engine.models.customer import (
    Customer,
    CustomerEnvironment,
    Environment,
    PMPlan,
)
from allops_pm.pm_engine.models.snapshot import (
    SNAPSHOT_MODELS,
    ApiResponseSnapshot,
    ContentSizingSnapshot,
    OtherAppResponseSnapshot,
    SnapshotFamily,
)
from allops_pm.pm_engine.services.bucket_keys import (
    API_RESPONSE_RULE,
    CONTENT_SIZING_RULE,
    OTHER_APP_RESPONSE_RULE,
    derive_batch_bucket,
    derive_bucket,
)
from allops_pm.pm_engine.services.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)

ENV_ID_FIELDS = ("env_id", "envId")
ENV_NAME_FIELDS = ("env", "env_name", "environment", "envName")


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


@dataclass
class PlanContext:
    plan: PMPlan
    customer: Customer
    environments: List[Environment] = field(default_factory=list)

    def env_by_id(self, env_id: int) -> Optional[Environment]:
        for env in self.environments:
            if env.id == env_id:
                return env
        return None

    def env_by_name(self, name: str) -> Optional[Environment]:
        wanted = name.strip().lower()
        if not wanted:
            return None
        for env in self.environments:
            if (env.name or "").strip().lower() == wanted:
                return env
        return None

    def resolve_record_env(self, record: Mapping[str, Any]) -> Tuple[Optional[Environment], str]:
        """Environment a record refers to, or None with the reason it did not resolve."""
        refs: List[str] = []
        for key in ENV_ID_FIELDS:
            env_id = _as_int(record.get(key))
            if env_id is None:
                continue
            env = self.env_by_id(env_id)
            if env is not None:
                return env, ""
            refs.append(f"id {env_id}")
        for key in ENV_NAME_FIELDS:
            name = record.get(key)
            if not isinstance(name, str) or not name.strip():
                continue
            env = self.env_by_name(name)
            if env is not None:
                return env, ""
            refs.append(f"'{name.strip()}'")
        if not refs:
            return None, "environment reference missing"
        return None, f"environment {', '.join(refs)} is not linked to customer {self.customer.code}"


class SnapshotImportService:
    def __init__(
        self,
        session: Session,
        store: Optional[SnapshotStore] = None,
        *,
        today: Callable[[], date] = date.today,
    ):
        self.session = session
        self.store = store or SnapshotStore(session)
        self._today = today

    # -------------------- Validation --------------------

    def _load_plan(self, plan_id: Any) -> PMPlan:
        plan_key = _as_int(plan_id)
        if plan_key is None:
            raise InvalidInputError("pm_id must be a positive integer", field="pm_id")
        plan = self.session.get(PMPlan, plan_key)
        if plan is None:
            raise NotFoundError("PM plan not found", pm_id=plan_id)
        return plan

    def _load_context(self, plan_id: Any, cust_code: Any) -> PlanContext:
        plan = self._load_plan(plan_id)
        customer = plan.customer or self.session.get(Customer, plan.customer_id)
        if customer is None:
            raise NotFoundError("Customer for PM plan not found", pm_id=plan_id)

        supplied = cust_code.strip().lower() if isinstance(cust_code, str) else ""
        if supplied != (customer.code or "").strip().lower():
            raise MismatchError(
                "Customer code does not match the PM plan",
                expected=customer.code,
                received=cust_code,
            )

        environments = (
            self.session.query(Environment)
            .join(CustomerEnvironment, CustomerEnvironment.env_id == Environment.id)
            .filter(CustomerEnvironment.customer_id == customer.id)
            .order_by(Environment.id.asc())
            .all()
        )
        return PlanContext(plan=plan, customer=customer, environments=environments)

    @staticmethod
    def _require_linked_env(ctx: PlanContext, env_id: Any) -> Environment:
        env_key = _as_int(env_id)
        if env_key is None:
            raise InvalidInputError("env_id must be a positive integer", field="env_id")
        env = ctx.env_by_id(env_key)
        if env is None:
            raise MismatchError(
                "Environment is not linked to the customer",
                expected=[e.id for e in ctx.environments],
                received=env_key,
            )
        return env

    @staticmethod
    def _require_records(records: Any) -> List[Any]:
        if not isinstance(records, list) or not records:
            raise InvalidInputError("jsonData must be a non-empty array", field="jsonData")
        return records

    @contextmanager
    def _write(self, family: SnapshotFamily) -> Iterator[None]:
        try:
            with transaction(self.session):
                yield
        except SQLAlchemyError as exc:
            logger.error("Snapshot import (%s) rolled back: %s", family.value, exc)
            raise InternalError("Failed to store imported snapshot") from exc

    # -------------------- Imports --------------------

    def import_content_sizing(self, plan_id: Any, cust_code: Any, records: Any) -> Dict[str, Any]:
        ctx = self._load_context(plan_id, cust_code)
        records = self._require_records(records)

        # One row per (env, bucket); a later record in the batch replaces an earlier one.
        planned: Dict[Tuple[int, Optional[str]], Any] = {}
        skipped: List[Dict[str, Any]] = []
        for index, record in enumerate(records):
            if not isinstance(record, dict):
                skipped.append({"index": index, "reason": "record is not a JSON object"})
                continue
            env, reason = ctx.resolve_record_env(record)
            if env is None:
                skipped.append({"index": index, "reason": reason})
                continue
            planned[(env.id, derive_bucket(record, CONTENT_SIZING_RULE))] = record

        with self._write(SnapshotFamily.CONTENT_SIZING):
            for (env_id, bucket), record in planned.items():
                self.store.replace(
                    ContentSizingSnapshot,
                    plan_id=ctx.plan.id,
                    env_id=env_id,
                    bucket=bucket,
                    payload=record,
                )

        logger.info(
            "Content sizing import for plan %s: inserted=%s skipped=%s",
            ctx.plan.id,
            len(planned),
            len(skipped),
        )
        return {"inserted": len(planned), "skipped": skipped}

    def import_api_response(
        self, plan_id: Any, cust_code: Any, env_id: Any, records: Any
    ) -> Dict[str, Any]:
        ctx = self._load_context(plan_id, cust_code)
        env = self._require_linked_env(ctx, env_id)
        records = self._require_records(records)

        bucket = derive_batch_bucket(records, API_RESPONSE_RULE)
        with self._write(SnapshotFamily.API_RESPONSE):
            self.store.replace(
                ApiResponseSnapshot,
                plan_id=ctx.plan.id,
                env_id=env.id,
                bucket=bucket,
                payload=records,
                record_count=len(records),
            )
        logger.info("API response import for plan %s env %s bucket %s", ctx.plan.id, env.id, bucket)
        return {"inserted": 1, "bucket": bucket, "env_id": env.id}

    def import_other_app_response(
        self, plan_id: Any, cust_code: Any, records: Any, env_id: Any = None
    ) -> Dict[str, Any]:
        ctx = self._load_context(plan_id, cust_code)
        env: Optional[Environment] = None
        if env_id is not None and env_id != "":
            env = self._require_linked_env(ctx, env_id)
        records = self._require_records(records)

        if env is None:
            for record in records:
                if isinstance(record, dict):
                    env, _reason = ctx.resolve_record_env(record)
                    if env is not None:
                        break
        if env is None:
            raise InvalidInputError(
                "Unable to resolve an environment linked to the customer", field="env_id"
            )

        bucket = derive_batch_bucket(records, OTHER_APP_RESPONSE_RULE, today=self._today())
        with self._write(SnapshotFamily.OTHER_APP_RESPONSE):
            self.store.replace(
                OtherAppResponseSnapshot,
                plan_id=ctx.plan.id,
                env_id=env.id,
                bucket=bucket,
                payload=records,
                record_count=len(records),
            )
        logger.info(
            "Other app response import for plan %s env %s bucket %s", ctx.plan.id, env.id, bucket
        )
        return {"inserted": 1, "bucket": bucket, "env_id": env.id}

    # -------------------- Listing --------------------

    def list_snapshots(self, plan_id: Any, family: SnapshotFamily) -> List[Dict[str, Any]]:
        plan = self._load_plan(plan_id)
        model = SNAPSHOT_MODELS[family]
        env_names = {
            env.id: env.name
            for env in self.session.query(Environment)
            .join(CustomerEnvironment, CustomerEnvironment.env_id == Environment.id)
            .filter(CustomerEnvironment.customer_id == plan.customer_id)
            .all()
        }
        rows = []
        for snapshot in self.store.list_for_plan(model, plan.id):
            item = snapshot.to_dict()
            item["env_name"] = env_names.get(snapshot.env_id)
            rows.append(item)
        return rows
