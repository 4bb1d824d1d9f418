"""
Webhook Config Service
Resolves the diagram workflow target from persisted app_settings layered over
process defaults.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from allops_pm.config import Settings
from allops_pm.database import transaction
from allops_pm.exceptions import InvalidInputError
from allops_pm.pm_engine.models.app_setting import AppSetting

logger = logging.getLogger(__name__)


class WebhookMode(str, enum.Enum):
    TEST = "TEST"
    PRD = "PRD"


MODE_KEY = "n8n_webhook_mode"
TEST_URL_KEY = "n8n_webhook_test_url"
PRD_URL_KEY = "n8n_webhook_prd_url"
SETTING_KEYS = (MODE_KEY, TEST_URL_KEY, PRD_URL_KEY)

UNSET: Any = object()


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def parse_mode(value: Any) -> Optional[WebhookMode]:
    if not isinstance(value, str):
        return None
    upper = value.strip().upper()
    if upper == WebhookMode.PRD.value:
        return WebhookMode.PRD
    if upper == WebhookMode.TEST.value:
        return WebhookMode.TEST
    return None


def resolve_active_url(
    mode: WebhookMode, test_url: Optional[str], prd_url: Optional[str]
) -> Optional[str]:
    if mode == WebhookMode.PRD:
        return prd_url or test_url or None
    return test_url or prd_url or None


@dataclass(frozen=True)
class WebhookDefaults:
    mode: WebhookMode = WebhookMode.PRD
    test_url: Optional[str] = None
    prd_url: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "WebhookDefaults":
        return cls(
            mode=parse_mode(settings.WEBHOOK_MODE) or WebhookMode.PRD,
            test_url=_clean(settings.WEBHOOK_TEST_URL),
            prd_url=_clean(settings.WEBHOOK_PRD_URL),
        )


@dataclass(frozen=True)
class WebhookConfig:
    mode: WebhookMode
    test_url: Optional[str]
    prd_url: Optional[str]
    active_url: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "testUrl": self.test_url,
            "prdUrl": self.prd_url,
            "activeUrl": self.active_url,
        }


class WebhookConfigService:
    def __init__(self, session: Session, defaults: WebhookDefaults):
        self.session = session
        self.defaults = defaults

    def _read_overrides(self) -> Dict[str, str]:
        try:
            rows = (
                self.session.query(AppSetting)
                .filter(AppSetting.setting_key.in_(SETTING_KEYS))
                .all()
            )
        except SQLAlchemyError as exc:
            logger.warning("Unable to read app_settings; falling back to defaults: %s", exc)
            self.session.rollback()
            return {}
        return {
            row.setting_key: row.setting_value
            for row in rows
            if row.setting_key and _clean(row.setting_value)
        }

    def _resolve(self, overrides: Dict[str, str]) -> WebhookConfig:
        mode = parse_mode(overrides.get(MODE_KEY)) or self.defaults.mode
        test_url = _clean(overrides.get(TEST_URL_KEY)) or self.defaults.test_url
        prd_url = _clean(overrides.get(PRD_URL_KEY)) or self.defaults.prd_url
        return WebhookConfig(
            mode=mode,
            test_url=test_url,
            prd_url=prd_url,
            active_url=resolve_active_url(mode, test_url, prd_url),
        )

    def get_config(self) -> WebhookConfig:
        return self._resolve(self._read_overrides())

    def update_config(
        self,
        *,
        mode: Any = UNSET,
        test_url: Any = UNSET,
        prd_url: Any = UNSET,
    ) -> WebhookConfig:
        """
        Apply a partial update.

        Omitted fields are left alone; a blank/None URL drops the stored
        override so the default applies again. The prospective configuration
        is validated before anything is written.
        """
        changes: Dict[str, Optional[str]] = {}

        if mode is not UNSET and mode not in (None, ""):
            parsed = parse_mode(mode)
            if parsed is None:
                raise InvalidInputError("mode must be TEST or PRD", field="mode")
            changes[MODE_KEY] = parsed.value
        if test_url is not UNSET:
            changes[TEST_URL_KEY] = _clean(test_url)
        if prd_url is not UNSET:
            changes[PRD_URL_KEY] = _clean(prd_url)

        overrides = self._read_overrides()
        prospective = dict(overrides)
        for key, value in changes.items():
            if value is None:
                prospective.pop(key, None)
            else:
                prospective[key] = value

        resolved = self._resolve(prospective)
        if resolved.mode == WebhookMode.PRD and not resolved.prd_url:
            raise InvalidInputError("PRD URL is required when mode is PRD", field="prdUrl")
        if not resolved.test_url and not resolved.prd_url:
            raise InvalidInputError("At least one webhook URL must be configured")

        with transaction(self.session):
            for key, value in changes.items():
                self._persist(key, value)

        logger.info(
            "Webhook settings updated: mode=%s active=%s", resolved.mode.value, resolved.active_url
        )
        return self.get_config()

    def _persist(self, key: str, value: Optional[str]) -> None:
        existing = self.session.get(AppSetting, key)
        if value is None:
            if existing is not None:
                self.session.delete(existing)
            return
        if existing is not None:
            existing.setting_value = value
            self.session.add(existing)
            return
        self.session.add(AppSetting(setting_key=key, setting_value=value))
