from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from allops_pm.database import transaction
from allops_pm.pm_engine.models.customer import Customer
from allops_pm.pm_engine.models.share_link import SHARE_LINK_TYPE_PROJECT, ShareLink

logger = logging.getLogger(__name__)


class ShareLinkService:
    """Read/append access to the per-customer diagram share link log."""

    def __init__(self, session: Session):
        self.session = session

    def get_customer(self, owner_id: int) -> Optional[Customer]:
        return self.session.get(Customer, owner_id)

    def latest(self, owner_id: int, *, fresh: bool = False) -> Optional[ShareLink]:
        """
        Newest `project` link for the owner, computed on every call.

        `fresh=True` ends the session's current read transaction first so rows
        committed meanwhile by other writers (the external workflow) are seen.
        """
        if fresh:
            self.session.rollback()
        return (
            self.session.query(ShareLink)
            .filter(
                ShareLink.owner_id == owner_id,
                func.lower(ShareLink.type) == SHARE_LINK_TYPE_PROJECT,
            )
            .order_by(ShareLink.created_at.desc(), ShareLink.id.desc())
            .first()
        )

    def record(self, owner_id: int, url: str) -> ShareLink:
        link = ShareLink(
            owner_id=owner_id,
            url=url,
            type=SHARE_LINK_TYPE_PROJECT,
            created_at=datetime.utcnow(),
        )
        with transaction(self.session):
            self.session.add(link)
            self.session.flush()
        logger.info("Recorded share link %s for customer %s", link.id, owner_id)
        return link
