"""Activity logging helpers.

Best-effort audit trail: failures should not break the main request.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from flask import has_request_context, request

from extensions import db

logger = logging.getLogger(__name__)


def log_activity(
    *,
    action: str,
    user_id: Optional[int] = None,
    tenant_id: Optional[int] = None,
    entity_type: Optional[str] = None,
    entity_id: Any = None,
    details: Optional[dict[str, Any]] = None,
) -> None:
    try:
        from models.user import ActivityLog

        in_request = has_request_context()
        log = ActivityLog(
            tenant_id=tenant_id,
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=(str(entity_id) if entity_id is not None else None),
            details=details,
            ip_address=(request.remote_addr if in_request else None),
            user_agent=(request.user_agent.string[:255] if in_request and request.user_agent else None),
        )
        db.session.add(log)
        db.session.commit()
    except Exception:
        logger.warning('Failed to write activity log for %s', action, exc_info=True)
        db.session.rollback()
