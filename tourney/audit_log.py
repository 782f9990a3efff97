import json
import logging
from typing import Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from .models import db, AdminAuditLog

logger = logging.getLogger(__name__)


class AuditLog:
    """Append-only record of privileged actions, written after the action commits."""

    def record(
        self,
        actor_id: int,
        action: str,
        target_type: str,
        target_id,
        details: Union[dict, str, None] = None
    ) -> Optional[AdminAuditLog]:
        if isinstance(details, dict):
            details = json.dumps(details, default=str)

        try:
            entry = AdminAuditLog(
                actor_id=actor_id,
                action=action,
                target_type=target_type,
                target_id=str(target_id),
                details=details,
            )
            db.session.add(entry)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.warning(f"Failed to write audit record {action} {target_type}:{target_id}: {e}")
            return None

        logger.info(f"Audit: user {actor_id} {action} {target_type}:{target_id}")
        return entry
