"""
Notification sink.

Notifications are written after the core mutation has committed, in their
own transaction. A failure here is logged and swallowed: the roster,
registration or match change that triggered it stays committed.
"""
import logging
from typing import Iterable, List, Optional

import redis
from sqlalchemy.exc import SQLAlchemyError

from shared.events import notification_event
from shared.pubsub import PubSubClient
from .models import db, Notification, NotificationType, User, AdminRoleType

logger = logging.getLogger(__name__)


class Notifier:

    def __init__(self, pubsub: PubSubClient = None):
        self.pubsub = pubsub

    def create(
        self,
        user_id: Optional[int],
        type: NotificationType,
        title: str,
        message: str,
        link_url: str = None
    ) -> Optional[Notification]:
        """Store a notification for one user and fan it out. Never raises."""
        if not user_id:
            return None

        try:
            note = Notification(
                user_id=user_id,
                type=type,
                title=title,
                message=message,
                link_url=link_url,
            )
            db.session.add(note)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.warning(f"Failed to store {type.value} notification for user {user_id}: {e}")
            return None

        if self.pubsub:
            try:
                event = notification_event(user_id, note.to_dict(), link_url)
                self.pubsub.publish_user_notification(user_id, event)
            except redis.RedisError as e:
                logger.warning(f"Failed to publish notification {note.id} for user {user_id}: {e}")

        return note

    def create_many(
        self,
        user_ids: Iterable[Optional[int]],
        type: NotificationType,
        title: str,
        message: str,
        link_url: str = None
    ) -> List[Notification]:
        created = []
        for user_id in dict.fromkeys(u for u in user_ids if u):
            note = self.create(user_id, type, title, message, link_url)
            if note:
                created.append(note)
        return created

    def admin_user_ids(self, roles=(AdminRoleType.TOURNAMENT_ADMIN, AdminRoleType.SUPER_ADMIN)) -> List[int]:
        users = User.query.filter(User.admin_role.in_(roles)).all()
        return [u.id for u in users]

    def list_for_user(self, user_id: int, unread_only: bool = False, limit: int = 50) -> List[Notification]:
        query = Notification.query.filter_by(user_id=user_id)
        if unread_only:
            query = query.filter_by(is_read=False)
        return query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()

    def unread_count(self, user_id: int) -> int:
        return Notification.query.filter_by(user_id=user_id, is_read=False).count()

    def mark_read(self, user_id: int, notification_ids: Iterable[int] = None, mark_all: bool = False) -> int:
        query = Notification.query.filter_by(user_id=user_id, is_read=False)
        if not mark_all:
            query = query.filter(Notification.id.in_(list(notification_ids or [])))
        updated = query.update({'is_read': True}, synchronize_session='fetch')
        db.session.commit()
        return updated
