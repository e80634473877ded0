"""Per-user notification reads and writes.

``snapshot`` feeds both ``GET /api/notifications`` and the notifications
stream. ``record`` is the write hook the rest of the platform calls when a
like, clap, follow or moderation decision happens; streams notice the new row
on their next tick.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, joinedload

from pressroom.db.models import Notification, NotificationKind
from pressroom.time_utils import isoformat_utc


logger = structlog.get_logger(__name__)


class NotificationService:
    """Read and update per-user notifications for the live stream and REST API."""

    def __init__(self, *, history_limit: int = 20) -> None:
        self.history_limit = max(1, history_limit)

    def snapshot(self, session: Session, user_id: int) -> Dict[str, Any]:
        """Return the newest notifications for *user_id* plus the unread count.

        The list is capped at ``history_limit`` while the unread count covers
        every notification, so an unread record older than the cap is counted
        but not listed.
        """

        rows = session.scalars(
            select(Notification)
            .options(joinedload(Notification.actor), joinedload(Notification.article))
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(self.history_limit)
        ).all()
        return {
            "notifications": [self._to_item(row) for row in rows],
            "unreadCount": self.unread_count(session, user_id),
        }

    def unread_count(self, session: Session, user_id: int) -> int:
        count = session.scalar(
            select(func.count())
            .select_from(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        )
        return int(count or 0)

    def mark_all_read(self, session: Session, user_id: int) -> int:
        """Mark every unread notification for *user_id* as read; return how many changed."""

        result = session.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True)
        )
        session.flush()
        changed = int(result.rowcount or 0)
        logger.info("notifications_marked_read", user_id=user_id, count=changed)
        return changed

    def record(
        self,
        session: Session,
        user_id: int,
        kind: NotificationKind | str,
        message: str,
        *,
        actor_id: Optional[int] = None,
        article_id: Optional[int] = None,
    ) -> Notification:
        """Persist a notification for *user_id*; streams pick it up on their next tick.

        The caller owns the transaction. Unknown kinds raise ``ValueError``.
        """

        value = kind.value if isinstance(kind, NotificationKind) else NotificationKind(kind).value
        notification = Notification(
            type=value,
            message=message.strip() or "You have a new notification.",
            user_id=user_id,
            actor_id=actor_id,
            article_id=article_id,
        )
        session.add(notification)
        session.flush()
        return notification

    @staticmethod
    def _to_item(row: Notification) -> Dict[str, Any]:
        actor = row.actor
        article = row.article
        return {
            "id": row.id,
            "type": row.type,
            "message": row.message,
            "isRead": bool(row.is_read),
            "userId": row.user_id,
            "actorId": row.actor_id,
            "articleId": row.article_id,
            "createdAt": isoformat_utc(row.created_at),
            "actor": {"id": actor.id, "name": actor.name} if actor is not None else None,
            "article": {"id": article.id, "slug": article.slug} if article is not None else None,
        }


__all__ = ["NotificationService"]
