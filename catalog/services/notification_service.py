"""Business logic for in-app notifications."""
from typing import Dict, List, Optional

from brpir import display_name

DASHBOARD_LIMIT = 10
HEADER_LIMIT = 20


class NotificationService:
    """Manages notifications for members, delegating persistence to
    the ``database`` module's helper functions.

    Notifications themselves are created by the backend when someone likes
    or comments on a member's game; this service reads them and toggles
    their read state.

    All methods accept a *db* SQLAlchemy session as the first argument so
    that callers (Flask route handlers) control the session lifecycle.
    """

    def __init__(self, db_module) -> None:
        """
        Args:
            db_module: The imported ``database`` module (or any object that
                exposes ``get_notifications`` and ``mark_notifications_read``).
        """
        self._db = db_module

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def unread_count(notifications: List[Dict]) -> int:
        return sum(1 for n in notifications if not n.get('is_read'))

    @staticmethod
    def describe(notification: Dict) -> str:
        """Return the user-facing text of *notification*.

        Examples::

            "alice liked your game Hades"
            "alice commented on Hades"
        """
        actor = display_name(notification.get('actor')) or 'Someone'
        meta = notification.get('metadata') or {}
        title = meta.get('game_title', '')
        kind = notification.get('type')
        if kind in ('like.game', 'game.like'):
            return f"{actor} liked your game {title}"
        if kind == 'comment.reply':
            if meta.get('reason') == 'thread':
                return f"{actor} commented on {title}, which you also commented on"
            return f"{actor} commented on {title}"
        return f"Notification from {actor}"

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def recent(self, db, user_id: str, limit: int = DASHBOARD_LIMIT) -> List[Dict]:
        """Return the newest *limit* notifications for *user_id*, each with a
        rendered ``text`` field."""
        notifications = self._db.get_notifications(db, user_id, limit=limit)
        for notification in notifications:
            notification['text'] = self.describe(notification)
        return notifications

    def mark_read(self, db, user_id: str, notification_id: int) -> bool:
        """Mark one notification as read."""
        return self._db.mark_notifications_read(db, user_id,
                                                notification_ids=[notification_id])

    def mark_all_read(self, db, user_id: str) -> bool:
        """Mark every unread notification of *user_id* as read."""
        return self._db.mark_notifications_read(db, user_id, notification_ids=None)

    def mark_many_read(self, db, user_id: str,
                       ids: Optional[List[int]]) -> bool:
        """Mark the given notification ids as read.

        An empty list is a no-op that still reports success.
        """
        if not ids:
            return True
        return self._db.mark_notifications_read(db, user_id, notification_ids=list(ids))
