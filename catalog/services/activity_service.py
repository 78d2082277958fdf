"""Business logic for the public activity feed."""
from datetime import datetime
from typing import Dict, List, Optional

from brpir import display_name, status_label
from catalog.insights import time_ago

FEED_LIMIT = 50


class ActivityService:
    """Reads the activity feed and renders each entry as text.

    Entries that carry nothing worth showing (a ``game.update`` that changed
    neither status nor rating, or an unknown type) render as ``None`` and are
    left out of :meth:`feed`.
    """

    def __init__(self, db_module) -> None:
        self._db = db_module

    @staticmethod
    def describe(activity: Dict) -> Optional[str]:
        actor = display_name(activity.get('profile')) or 'Someone'
        meta = activity.get('metadata') or {}
        title = meta.get('game_title', '')
        kind = activity.get('type')

        if kind == 'game.new':
            return f"{actor} added {title} to the catalog"
        if kind == 'game.update':
            new_status = meta.get('new_status')
            if new_status and meta.get('old_status') != new_status:
                return f"{actor} changed the status of {title} to {status_label(new_status)}"
            new_rating = meta.get('new_rating')
            if new_rating and meta.get('old_rating') != new_rating:
                return f"{actor} rated {title} {new_rating}/10"
            return None
        if kind == 'comment.new':
            return f"{actor} commented on {title}"
        if kind == 'like.game':
            return f"{actor} liked {title}"
        return None

    def recent(self, db, limit: int = FEED_LIMIT) -> List[Dict]:
        """Return the newest *limit* raw activity rows."""
        return self._db.get_activities(db, limit=limit)

    def feed(self, db, limit: int = FEED_LIMIT,
             now: Optional[datetime] = None) -> List[Dict]:
        """Return renderable activities with ``text`` and ``time_ago`` set."""
        items = []
        for activity in self.recent(db, limit):
            text = self.describe(activity)
            if text is None:
                continue
            activity['text'] = text
            activity['time_ago'] = time_ago(activity.get('created_at'), now)
            items.append(activity)
        return items
