"""Business logic for liking games."""
from typing import Dict, List, Tuple


class LikeService:
    """Toggles likes on games, delegating persistence to the ``database``
    module. A member has at most one like per game."""

    def __init__(self, db_module) -> None:
        self._db = db_module

    @staticmethod
    def is_liked(likes: List[Dict], game_id: str) -> bool:
        """Return ``True`` if *likes* contains a like for *game_id*."""
        return any(like['game_id'] == game_id for like in likes)

    def list_for_user(self, db, user_id: str) -> List[Dict]:
        return self._db.get_likes(db, user_id)

    def toggle(self, db, user_id: str, game_id: str) -> Tuple[bool, str]:
        """Like *game_id*, or remove the existing like.

        Returns:
            ``(True, 'Liked' | 'Unliked')`` on success; ``(False, reason)``
            on failure.
        """
        if not user_id:
            return False, "You must be logged in to like games"
        existing = next((like for like in self.list_for_user(db, user_id)
                         if like['game_id'] == game_id), None)
        if existing:
            if not self._db.delete_like(db, existing['id']):
                return False, "Failed to unlike game"
            return True, "Unliked"
        if not self._db.get_game(db, game_id):
            return False, "Game not found"
        if not self._db.create_like(db, user_id, game_id):
            return False, "Failed to like game"
        return True, "Liked"
