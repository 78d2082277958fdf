"""Business logic for a member's game catalog."""
import logging
from typing import Dict, List, Optional, Tuple

from brpir import STATUSES, filter_games

_log = logging.getLogger('brpir.service.GameService')


class GameService:
    """Validates the add/edit game form and applies catalog operations,
    delegating persistence to the ``database`` module.

    Rules
    -----
    * ``title`` and ``platform`` are required.
    * ``status`` is one of ``playing``, ``completed``, ``backlog``,
      ``dropped`` (default ``backlog``).
    * ``rating`` is an integer **1–10**; ``0`` or empty means "not rated".
    * Only the owner of a game may edit or delete it.
    """

    def __init__(self, db_module) -> None:
        self._db = db_module

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def parse_form(form: Dict) -> Tuple[Optional[Dict], str]:
        """Normalise a submitted game form.

        Returns:
            ``(data, '')`` when valid; ``(None, reason)`` otherwise.
        """
        title = (form.get('title') or '').strip()
        platform = (form.get('platform') or '').strip()
        status = (form.get('status') or 'backlog').strip()
        if not title:
            return None, "Title is required"
        if not platform:
            return None, "Platform is required"
        if status not in STATUSES:
            return None, f"Invalid status '{status}'"

        raw_rating = form.get('rating')
        if raw_rating in (None, '', 0, '0'):
            rating = None
        else:
            try:
                rating = int(raw_rating)
            except (TypeError, ValueError):
                return None, "Rating must be a whole number between 1 and 10"
            if not 1 <= rating <= 10:
                return None, "Rating must be a whole number between 1 and 10"

        return {
            'title': title,
            'platform': platform,
            'status': status,
            'rating': rating,
            'genre': (form.get('genre') or '').strip() or None,
            'cover_url': (form.get('cover_url') or '').strip() or None,
        }, ''

    @staticmethod
    def platforms_of(games: List[Dict]) -> List[str]:
        """Distinct platforms in first-seen order."""
        seen: List[str] = []
        for game in games:
            if game.get('platform') not in seen:
                seen.append(game.get('platform'))
        return seen

    def _owned(self, db, profile_id: str, game_id: str) -> Tuple[Optional[Dict], str]:
        game = self._db.get_game(db, game_id)
        if not game:
            return None, "Game not found"
        if game['profile_id'] != profile_id:
            return None, "You can only change games in your own catalog"
        return game, ''

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, db, game_id: str) -> Optional[Dict]:
        return self._db.get_game(db, game_id)

    def list_for(self, db, profile_id: str, status: str = 'all',
                 platform: str = 'all', search: str = '') -> List[Dict]:
        """Return a member's games ordered by title, optionally filtered."""
        return filter_games(self._db.get_games(db, profile_id), status, platform, search)

    def platforms_for(self, db, profile_id: str) -> List[str]:
        return self.platforms_of(self._db.get_games(db, profile_id))

    def others(self, db, profile_id: str,
               titles: Optional[List[str]] = None) -> List[Dict]:
        """Other members' games, newest first, with the owner embedded."""
        return self._db.get_other_games(db, profile_id, titles=titles)

    def all_games(self, db) -> List[Dict]:
        return self._db.get_all_games(db)

    def add(self, db, profile_id: str, form: Dict) -> Tuple[Optional[Dict], str]:
        """Add a game to *profile_id*'s catalog.

        Returns:
            ``(game, message)`` on success; ``(None, reason)`` on failure.
        """
        data, error = self.parse_form(form)
        if error:
            return None, error
        game = self._db.create_game(db, profile_id, data)
        if not game:
            return None, "Failed to add game"
        _log.info('Profile %s added %s (%s)', profile_id, game['title'], game['platform'])
        return game, "Game added"

    def update(self, db, profile_id: str, game_id: str,
               form: Dict) -> Tuple[Optional[Dict], str]:
        """Replace the editable fields of one of the owner's games."""
        _, error = self._owned(db, profile_id, game_id)
        if error:
            return None, error
        data, error = self.parse_form(form)
        if error:
            return None, error
        game = self._db.update_game(db, game_id, data)
        if not game:
            return None, "Failed to update game"
        return game, "Game updated"

    def delete(self, db, profile_id: str, game_id: str) -> Tuple[bool, str]:
        """Remove one of the owner's games (comments and likes go with it)."""
        _, error = self._owned(db, profile_id, game_id)
        if error:
            return False, error
        if not self._db.delete_game(db, game_id):
            return False, "Failed to remove game"
        _log.info('Profile %s removed game %s', profile_id, game_id)
        return True, "Game removed"
