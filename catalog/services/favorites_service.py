"""Business logic for the ordered favorites list."""
from typing import Dict, List, Tuple

TOP_FAVORITES = 10


class FavoritesService:
    """Manages a member's favorite games and their display order, delegating
    persistence to the ``database`` module.

    Favorites are ordinary games flagged ``is_favorite``; ``favorite_position``
    (1-based) orders them, and games without a position sort last.
    """

    def __init__(self, db_module) -> None:
        self._db = db_module

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def move(ids: List[str], active_id: str, over_id: str) -> List[str]:
        """Return a copy of *ids* with *active_id* moved to the index of
        *over_id* (drag-and-drop reorder).

        The list is returned unchanged when both ids are equal or either is
        unknown.
        """
        items = list(ids)
        if active_id == over_id or active_id not in items or over_id not in items:
            return items
        old_index = items.index(active_id)
        new_index = items.index(over_id)
        items.insert(new_index, items.pop(old_index))
        return items

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_ordered(self, db, profile_id: str) -> List[Dict]:
        """Return *profile_id*'s favorites in display order."""
        return self._db.get_favorite_games(db, profile_id)

    def top(self, db, profile_id: str, limit: int = TOP_FAVORITES) -> List[Dict]:
        """Return the first *limit* favorites (public profile section)."""
        return self.get_ordered(db, profile_id)[:limit]

    def toggle(self, db, profile_id: str, game_id: str) -> Tuple[bool, str]:
        """Flag or unflag one of the owner's games as favorite.

        A new favorite is appended after the current last position.
        """
        game = self._db.get_game(db, game_id)
        if not game:
            return False, "Game not found"
        if game['profile_id'] != profile_id:
            return False, "You can only change games in your own catalog"

        if game['is_favorite']:
            ok = self._db.set_favorite(db, game_id, False)
            return (True, "Removed from favorites") if ok else (False, "Failed to update favorites")

        positions = [g['favorite_position'] for g in self.get_ordered(db, profile_id)
                     if g['favorite_position'] is not None]
        next_position = max(positions, default=0) + 1
        ok = self._db.set_favorite(db, game_id, True, next_position)
        return (True, "Added to favorites") if ok else (False, "Failed to update favorites")

    def save_order(self, db, profile_id: str, ordered_ids: List[str]) -> Tuple[bool, str]:
        """Persist ``favorite_position = index + 1`` for every id in order.

        Every id must be one of the owner's current favorites.

        Returns:
            ``(True, message)`` on success; ``(False, reason)`` on failure.
        """
        if len(set(ordered_ids)) != len(ordered_ids):
            return False, "Duplicate games in favorites order"
        favorite_ids = {g['id'] for g in self.get_ordered(db, profile_id)}
        unknown = [game_id for game_id in ordered_ids if game_id not in favorite_ids]
        if unknown:
            return False, "Only your own favorite games can be reordered"
        if not ordered_ids:
            return True, "Favorites order saved"
        positions = {game_id: index + 1 for index, game_id in enumerate(ordered_ids)}
        if not self._db.set_favorite_positions(db, positions):
            return False, "Failed to save favorites order"
        return True, "Favorites order saved"
