"""Business logic for game comments."""
from typing import Dict, List, Optional, Tuple


class CommentService:
    """Lists, adds, edits and deletes comments on games.

    Only the author of a comment may edit or delete it; blank comments are
    rejected.
    """

    def __init__(self, db_module) -> None:
        self._db = db_module

    def _authored(self, db, profile_id: str, comment_id: str) -> Optional[str]:
        comment = self._db.get_comment(db, comment_id)
        if not comment:
            return "Comment not found"
        if comment['profile_id'] != profile_id:
            return "You can only change your own comments"
        return None

    def list_for_game(self, db, game_id: str) -> List[Dict]:
        """Return comments on *game_id*, newest first."""
        return self._db.get_comments(db, game_id)

    def add(self, db, profile_id: str, game_id: str,
            text: str) -> Tuple[Optional[Dict], str]:
        if not profile_id:
            return None, "You must be logged in to comment"
        text = (text or '').strip()
        if not text:
            return None, "Comment cannot be empty"
        if not self._db.get_game(db, game_id):
            return None, "Game not found"
        comment = self._db.create_comment(db, profile_id, game_id, text)
        if not comment:
            return None, "Failed to send comment"
        return comment, "Comment sent"

    def update(self, db, profile_id: str, comment_id: str, text: str) -> Tuple[bool, str]:
        text = (text or '').strip()
        if not text:
            return False, "Comment cannot be empty"
        error = self._authored(db, profile_id, comment_id)
        if error:
            return False, error
        if not self._db.update_comment(db, comment_id, text):
            return False, "Failed to update comment"
        return True, "Comment updated"

    def delete(self, db, profile_id: str, comment_id: str) -> Tuple[bool, str]:
        error = self._authored(db, profile_id, comment_id)
        if error:
            return False, error
        if not self._db.delete_comment(db, comment_id):
            return False, "Failed to delete comment"
        return True, "Comment deleted"
