"""Business logic for member profiles."""
import logging
from typing import Dict, List, Optional, Tuple

_log = logging.getLogger('brpir.service.ProfileService')

MIN_USERNAME_LENGTH = 3
MAX_BIO_LENGTH = 500


class ProfileService:
    """Reads and edits member profiles, delegating persistence to the
    ``database`` module's helper functions.

    All methods accept a *db* SQLAlchemy session as the first argument so
    that callers (Flask route handlers) control the session lifecycle.
    """

    def __init__(self, db_module) -> None:
        """
        Args:
            db_module: The imported ``database`` module (or any object that
                exposes ``get_profile``, ``get_profile_by_username``,
                ``get_profiles`` and ``update_profile``).
        """
        self._db = db_module

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def needs_setup(profile: Optional[Dict]) -> bool:
        """Return ``True`` for a freshly registered profile that was never
        filled in (no display name and no bio)."""
        if not profile:
            return True
        return not profile.get('display_name') and not profile.get('bio')

    @staticmethod
    def initials(profile: Optional[Dict]) -> str:
        """Two upper-case letters taken from the display name or username."""
        if not profile:
            return ''
        name = profile.get('display_name') or profile.get('username') or ''
        return name[:2].upper()

    def _validate(self, db, profile_id: str, username: str,
                  bio: str = '', avatar_url: str = '') -> Optional[str]:
        if not username:
            return "Username is required"
        if len(username) < MIN_USERNAME_LENGTH:
            return f"Username must be at least {MIN_USERNAME_LENGTH} characters"
        if bio and len(bio) > MAX_BIO_LENGTH:
            return f"Bio must be at most {MAX_BIO_LENGTH} characters"
        if avatar_url and not avatar_url.startswith(('http://', 'https://')):
            return "Avatar URL must start with http:// or https://"
        existing = self._db.get_profile_by_username(db, username)
        if existing and existing['id'] != profile_id:
            return "Username already taken"
        return None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, db, profile_id: str) -> Optional[Dict]:
        """Return the profile dict for *profile_id*, or ``None``."""
        return self._db.get_profile(db, profile_id)

    def get_by_username(self, db, username: str) -> Optional[Dict]:
        return self._db.get_profile_by_username(db, username)

    def list_members(self, db) -> List[Dict]:
        """Return every member ordered by username."""
        return self._db.get_profiles(db)

    def setup(self, db, profile_id: str, username: str,
              display_name: str = '', bio: str = '') -> Tuple[bool, str]:
        """First-time profile configuration right after registration.

        Returns:
            ``(True, message)`` on success; ``(False, reason)`` on failure.
        """
        username = (username or '').strip()
        error = self._validate(db, profile_id, username, bio)
        if error:
            return False, error
        # display_name falls back to the username so needs_setup() clears
        ok = self._db.update_profile(db, profile_id, username=username,
                                     display_name=(display_name or '').strip() or username,
                                     bio=(bio or '').strip() or None)
        if not ok:
            return False, "Failed to save profile"
        _log.info('Profile %s configured as %s', profile_id, username)
        return True, "Profile configured"

    def update(self, db, profile_id: str, username: str,
               display_name: str = '', bio: str = '',
               avatar_url: str = '') -> Tuple[bool, str]:
        """Update the editable profile fields.

        Empty optional fields are stored as ``NULL``.

        Returns:
            ``(True, message)`` on success; ``(False, reason)`` on failure.
        """
        username = (username or '').strip()
        avatar_url = (avatar_url or '').strip()
        error = self._validate(db, profile_id, username, bio, avatar_url)
        if error:
            return False, error
        ok = self._db.update_profile(db, profile_id, username=username,
                                     display_name=(display_name or '').strip() or None,
                                     bio=(bio or '').strip() or None,
                                     avatar_url=avatar_url or None)
        if not ok:
            return False, "Failed to save profile"
        return True, "Profile updated"
