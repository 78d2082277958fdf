"""Services package: expose all concrete services from one import."""
from .profile_service import ProfileService
from .game_service import GameService
from .favorites_service import FavoritesService
from .comment_service import CommentService
from .like_service import LikeService
from .notification_service import NotificationService
from .activity_service import ActivityService

__all__ = [
    'ProfileService',
    'GameService',
    'FavoritesService',
    'CommentService',
    'LikeService',
    'NotificationService',
    'ActivityService',
]
