#!/usr/bin/env python3
"""
BrpirCatalog Web - Flask application for the social game catalog.
Serves the landing page, a JSON API for every catalog/social action and a
Server-Sent Events stream of new notifications.
"""

import argparse
import hashlib
import logging
import os
from contextlib import contextmanager
from functools import wraps
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv
from flask import Flask, Response, jsonify, render_template, request, session, stream_with_context
from werkzeug.exceptions import HTTPException

import brpir
import database
from catalog import insights
from catalog.realtime import NotificationBroadcaster, make_webhook_listener
from catalog.services import (
    ProfileService, GameService, FavoritesService, CommentService,
    LikeService, NotificationService, ActivityService,
)
from catalog.services.notification_service import DASHBOARD_LIMIT, HEADER_LIMIT

load_dotenv()

config = brpir.load_config(os.getenv('BRPIR_CONFIG', 'config.json'))

# Initialize logging early so database module logs are captured
log_level = config.get('log_level') or 'INFO'
brpir_logger = brpir.setup_logging(log_level)
web_logger = logging.getLogger('brpir.web')
try:
    os.makedirs('logs', exist_ok=True)
    fh = logging.FileHandler('logs/brpir_web.log')
    fh.setFormatter(logging.Formatter('[%(asctime)s] %(levelname)s %(name)s: %(message)s'))
    fh.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    web_logger.addHandler(fh)
except OSError:
    web_logger.warning('Could not create log file handler')

database.configure(config['database_url'])
DB_AVAILABLE = database.init_db()
if DB_AVAILABLE:
    web_logger.info('Database initialized successfully')
else:
    web_logger.warning('Database initialization reported failure')

profile_service = ProfileService(database)
game_service = GameService(database)
favorites_service = FavoritesService(database)
comment_service = CommentService(database)
like_service = LikeService(database)
notification_service = NotificationService(database)
activity_service = ActivityService(database)

# Realtime: every committed notification reaches the recipient's open streams
broadcaster = NotificationBroadcaster()
database.add_notification_listener(broadcaster.publish)
if config.get('webhook_url'):
    database.add_notification_listener(
        make_webhook_listener(config['webhook_url'], NotificationService.describe))
    web_logger.info('Forwarding notifications to webhook')

app = Flask(__name__)
app.secret_key = config.get('secret_key') or os.urandom(24)


def ensure_db_available() -> bool:
    """Try to (re)initialize DB if it was previously unavailable."""
    global DB_AVAILABLE
    if DB_AVAILABLE:
        return True
    try:
        DB_AVAILABLE = bool(database.init_db())
        if DB_AVAILABLE:
            web_logger.info('Database reconnected successfully')
        return DB_AVAILABLE
    except Exception as e:
        web_logger.exception('Database reconnect failed: %s', e)
        return False


@contextmanager
def open_db():
    """Yield a database session that is always closed afterwards."""
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _error(message: str, status: int = 400) -> Tuple[Response, int]:
    return jsonify({'error': message}), status


def _current_profile_id() -> Optional[str]:
    return session.get('profile_id')


class UserManager:
    """Registers members and verifies their credentials."""

    MIN_USERNAME = 3
    MIN_PASSWORD = 6

    def hash_password(self, password: str) -> str:
        """Hash a password"""
        return hashlib.sha256(password.encode()).hexdigest()

    def register(self, username: str, password: str) -> Tuple[Optional[Dict], str]:
        """Register a new member"""
        if not ensure_db_available():
            return None, "Database not available"
        if len(username) < self.MIN_USERNAME:
            return None, f"Username must be at least {self.MIN_USERNAME} characters"
        if len(password) < self.MIN_PASSWORD:
            return None, f"Password must be at least {self.MIN_PASSWORD} characters"

        with open_db() as db:
            if database.get_profile_by_username(db, username):
                return None, "Username already exists"
            profile = database.create_profile(db, username, self.hash_password(password))
        if not profile:
            return None, "Failed to create account"
        web_logger.info('Registered new member: %s', username)
        return profile, "Account created"

    def login(self, username: str, password: str) -> Tuple[Optional[Dict], str]:
        """Verify member credentials"""
        if not ensure_db_available():
            return None, "Database not available"
        with open_db() as db:
            profile = database.verify_profile_password(db, username, self.hash_password(password))
        if not profile:
            return None, "Invalid username or password"
        return profile, "Login successful"


# Global user manager
user_manager = UserManager()


def require_login(f):
    """Decorator to require a logged-in member"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _current_profile_id():
            return _error('Not logged in', 401)
        if not ensure_db_available():
            return _error('Database not available', 503)
        return f(*args, **kwargs)
    return decorated_function


@app.errorhandler(Exception)
def handle_unexpected_error(e):
    if isinstance(e, HTTPException):
        return e
    web_logger.exception('Unhandled error on %s: %s', request.path, e)
    return _error('Internal server error', 500)


@app.route('/')
def index():
    """Landing page"""
    return render_template('index.html')


@app.route('/api/status')
def api_status():
    """Get application status"""
    profile_id = _current_profile_id()
    if not profile_id:
        return jsonify({'logged_in': False, 'database': ensure_db_available()})
    if not ensure_db_available():
        return _error('Database not available', 503)
    with open_db() as db:
        profile = profile_service.get(db, profile_id)
    if not profile:
        session.clear()
        return jsonify({'logged_in': False, 'database': True})
    return jsonify({
        'logged_in': True,
        'database': True,
        'profile': profile,
        'initials': ProfileService.initials(profile),
        'needs_setup': ProfileService.needs_setup(profile),
    })


# ===========================================================================================
# Authentication Endpoints
# ===========================================================================================

@app.route('/api/auth/current', methods=['GET'])
def api_auth_current():
    """Get current logged-in member"""
    profile_id = _current_profile_id()
    if profile_id and ensure_db_available():
        with open_db() as db:
            profile = profile_service.get(db, profile_id)
        if profile:
            return jsonify({'profile': profile})
    return jsonify({'profile': None}), 401


@app.route('/api/auth/register', methods=['POST'])
def api_auth_register():
    """Register a new member and log them in"""
    data = request.get_json(silent=True) or {}
    username = (data.get('username') or '').strip()
    password = (data.get('password') or '').strip()
    web_logger.info('Register endpoint called for username=%s', username)

    if not username or not password:
        return _error('Username and password required')

    profile, message = user_manager.register(username, password)
    if not profile:
        return _error(message)

    session['profile_id'] = profile['id']
    session['username'] = profile['username']
    return jsonify({'message': message, 'profile': profile, 'needs_setup': True}), 201


@app.route('/api/auth/login', methods=['POST'])
def api_auth_login():
    """Log in a member"""
    data = request.get_json(silent=True) or {}
    username = (data.get('username') or '').strip()
    password = (data.get('password') or '').strip()
    web_logger.info('Login endpoint called for username=%s', username)

    if not username or not password:
        return _error('Username and password required')

    profile, message = user_manager.login(username, password)
    if not profile:
        return _error(message, 401)

    session['profile_id'] = profile['id']
    session['username'] = profile['username']
    web_logger.info('Member logged in: %s', username)
    return jsonify({
        'message': message,
        'profile': profile,
        'needs_setup': ProfileService.needs_setup(profile),
    })


@app.route('/api/auth/logout', methods=['POST'])
def api_auth_logout():
    """Log out the current member"""
    web_logger.info('Member logged out: %s', session.get('username'))
    session.clear()
    return jsonify({'message': 'See you soon! You have been logged out.'})


# ===========================================================================================
# Own profile
# ===========================================================================================

@app.route('/api/profile', methods=['GET'])
@require_login
def api_get_profile():
    with open_db() as db:
        profile = profile_service.get(db, _current_profile_id())
    if not profile:
        return _error('Profile not found', 404)
    return jsonify({'profile': profile, 'initials': ProfileService.initials(profile)})


@app.route('/api/profile/setup', methods=['POST'])
@require_login
def api_setup_profile():
    """First-time profile configuration"""
    data = request.get_json(silent=True) or {}
    profile_id = _current_profile_id()
    with open_db() as db:
        ok, message = profile_service.setup(
            db, profile_id,
            username=data.get('username', ''),
            display_name=data.get('display_name', ''),
            bio=data.get('bio', ''),
        )
        profile = profile_service.get(db, profile_id)
    if not ok:
        return _error(message)
    session['username'] = profile['username']
    return jsonify({'message': message, 'profile': profile})


@app.route('/api/profile', methods=['PUT', 'POST'])
@require_login
def api_update_profile():
    data = request.get_json(silent=True) or {}
    profile_id = _current_profile_id()
    with open_db() as db:
        ok, message = profile_service.update(
            db, profile_id,
            username=data.get('username', ''),
            display_name=data.get('display_name', ''),
            bio=data.get('bio', ''),
            avatar_url=data.get('avatar_url', ''),
        )
        profile = profile_service.get(db, profile_id)
    if not ok:
        return _error(message)
    session['username'] = profile['username']
    return jsonify({'message': message, 'profile': profile})


# ===========================================================================================
# Members
# ===========================================================================================

@app.route('/api/members', methods=['GET'])
def api_members():
    """List every member ordered by username"""
    if not ensure_db_available():
        return _error('Database not available', 503)
    with open_db() as db:
        members = profile_service.list_members(db)
    for member in members:
        member['initials'] = ProfileService.initials(member)
    return jsonify({'members': members})


@app.route('/api/members/<profile_id>', methods=['GET'])
def api_member_profile(profile_id: str):
    """Public profile: top favorites plus the filterable catalog"""
    if not ensure_db_available():
        return _error('Database not available', 503)
    status = request.args.get('status', 'all')
    platform = request.args.get('platform', 'all')
    search = request.args.get('search', '')
    viewer_id = _current_profile_id()

    with open_db() as db:
        profile = profile_service.get(db, profile_id)
        if not profile:
            return _error('Profile not found', 404)
        all_games = game_service.list_for(db, profile_id)
        favorites = favorites_service.top(db, profile_id)
        likes = like_service.list_for_user(db, viewer_id) if viewer_id else []

    games = brpir.filter_games(all_games, status, platform, search)
    for game in games:
        game['liked'] = LikeService.is_liked(likes, game['id'])
        game['status_label'] = brpir.status_label(game['status'])
        game['platform_icon'] = brpir.platform_icon(game['platform'])
    return jsonify({
        'profile': profile,
        'favorites': [dict(g, rank=i + 1, badge=insights.rank_badge(i)) for i, g in enumerate(favorites)],
        'games': games,
        'platforms': GameService.platforms_of(all_games),
    })


@app.route('/api/members/<profile_id>/games', methods=['GET'])
@require_login
def api_member_games(profile_id: str):
    """Another member's catalog, filtered by status"""
    with open_db() as db:
        profile = profile_service.get(db, profile_id)
        if not profile:
            return _error('Profile not found', 404)
        games = game_service.list_for(db, profile_id, status=request.args.get('status', 'all'))
    return jsonify({'profile': profile, 'games': games})


# ===========================================================================================
# Own catalog
# ===========================================================================================

@app.route('/api/games', methods=['GET'])
@require_login
def api_list_games():
    profile_id = _current_profile_id()
    with open_db() as db:
        games = game_service.list_for(
            db, profile_id,
            status=request.args.get('status', 'all'),
            platform=request.args.get('platform', 'all'),
            search=request.args.get('search', ''),
        )
        platforms = game_service.platforms_for(db, profile_id)
    for game in games:
        game['status_label'] = brpir.status_label(game['status'])
        game['status_color'] = brpir.status_color(game['status'])
        game['platform_icon'] = brpir.platform_icon(game['platform'])
    return jsonify({'games': games, 'platforms': platforms})


@app.route('/api/games', methods=['POST'])
@require_login
def api_add_game():
    form = request.get_json(silent=True) or {}
    with open_db() as db:
        game, message = game_service.add(db, _current_profile_id(), form)
    if not game:
        return _error(message)
    return jsonify({'message': message, 'game': game}), 201


@app.route('/api/games/<game_id>', methods=['PUT'])
@require_login
def api_update_game(game_id: str):
    form = request.get_json(silent=True) or {}
    with open_db() as db:
        if not game_service.get(db, game_id):
            return _error('Game not found', 404)
        game, message = game_service.update(db, _current_profile_id(), game_id, form)
    if not game:
        return _error(message)
    return jsonify({'message': message, 'game': game})


@app.route('/api/games/<game_id>', methods=['DELETE'])
@require_login
def api_delete_game(game_id: str):
    with open_db() as db:
        if not game_service.get(db, game_id):
            return _error('Game not found', 404)
        ok, message = game_service.delete(db, _current_profile_id(), game_id)
    if not ok:
        return _error(message)
    return jsonify({'message': message})


# ===========================================================================================
# Favorites
# ===========================================================================================

@app.route('/api/games/<game_id>/favorite', methods=['POST'])
@require_login
def api_toggle_favorite(game_id: str):
    with open_db() as db:
        ok, message = favorites_service.toggle(db, _current_profile_id(), game_id)
        game = game_service.get(db, game_id)
    if not ok:
        return _error(message, 404 if game is None else 400)
    return jsonify({'message': message, 'game': game})


@app.route('/api/favorites', methods=['GET'])
@require_login
def api_favorites():
    with open_db() as db:
        favorites = favorites_service.get_ordered(db, _current_profile_id())
    return jsonify({'favorites': favorites})


@app.route('/api/favorites/move', methods=['POST'])
@require_login
def api_move_favorite():
    """Preview a drag-and-drop move without saving it"""
    data = request.get_json(silent=True) or {}
    ids = data.get('ids') or []
    if not isinstance(ids, list):
        return _error('ids must be a list')
    return jsonify({'ids': FavoritesService.move(ids, data.get('active_id'), data.get('over_id'))})


@app.route('/api/favorites/order', methods=['PUT'])
@require_login
def api_save_favorite_order():
    data = request.get_json(silent=True) or {}
    ids = data.get('ids')
    if not isinstance(ids, list):
        return _error('ids must be a list')
    profile_id = _current_profile_id()
    with open_db() as db:
        ok, message = favorites_service.save_order(db, profile_id, ids)
        favorites = favorites_service.get_ordered(db, profile_id)
    if not ok:
        return _error(message)
    return jsonify({'message': message, 'favorites': favorites})


# ===========================================================================================
# Comments
# ===========================================================================================

@app.route('/api/games/<game_id>/comments', methods=['GET'])
@require_login
def api_list_comments(game_id: str):
    with open_db() as db:
        if not game_service.get(db, game_id):
            return _error('Game not found', 404)
        comments = comment_service.list_for_game(db, game_id)
    for comment in comments:
        comment['time_ago'] = insights.time_ago(comment['created_at'])
    return jsonify({'comments': comments})


@app.route('/api/games/<game_id>/comments', methods=['POST'])
@require_login
def api_add_comment(game_id: str):
    data = request.get_json(silent=True) or {}
    with open_db() as db:
        comment, message = comment_service.add(db, _current_profile_id(), game_id, data.get('comment', ''))
    if not comment:
        return _error(message, 404 if message == 'Game not found' else 400)
    return jsonify({'message': message, 'comment': comment}), 201


@app.route('/api/comments/<comment_id>', methods=['PUT'])
@require_login
def api_update_comment(comment_id: str):
    data = request.get_json(silent=True) or {}
    with open_db() as db:
        ok, message = comment_service.update(db, _current_profile_id(), comment_id, data.get('comment', ''))
    if not ok:
        return _error(message)
    return jsonify({'message': message})


@app.route('/api/comments/<comment_id>', methods=['DELETE'])
@require_login
def api_delete_comment(comment_id: str):
    with open_db() as db:
        ok, message = comment_service.delete(db, _current_profile_id(), comment_id)
    if not ok:
        return _error(message)
    return jsonify({'message': message})


# ===========================================================================================
# Likes
# ===========================================================================================

@app.route('/api/likes', methods=['GET'])
@require_login
def api_likes():
    with open_db() as db:
        likes = like_service.list_for_user(db, _current_profile_id())
    return jsonify({'likes': likes})


@app.route('/api/games/<game_id>/like', methods=['POST'])
def api_toggle_like(game_id: str):
    profile_id = _current_profile_id()
    if not profile_id:
        return _error('You must be logged in to like games', 401)
    if not ensure_db_available():
        return _error('Database not available', 503)
    with open_db() as db:
        ok, message = like_service.toggle(db, profile_id, game_id)
        likes = like_service.list_for_user(db, profile_id)
    if not ok:
        return _error(message, 404 if message == 'Game not found' else 400)
    return jsonify({'message': message, 'liked': LikeService.is_liked(likes, game_id), 'likes': likes})


# ===========================================================================================
# Notifications
# ===========================================================================================

@app.route('/api/notifications', methods=['GET'])
@require_login
def api_notifications():
    limit = request.args.get('limit', HEADER_LIMIT, type=int)
    with open_db() as db:
        notifications = notification_service.recent(db, _current_profile_id(), limit=max(1, limit))
    for notification in notifications:
        notification['time_ago'] = insights.time_ago(notification['created_at'])
    return jsonify({
        'notifications': notifications,
        'unread_count': NotificationService.unread_count(notifications),
    })


@app.route('/api/notifications/<int:notification_id>/read', methods=['POST'])
@require_login
def api_mark_notification_read(notification_id: int):
    with open_db() as db:
        ok = notification_service.mark_read(db, _current_profile_id(), notification_id)
    if not ok:
        return _error('Failed to update notification', 500)
    return jsonify({'message': 'Notification marked as read'})


@app.route('/api/notifications/read', methods=['POST'])
@require_login
def api_mark_notifications_read():
    """Mark the given ids as read, or every unread notification when no ids are sent"""
    data = request.get_json(silent=True) or {}
    ids = data.get('ids')
    if ids is not None and not isinstance(ids, list):
        return _error('ids must be a list')
    profile_id = _current_profile_id()
    with open_db() as db:
        if ids is None:
            ok = notification_service.mark_all_read(db, profile_id)
        else:
            ok = notification_service.mark_many_read(db, profile_id, ids)
    if not ok:
        return _error('Failed to update notifications', 500)
    return jsonify({'message': 'Notifications marked as read'})


@app.route('/api/notifications/stream')
@require_login
def api_notification_stream():
    """Server-Sent Events stream of new notifications for the current member"""
    profile_id = _current_profile_id()
    with open_db() as db:
        recent = notification_service.recent(db, profile_id, limit=HEADER_LIMIT)
    initial = {'notifications': recent, 'unread_count': NotificationService.unread_count(recent)}
    sub_queue = broadcaster.subscribe(profile_id)
    return Response(
        stream_with_context(broadcaster.stream(profile_id, sub_queue, initial)),
        mimetype='text/event-stream',
        headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'},
    )


# ===========================================================================================
# Dashboard & feed
# ===========================================================================================

@app.route('/api/activities', methods=['GET'])
@require_login
def api_activities():
    limit = request.args.get('limit', 50, type=int)
    with open_db() as db:
        feed = activity_service.feed(db, limit=max(1, limit))
    return jsonify({'activities': feed})


@app.route('/api/dashboard', methods=['GET'])
@require_login
def api_dashboard():
    """Everything the dashboard page shows, in one round trip"""
    profile_id = _current_profile_id()
    metric = request.args.get('metric', 'completed')
    with open_db() as db:
        profile = profile_service.get(db, profile_id)
        if not profile:
            return _error('Profile not found', 404)
        my_games = game_service.list_for(db, profile_id)
        other_games = game_service.others(db, profile_id)
        notifications = notification_service.recent(db, profile_id, limit=DASHBOARD_LIMIT)
        rankings = insights.player_rankings(profile_service.list_members(db), game_service.all_games(db))
        feed = activity_service.feed(db)

    ranked = insights.sort_rankings(rankings, metric)
    for index, entry in enumerate(ranked):
        entry['rank'] = index + 1
        entry['badge'] = insights.rank_badge(index)
        entry['is_me'] = entry['id'] == profile_id

    return jsonify({
        'profile': profile,
        'needs_setup': ProfileService.needs_setup(profile),
        'stats': insights.personal_stats(my_games),
        'continue_playing': insights.continue_playing(my_games),
        'notifications': notifications,
        'unread_count': NotificationService.unread_count(notifications),
        'recommendations': insights.friend_recommendations([g['title'] for g in my_games], other_games),
        'common_games': insights.common_games(my_games, other_games),
        'rankings': {'metric': metric, 'players': ranked},
        'activities': feed,
    })


def main():
    """Main entry point for the web app"""
    parser = argparse.ArgumentParser(description='BrpirCatalog Web')
    parser.add_argument('--host', default='127.0.0.1', help='Interface to bind')
    parser.add_argument('--port', type=int, default=5000, help='Port to listen on')
    parser.add_argument('--debug', action='store_true', help='Enable Flask debug mode')
    args = parser.parse_args()

    print("\n" + "=" * 60)
    print("BrpirCatalog is starting...")
    print("=" * 60)
    print("\nOpen your browser and go to:")
    print(f"  http://{args.host}:{args.port}")
    print("\nPress Ctrl+C to stop the server")
    print("=" * 60 + "\n")

    app.run(host=args.host, port=args.port, debug=args.debug, threaded=True)


if __name__ == "__main__":
    main()
