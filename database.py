#!/usr/bin/env python3
"""
Database models and configuration for BrpirCatalog.
Handles the relational backend: profiles, games, comments, likes,
notifications and the activity feed.

Writes that the hosted backend used to perform through triggers (activity
rows, like/comment notifications) happen here, inside the same transaction as
the row that caused them.
"""

import os
import uuid
from sqlalchemy import (create_engine, Column, Integer, String, Boolean, DateTime, Text,
                        ForeignKey, JSON, UniqueConstraint)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker, relationship
from sqlalchemy.pool import StaticPool
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional
import logging

logger = logging.getLogger('brpir.database')

# Database URL - PostgreSQL in production, SQLite file for local use
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///brpir_catalog.db')

Base = declarative_base()
engine = None
SessionLocal = None

GAME_STATUSES = ('playing', 'completed', 'backlog', 'dropped')

# Callbacks run after a notification row is committed (realtime delivery)
_notification_listeners: List[Callable[[Dict], None]] = []


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class Profile(Base):
    """Member account and public profile."""
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=_new_id)
    username = Column(String(255), unique=True, index=True, nullable=False)
    password = Column(String(64), nullable=False)  # SHA256 hash
    display_name = Column(String(255), nullable=True)
    bio = Column(Text, nullable=True)
    avatar_url = Column(String(1000), nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    # Relationships
    games = relationship("Game", back_populates="profile", cascade="all, delete-orphan")
    comments = relationship("Comment", back_populates="profile", cascade="all, delete-orphan")
    likes = relationship("Like", back_populates="user", cascade="all, delete-orphan")


class Game(Base):
    """A game in a member's catalog."""
    __tablename__ = "games"

    id = Column(String(36), primary_key=True, default=_new_id)
    profile_id = Column(String(36), ForeignKey("profiles.id"), index=True, nullable=False)
    title = Column(String(500), nullable=False, index=True)
    platform = Column(String(255), nullable=False)
    status = Column(String(20), default='backlog')  # see GAME_STATUSES
    rating = Column(Integer, nullable=True)  # 1-10
    genre = Column(String(255), nullable=True)
    cover_url = Column(String(1000), nullable=True)
    is_favorite = Column(Boolean, default=False)
    favorite_position = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    # Relationships
    profile = relationship("Profile", back_populates="games")
    comments = relationship("Comment", back_populates="game", cascade="all, delete-orphan")
    likes = relationship("Like", back_populates="game", cascade="all, delete-orphan")


class Comment(Base):
    """Comment left by a member on a game."""
    __tablename__ = "comments"

    id = Column(String(36), primary_key=True, default=_new_id)
    game_id = Column(String(36), ForeignKey("games.id"), index=True, nullable=False)
    profile_id = Column(String(36), ForeignKey("profiles.id"), nullable=False)
    comment = Column(Text, nullable=False)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    # Relationships
    game = relationship("Game", back_populates="comments")
    profile = relationship("Profile", back_populates="comments")


class Like(Base):
    """A member liking another member's game."""
    __tablename__ = "likes"
    __table_args__ = (UniqueConstraint('user_id', 'game_id', name='uq_likes_user_game'),)

    id = Column(Integer, primary_key=True)
    user_id = Column(String(36), ForeignKey("profiles.id"), index=True, nullable=False)
    game_id = Column(String(36), ForeignKey("games.id"), index=True, nullable=False)
    created_at = Column(DateTime, default=_utcnow)

    # Relationships
    user = relationship("Profile", back_populates="likes")
    game = relationship("Game", back_populates="likes")


class Notification(Base):
    """Notification delivered to *user_id* about something *actor_id* did."""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(36), ForeignKey("profiles.id"), index=True, nullable=False)
    actor_id = Column(String(36), ForeignKey("profiles.id"), nullable=False)
    type = Column(String(50), nullable=False)  # 'like.game', 'comment.reply'
    meta = Column('metadata', JSON, default=dict)
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=_utcnow)

    actor = relationship("Profile", foreign_keys=[actor_id])


class Activity(Base):
    """Entry of the public activity feed."""
    __tablename__ = "activities"

    id = Column(Integer, primary_key=True)
    profile_id = Column(String(36), ForeignKey("profiles.id"), index=True, nullable=False)
    type = Column(String(50), nullable=False)  # 'game.new', 'game.update', 'comment.new', 'like.game'
    meta = Column('metadata', JSON, default=dict)
    created_at = Column(DateTime, default=_utcnow)

    profile = relationship("Profile")


def configure(url: str = None) -> bool:
    """(Re)bind the engine and session factory to *url*.

    An in-memory SQLite URL keeps a single shared connection so every session
    sees the same data.
    """
    global engine, SessionLocal, DATABASE_URL
    DATABASE_URL = url or DATABASE_URL
    try:
        if DATABASE_URL in ('sqlite://', 'sqlite:///:memory:'):
            engine = create_engine(DATABASE_URL, echo=False, poolclass=StaticPool,
                                   connect_args={'check_same_thread': False})
        elif DATABASE_URL.startswith('sqlite'):
            engine = create_engine(DATABASE_URL, echo=False,
                                   connect_args={'check_same_thread': False})
        else:
            engine = create_engine(DATABASE_URL, echo=False, pool_pre_ping=True)
        SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        return True
    except Exception as e:
        logger.warning(f"Database engine unavailable ({DATABASE_URL}): {e}")
        engine = None
        SessionLocal = None
        return False


configure(DATABASE_URL)


def init_db():
    """Initialize database tables."""
    if engine:
        try:
            Base.metadata.create_all(bind=engine)
            logger.info("Database tables initialized successfully")
            return True
        except SQLAlchemyError as e:
            logger.error(f"Failed to initialize database: {e}")
            return False
    return False


def add_notification_listener(callback: Callable[[Dict], None]) -> None:
    """Register *callback* to receive every committed notification dict."""
    if callback not in _notification_listeners:
        _notification_listeners.append(callback)


def remove_notification_listener(callback: Callable[[Dict], None]) -> None:
    if callback in _notification_listeners:
        _notification_listeners.remove(callback)


def _emit_notifications(notifications: List[Dict]) -> None:
    for notification in notifications:
        for callback in list(_notification_listeners):
            try:
                callback(notification)
            except Exception as e:
                logger.error(f"Notification listener failed: {e}")


# ---------------------------------------------------------------------------
# Row serialisers
# ---------------------------------------------------------------------------

def profile_to_dict(profile: Profile) -> Dict:
    """Public view of a profile (never includes the password hash)."""
    return {
        'id': profile.id,
        'username': profile.username,
        'display_name': profile.display_name,
        'bio': profile.bio,
        'avatar_url': profile.avatar_url,
        'created_at': _iso(profile.created_at),
    }


def game_to_dict(game: Game, with_profile: bool = False) -> Dict:
    data = {
        'id': game.id,
        'profile_id': game.profile_id,
        'title': game.title,
        'platform': game.platform,
        'status': game.status,
        'rating': game.rating,
        'genre': game.genre,
        'cover_url': game.cover_url,
        'is_favorite': bool(game.is_favorite),
        'favorite_position': game.favorite_position,
        'created_at': _iso(game.created_at),
        'updated_at': _iso(game.updated_at),
    }
    if with_profile:
        data['profile'] = profile_to_dict(game.profile) if game.profile else None
    return data


def comment_to_dict(comment: Comment) -> Dict:
    author = comment.profile
    return {
        'id': comment.id,
        'game_id': comment.game_id,
        'profile_id': comment.profile_id,
        'comment': comment.comment,
        'created_at': _iso(comment.created_at),
        'updated_at': _iso(comment.updated_at),
        'profile': {
            'username': author.username if author else None,
            'avatar_url': author.avatar_url if author else None,
        },
    }


def like_to_dict(like: Like) -> Dict:
    return {
        'id': like.id,
        'user_id': like.user_id,
        'game_id': like.game_id,
        'created_at': _iso(like.created_at),
    }


def notification_to_dict(notification: Notification) -> Dict:
    return {
        'id': notification.id,
        'user_id': notification.user_id,
        'actor_id': notification.actor_id,
        'type': notification.type,
        'metadata': dict(notification.meta or {}),
        'is_read': bool(notification.is_read),
        'created_at': _iso(notification.created_at),
        'actor': profile_to_dict(notification.actor) if notification.actor else None,
    }


def activity_to_dict(activity: Activity) -> Dict:
    return {
        'id': activity.id,
        'profile_id': activity.profile_id,
        'type': activity.type,
        'metadata': dict(activity.meta or {}),
        'created_at': _iso(activity.created_at),
        'profile': profile_to_dict(activity.profile) if activity.profile else None,
    }


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------

def get_profile(db, profile_id: str) -> Optional[Dict]:
    """Get a profile by id."""
    if not db or not profile_id:
        return None
    try:
        profile = db.query(Profile).filter(Profile.id == profile_id).first()
        return profile_to_dict(profile) if profile else None
    except SQLAlchemyError as e:
        logger.error(f"Error getting profile: {e}")
        return None


def get_profile_by_username(db, username: str) -> Optional[Dict]:
    """Get a profile by its unique username."""
    if not db:
        return None
    try:
        profile = db.query(Profile).filter(Profile.username == username).first()
        return profile_to_dict(profile) if profile else None
    except SQLAlchemyError as e:
        logger.error(f"Error getting profile by username: {e}")
        return None


def get_profiles(db) -> List[Dict]:
    """Get all profiles ordered by username."""
    if not db:
        return []
    try:
        return [profile_to_dict(p) for p in db.query(Profile).order_by(Profile.username.asc()).all()]
    except SQLAlchemyError as e:
        logger.error(f"Error getting profiles: {e}")
        return []


def create_profile(db, username: str, password: str) -> Optional[Dict]:
    """Create a profile.

    Args:
        db: Database session
        username: Unique username
        password: Password hash (SHA256)
    """
    if not db:
        return None
    if not password:
        logger.error("Password required for new profile")
        return None
    try:
        profile = Profile(username=username, password=password)
        db.add(profile)
        db.commit()
        return profile_to_dict(profile)
    except SQLAlchemyError as e:
        logger.error(f"Error creating profile: {e}")
        db.rollback()
        return None


def verify_profile_password(db, username: str, password_hash: str) -> Optional[Dict]:
    """Return the profile when *password_hash* matches, else ``None``."""
    if not db:
        return None
    try:
        profile = db.query(Profile).filter(Profile.username == username).first()
        if profile and profile.password == password_hash:
            return profile_to_dict(profile)
        return None
    except SQLAlchemyError as e:
        logger.error(f"Error verifying password: {e}")
        return None


def update_profile(db, profile_id: str, **fields) -> bool:
    """Update editable profile columns (username, display_name, bio, avatar_url)."""
    if not db:
        return False
    editable = {'username', 'display_name', 'bio', 'avatar_url'}
    try:
        profile = db.query(Profile).filter(Profile.id == profile_id).first()
        if not profile:
            return False
        for key, value in fields.items():
            if key in editable:
                setattr(profile, key, value)
        profile.updated_at = _utcnow()
        db.commit()
        return True
    except SQLAlchemyError as e:
        logger.error(f"Error updating profile: {e}")
        db.rollback()
        return False


# ---------------------------------------------------------------------------
# Games
# ---------------------------------------------------------------------------

def get_games(db, profile_id: str) -> List[Dict]:
    """Get a profile's games ordered by title."""
    if not db:
        return []
    try:
        games = (db.query(Game)
                 .filter(Game.profile_id == profile_id)
                 .order_by(Game.title.asc())
                 .all())
        return [game_to_dict(g) for g in games]
    except SQLAlchemyError as e:
        logger.error(f"Error getting games: {e}")
        return []


def get_game(db, game_id: str) -> Optional[Dict]:
    if not db or not game_id:
        return None
    try:
        game = db.query(Game).filter(Game.id == game_id).first()
        return game_to_dict(game) if game else None
    except SQLAlchemyError as e:
        logger.error(f"Error getting game: {e}")
        return None


def get_all_games(db) -> List[Dict]:
    """Get every game of every member (rankings)."""
    if not db:
        return []
    try:
        return [game_to_dict(g) for g in db.query(Game).all()]
    except SQLAlchemyError as e:
        logger.error(f"Error getting all games: {e}")
        return []


def get_other_games(db, profile_id: str, titles: Optional[List[str]] = None) -> List[Dict]:
    """Get games owned by anyone but *profile_id*, newest first, owner embedded.

    When *titles* is given only games with one of those titles are returned.
    """
    if not db:
        return []
    try:
        query = db.query(Game).filter(Game.profile_id != profile_id)
        if titles is not None:
            if not titles:
                return []
            query = query.filter(Game.title.in_(titles))
        games = query.order_by(Game.created_at.desc()).all()
        return [game_to_dict(g, with_profile=True) for g in games]
    except SQLAlchemyError as e:
        logger.error(f"Error getting other members' games: {e}")
        return []


def get_favorite_games(db, profile_id: str) -> List[Dict]:
    """Get a profile's favorites ordered by position, unpositioned last."""
    if not db:
        return []
    try:
        games = (db.query(Game)
                 .filter(Game.profile_id == profile_id, Game.is_favorite.is_(True))
                 .all())
        games.sort(key=lambda g: (g.favorite_position is None, g.favorite_position or 0))
        return [game_to_dict(g) for g in games]
    except SQLAlchemyError as e:
        logger.error(f"Error getting favorite games: {e}")
        return []


def create_game(db, profile_id: str, data: Dict) -> Optional[Dict]:
    """Insert a game and record a ``game.new`` activity."""
    if not db:
        return None
    try:
        game = Game(
            profile_id=profile_id,
            title=data['title'],
            platform=data['platform'],
            status=data.get('status') or 'backlog',
            rating=data.get('rating'),
            genre=data.get('genre'),
            cover_url=data.get('cover_url'),
        )
        db.add(game)
        db.flush()
        db.add(Activity(profile_id=profile_id, type='game.new', meta={
            'game_id': game.id,
            'game_title': game.title,
            'platform': game.platform,
        }))
        db.commit()
        return game_to_dict(game)
    except SQLAlchemyError as e:
        logger.error(f"Error creating game: {e}")
        db.rollback()
        return None


def update_game(db, game_id: str, data: Dict) -> Optional[Dict]:
    """Update a game and record a ``game.update`` activity with old/new values."""
    if not db:
        return None
    editable = ('title', 'platform', 'status', 'rating', 'genre', 'cover_url')
    try:
        game = db.query(Game).filter(Game.id == game_id).first()
        if not game:
            return None
        old_status, old_rating = game.status, game.rating
        for key in editable:
            if key in data:
                setattr(game, key, data[key])
        game.updated_at = _utcnow()
        db.add(Activity(profile_id=game.profile_id, type='game.update', meta={
            'game_id': game.id,
            'game_title': game.title,
            'old_status': old_status,
            'new_status': game.status,
            'old_rating': old_rating,
            'new_rating': game.rating,
        }))
        db.commit()
        return game_to_dict(game)
    except SQLAlchemyError as e:
        logger.error(f"Error updating game: {e}")
        db.rollback()
        return None


def delete_game(db, game_id: str) -> bool:
    """Delete a game together with its comments and likes."""
    if not db:
        return False
    try:
        game = db.query(Game).filter(Game.id == game_id).first()
        if not game:
            return False
        db.delete(game)
        db.commit()
        return True
    except SQLAlchemyError as e:
        logger.error(f"Error deleting game: {e}")
        db.rollback()
        return False


def set_favorite(db, game_id: str, is_favorite: bool, position: Optional[int] = None) -> bool:
    if not db:
        return False
    try:
        game = db.query(Game).filter(Game.id == game_id).first()
        if not game:
            return False
        game.is_favorite = is_favorite
        game.favorite_position = position if is_favorite else None
        db.commit()
        return True
    except SQLAlchemyError as e:
        logger.error(f"Error setting favorite: {e}")
        db.rollback()
        return False


def set_favorite_positions(db, positions: Dict[str, int]) -> bool:
    """Write ``favorite_position`` for every ``{game_id: position}`` pair."""
    if not db:
        return False
    try:
        games = db.query(Game).filter(Game.id.in_(list(positions))).all()
        for game in games:
            game.favorite_position = positions[game.id]
        db.commit()
        return len(games) == len(positions)
    except SQLAlchemyError as e:
        logger.error(f"Error saving favorite order: {e}")
        db.rollback()
        return False


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------

def get_comments(db, game_id: str) -> List[Dict]:
    """Get comments on a game, newest first, with author username/avatar."""
    if not db:
        return []
    try:
        comments = (db.query(Comment)
                    .filter(Comment.game_id == game_id)
                    .order_by(Comment.created_at.desc())
                    .all())
        return [comment_to_dict(c) for c in comments]
    except SQLAlchemyError as e:
        logger.error(f"Error getting comments: {e}")
        return []


def get_comment(db, comment_id: str) -> Optional[Dict]:
    if not db:
        return None
    try:
        comment = db.query(Comment).filter(Comment.id == comment_id).first()
        return comment_to_dict(comment) if comment else None
    except SQLAlchemyError as e:
        logger.error(f"Error getting comment: {e}")
        return None


def create_comment(db, profile_id: str, game_id: str, text: str) -> Optional[Dict]:
    """Insert a comment and send ``comment.reply`` notifications.

    The game owner and every earlier commenter on the game are notified once
    each, never the author of the new comment. ``metadata.reason`` is
    ``'owner'`` or ``'thread'``.
    """
    if not db:
        return None
    created = []
    try:
        game = db.query(Game).filter(Game.id == game_id).first()
        if not game:
            return None
        earlier = [row[0] for row in (db.query(Comment.profile_id)
                                      .filter(Comment.game_id == game_id)
                                      .distinct()
                                      .all())]
        comment = Comment(game_id=game_id, profile_id=profile_id, comment=text)
        db.add(comment)
        db.flush()
        meta = {'game_id': game.id, 'game_title': game.title, 'comment_id': comment.id}
        db.add(Activity(profile_id=profile_id, type='comment.new', meta=meta))

        recipients = {game.profile_id: 'owner'}
        for commenter_id in earlier:
            recipients.setdefault(commenter_id, 'thread')
        recipients.pop(profile_id, None)
        for user_id, reason in recipients.items():
            notification = Notification(user_id=user_id, actor_id=profile_id,
                                        type='comment.reply', meta=dict(meta, reason=reason))
            db.add(notification)
            created.append(notification)
        db.commit()
        result = comment_to_dict(comment)
        payload = [notification_to_dict(n) for n in created]
    except SQLAlchemyError as e:
        logger.error(f"Error creating comment: {e}")
        db.rollback()
        return None
    _emit_notifications(payload)
    return result


def update_comment(db, comment_id: str, text: str) -> bool:
    if not db:
        return False
    try:
        comment = db.query(Comment).filter(Comment.id == comment_id).first()
        if not comment:
            return False
        comment.comment = text
        comment.updated_at = _utcnow()
        db.commit()
        return True
    except SQLAlchemyError as e:
        logger.error(f"Error updating comment: {e}")
        db.rollback()
        return False


def delete_comment(db, comment_id: str) -> bool:
    if not db:
        return False
    try:
        comment = db.query(Comment).filter(Comment.id == comment_id).first()
        if not comment:
            return False
        db.delete(comment)
        db.commit()
        return True
    except SQLAlchemyError as e:
        logger.error(f"Error deleting comment: {e}")
        db.rollback()
        return False


# ---------------------------------------------------------------------------
# Likes
# ---------------------------------------------------------------------------

def get_likes(db, user_id: str) -> List[Dict]:
    """Get every like given by *user_id*."""
    if not db:
        return []
    try:
        return [like_to_dict(l) for l in db.query(Like).filter(Like.user_id == user_id).all()]
    except SQLAlchemyError as e:
        logger.error(f"Error getting likes: {e}")
        return []


def create_like(db, user_id: str, game_id: str) -> Optional[Dict]:
    """Insert a like; notify the game owner unless they liked their own game."""
    if not db:
        return None
    created = []
    try:
        game = db.query(Game).filter(Game.id == game_id).first()
        if not game:
            return None
        like = Like(user_id=user_id, game_id=game_id)
        db.add(like)
        db.flush()
        meta = {'game_id': game.id, 'game_title': game.title}
        db.add(Activity(profile_id=user_id, type='like.game', meta=meta))
        if game.profile_id != user_id:
            notification = Notification(user_id=game.profile_id, actor_id=user_id,
                                        type='like.game', meta=meta)
            db.add(notification)
            created.append(notification)
        db.commit()
        result = like_to_dict(like)
        payload = [notification_to_dict(n) for n in created]
    except SQLAlchemyError as e:
        logger.error(f"Error creating like: {e}")
        db.rollback()
        return None
    _emit_notifications(payload)
    return result


def delete_like(db, like_id: int) -> bool:
    if not db:
        return False
    try:
        like = db.query(Like).filter(Like.id == like_id).first()
        if not like:
            return False
        db.delete(like)
        db.commit()
        return True
    except SQLAlchemyError as e:
        logger.error(f"Error deleting like: {e}")
        db.rollback()
        return False


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

def get_notifications(db, user_id: str, limit: int = 20, unread_only: bool = False) -> List[Dict]:
    """Get a user's notifications, newest first, with the actor embedded."""
    if not db:
        return []
    try:
        query = db.query(Notification).filter(Notification.user_id == user_id)
        if unread_only:
            query = query.filter(Notification.is_read.is_(False))
        rows = query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()
        return [notification_to_dict(n) for n in rows]
    except SQLAlchemyError as e:
        logger.error(f"Error getting notifications: {e}")
        return []


def mark_notifications_read(db, user_id: str, notification_ids: Optional[List[int]] = None) -> bool:
    """Mark notifications of *user_id* as read.

    Pass ``None`` to mark every unread notification of the user.
    """
    if not db:
        return False
    try:
        query = db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.is_read.is_(False),
        )
        if notification_ids is not None:
            if not notification_ids:
                return True
            query = query.filter(Notification.id.in_(notification_ids))
        query.update({Notification.is_read: True}, synchronize_session=False)
        db.commit()
        return True
    except SQLAlchemyError as e:
        logger.error(f"Error marking notifications read: {e}")
        db.rollback()
        return False


# ---------------------------------------------------------------------------
# Activity feed
# ---------------------------------------------------------------------------

def get_activities(db, limit: int = 50) -> List[Dict]:
    """Get the most recent activities with the actor's profile."""
    if not db:
        return []
    try:
        rows = (db.query(Activity)
                .order_by(Activity.created_at.desc(), Activity.id.desc())
                .limit(limit)
                .all())
        return [activity_to_dict(a) for a in rows]
    except SQLAlchemyError as e:
        logger.error(f"Error getting activities: {e}")
        return []
