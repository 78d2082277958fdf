"""Dashboard insights.

Derived aggregates shown on the dashboard and profile pages:

* Personal stats: status counts, completion rate and average rating
* Continue playing: the member's games currently in progress
* Popular among friends: titles other members own that the member does not
* Common games: titles the member shares with other members
* Player rankings: members ranked by total, completed or average rating

Every function is a single pass over rows already fetched from the backend;
nothing here performs I/O.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from brpir import STATUSES, status_label

logger = logging.getLogger('brpir.insights')

# ---------------------------------------------------------------------------
# Section sizes
# ---------------------------------------------------------------------------
CONTINUE_PLAYING_LIMIT = 6
RECOMMENDATION_LIMIT   = 6
COMMON_GAMES_LIMIT     = 6
RANKING_LIMIT          = 10

RANKING_METRICS = {
    'total':     'total_games',
    'completed': 'completed_games',
    'rating':    'average_rating',
}

_RANK_BADGES = ('gold', 'silver', 'bronze')


def _average_rating(games: Iterable[Dict[str, Any]]) -> float:
    ratings = [g['rating'] for g in games if g.get('rating') is not None]
    if not ratings:
        return 0.0
    return sum(ratings) / len(ratings)


def _player(profile: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    profile = profile or {}
    return {
        'id':           profile.get('id'),
        'username':     profile.get('username'),
        'display_name': profile.get('display_name'),
        'avatar_url':   profile.get('avatar_url'),
    }


# ---------------------------------------------------------------------------
# Personal
# ---------------------------------------------------------------------------

def personal_stats(games: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Summarise a member's catalog.

    Returns:
        Dict with ``total_games``, ``<status>_count`` for every status,
        ``average_rating`` (mean over rated games, ``0`` when none),
        ``completion_percent`` and ``status_distribution`` (pie chart data:
        ``[{'status', 'name', 'value'}, ...]``).
    """
    counts = {status: 0 for status in STATUSES}
    for game in games:
        if game.get('status') in counts:
            counts[game['status']] += 1

    total = len(games)
    stats: Dict[str, Any] = {'total_games': total}
    for status in STATUSES:
        stats[f'{status}_count'] = counts[status]
    stats['average_rating'] = _average_rating(games)
    stats['completion_percent'] = round(counts['completed'] / total * 100) if total else 0
    stats['status_distribution'] = [
        {'status': status, 'name': status_label(status), 'value': counts[status]}
        for status in STATUSES
    ]
    return stats


def continue_playing(games: List[Dict[str, Any]],
                     limit: int = CONTINUE_PLAYING_LIMIT) -> List[Dict[str, Any]]:
    """Return the first *limit* games whose status is ``playing``."""
    return [g for g in games if g.get('status') == 'playing'][:limit]


# ---------------------------------------------------------------------------
# Social
# ---------------------------------------------------------------------------

def friend_recommendations(my_titles: Iterable[str],
                           other_games: List[Dict[str, Any]],
                           limit: int = RECOMMENDATION_LIMIT) -> List[Dict[str, Any]]:
    """Titles popular among other members that the member does not own.

    Args:
        my_titles:   Titles already in the member's catalog.
        other_games: Other members' games, newest first, each with its owner
                     embedded under ``profile``.
        limit:       Maximum number of titles to return.

    Returns:
        ``[{id, title, cover_url, platform, count, players}, ...]`` sorted by
        ``count`` (number of catalog rows with that title) descending. The
        first-seen (newest) row supplies id, cover and platform.
    """
    owned = set(my_titles)
    by_title: Dict[str, Dict[str, Any]] = {}
    for game in other_games:
        title = game.get('title')
        if title in owned:
            continue
        player = _player(game.get('profile'))
        entry = by_title.get(title)
        if entry is None:
            by_title[title] = {
                'id':        game.get('id'),
                'title':     title,
                'cover_url': game.get('cover_url'),
                'platform':  game.get('platform'),
                'count':     1,
                'players':   [player],
            }
            continue
        entry['count'] += 1
        if not any(p['id'] == player['id'] for p in entry['players']):
            entry['players'].append(player)

    ranked = sorted(by_title.values(), key=lambda e: e['count'], reverse=True)
    return ranked[:limit]


def common_games(my_games: List[Dict[str, Any]],
                 other_games: List[Dict[str, Any]],
                 limit: int = COMMON_GAMES_LIMIT) -> List[Dict[str, Any]]:
    """Titles the member shares with other members.

    Args:
        my_games:    The member's own games.
        other_games: Other members' games (owner under ``profile``).
        limit:       Maximum number of titles to return.

    Returns:
        ``[{title, cover_url, my_game: {id, status, rating}, friends: [...]}]``
        where each friend carries ``game_status``. Only titles with at least
        one other owner are kept; sorted by number of owners descending.
    """
    owners_by_title: Dict[str, List[Dict[str, Any]]] = {}
    for game in other_games:
        friend = _player(game.get('profile'))
        friend['game_status'] = game.get('status')
        owners_by_title.setdefault(game.get('title'), []).append(friend)

    shared: Dict[str, Dict[str, Any]] = {}
    for mine in my_games:
        friends = owners_by_title.get(mine.get('title'))
        if not friends:
            continue
        shared[mine['title']] = {
            'title':     mine['title'],
            'cover_url': mine.get('cover_url'),
            'my_game': {
                'id':     mine.get('id'),
                'status': mine.get('status') or 'backlog',
                'rating': mine.get('rating'),
            },
            'friends': list(friends),
        }

    ranked = sorted(shared.values(), key=lambda e: len(e['friends']), reverse=True)
    return ranked[:limit]


# ---------------------------------------------------------------------------
# Rankings
# ---------------------------------------------------------------------------

def player_rankings(profiles: List[Dict[str, Any]],
                    games: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Per-member totals; members without any game are dropped."""
    by_owner: Dict[Any, List[Dict[str, Any]]] = {}
    for game in games:
        by_owner.setdefault(game.get('profile_id'), []).append(game)

    rankings = []
    for profile in profiles:
        owned = by_owner.get(profile.get('id'), [])
        if not owned:
            continue
        entry = _player(profile)
        entry['total_games'] = len(owned)
        entry['completed_games'] = sum(1 for g in owned if g.get('status') == 'completed')
        entry['average_rating'] = _average_rating(owned)
        rankings.append(entry)
    return rankings


def sort_rankings(rankings: List[Dict[str, Any]], metric: str = 'completed',
                  limit: int = RANKING_LIMIT) -> List[Dict[str, Any]]:
    """Order *rankings* by *metric* (``total``, ``completed`` or ``rating``),
    highest first. An unknown metric keeps the incoming order."""
    key = RANKING_METRICS.get(metric)
    ordered = list(rankings)
    if key:
        ordered.sort(key=lambda r: r[key], reverse=True)
    else:
        logger.debug("Unknown ranking metric %r, keeping order", metric)
    return ordered[:limit]


def rank_badge(index: int) -> str:
    """Podium badge for a zero-based rank position."""
    return _RANK_BADGES[index] if 0 <= index < len(_RANK_BADGES) else 'default'


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------

def _parse_time(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def time_ago(created_at: Any, now: Optional[datetime] = None) -> str:
    """Relative time such as ``'just now'``, ``'5 minutes ago'``,
    ``'1 day ago'``. Naive timestamps are taken as UTC."""
    moment = _parse_time(created_at)
    if moment is None:
        return ''
    current = _parse_time(now) if now is not None else datetime.now(timezone.utc)
    seconds = max(0, int((current - moment).total_seconds()))

    for size, unit in ((365 * 86400, 'year'), (30 * 86400, 'month'),
                       (86400, 'day'), (3600, 'hour'), (60, 'minute')):
        if seconds >= size:
            amount = seconds // size
            return f"{amount} {unit}{'s' if amount != 1 else ''} ago"
    return 'just now'
