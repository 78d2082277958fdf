#!/usr/bin/env python3
"""
Unit tests for the catalog/services layer.

Run with:
    python -m pytest tests/test_services.py
"""
import os
import sys
import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import database
from catalog.services import (
    ProfileService, GameService, FavoritesService, CommentService,
    LikeService, NotificationService, ActivityService,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class ServiceTestCase(unittest.TestCase):
    """Fresh in-memory database with two members for each test."""

    def setUp(self):
        database.configure('sqlite://')
        database.init_db()
        self.db = database.SessionLocal()
        self.alice = database.create_profile(self.db, 'alice', 'hash')
        self.bob = database.create_profile(self.db, 'bob', 'hash')
        self.games = GameService(database)

    def tearDown(self):
        self.db.close()

    def _add(self, profile, title='Hades', **form):
        form.setdefault('platform', 'PC')
        game, message = self.games.add(self.db, profile['id'], dict(title=title, **form))
        self.assertIsNotNone(game, message)
        return game


# ===========================================================================
# ProfileService
# ===========================================================================

class TestProfileServiceHelpers(unittest.TestCase):

    def test_needs_setup(self):
        self.assertTrue(ProfileService.needs_setup({'display_name': None, 'bio': None}))
        self.assertFalse(ProfileService.needs_setup({'display_name': 'Al', 'bio': None}))
        self.assertFalse(ProfileService.needs_setup({'display_name': None, 'bio': 'hi'}))
        self.assertTrue(ProfileService.needs_setup(None))

    def test_initials(self):
        self.assertEqual(ProfileService.initials({'username': 'alice'}), 'AL')
        self.assertEqual(ProfileService.initials({'username': 'alice', 'display_name': 'zed'}), 'ZE')
        self.assertEqual(ProfileService.initials(None), '')


class TestProfileService(ServiceTestCase):

    def setUp(self):
        super().setUp()
        self.svc = ProfileService(database)

    def test_setup_without_display_name_uses_username(self):
        ok, _ = self.svc.setup(self.db, self.alice['id'], 'alice')
        self.assertTrue(ok)
        profile = self.svc.get(self.db, self.alice['id'])
        self.assertEqual(profile['display_name'], 'alice')
        self.assertFalse(ProfileService.needs_setup(profile))

    def test_setup_saves_fields(self):
        ok, _ = self.svc.setup(self.db, self.alice['id'], ' alice2 ', 'Alice', 'I play')
        self.assertTrue(ok)
        profile = self.svc.get(self.db, self.alice['id'])
        self.assertEqual(profile['username'], 'alice2')
        self.assertEqual(profile['display_name'], 'Alice')
        self.assertFalse(ProfileService.needs_setup(profile))

    def test_setup_rejects_short_username(self):
        ok, message = self.svc.setup(self.db, self.alice['id'], 'al')
        self.assertFalse(ok)
        self.assertIn('at least 3', message)

    def test_username_taken_by_someone_else(self):
        ok, message = self.svc.update(self.db, self.alice['id'], 'bob')
        self.assertFalse(ok)
        self.assertEqual(message, 'Username already taken')

    def test_keeping_own_username_is_allowed(self):
        ok, _ = self.svc.update(self.db, self.alice['id'], 'alice', bio='hello')
        self.assertTrue(ok)

    def test_update_rejects_bad_avatar_and_long_bio(self):
        ok, _ = self.svc.update(self.db, self.alice['id'], 'alice', avatar_url='ftp://x')
        self.assertFalse(ok)
        ok, _ = self.svc.update(self.db, self.alice['id'], 'alice', bio='x' * 501)
        self.assertFalse(ok)

    def test_empty_fields_are_stored_as_null(self):
        self.svc.update(self.db, self.alice['id'], 'alice', display_name='A', bio='b',
                        avatar_url='https://img/a.png')
        self.svc.update(self.db, self.alice['id'], 'alice', display_name='', bio='  ', avatar_url='')
        profile = self.svc.get(self.db, self.alice['id'])
        self.assertIsNone(profile['display_name'])
        self.assertIsNone(profile['bio'])
        self.assertIsNone(profile['avatar_url'])

    def test_list_members(self):
        names = [m['username'] for m in self.svc.list_members(self.db)]
        self.assertEqual(names, ['alice', 'bob'])


# ===========================================================================
# GameService
# ===========================================================================

class TestParseForm(unittest.TestCase):

    def test_defaults(self):
        data, error = GameService.parse_form({'title': ' Hades ', 'platform': 'PC'})
        self.assertEqual(error, '')
        self.assertEqual(data['title'], 'Hades')
        self.assertEqual(data['status'], 'backlog')
        self.assertIsNone(data['rating'])
        self.assertIsNone(data['genre'])

    def test_required_fields(self):
        self.assertEqual(GameService.parse_form({'platform': 'PC'})[1], 'Title is required')
        self.assertEqual(GameService.parse_form({'title': 'Hades'})[1], 'Platform is required')

    def test_invalid_status(self):
        data, error = GameService.parse_form({'title': 'H', 'platform': 'PC', 'status': 'wishlist'})
        self.assertIsNone(data)
        self.assertIn('wishlist', error)

    def test_rating_zero_means_unrated(self):
        for raw in (0, '0', '', None):
            data, _ = GameService.parse_form({'title': 'H', 'platform': 'PC', 'rating': raw})
            self.assertIsNone(data['rating'])

    def test_rating_bounds(self):
        data, _ = GameService.parse_form({'title': 'H', 'platform': 'PC', 'rating': '10'})
        self.assertEqual(data['rating'], 10)
        for raw in (11, -1, 'abc', '7.5'):
            data, error = GameService.parse_form({'title': 'H', 'platform': 'PC', 'rating': raw})
            self.assertIsNone(data)
            self.assertIn('between 1 and 10', error)

    def test_platforms_of_keeps_first_seen_order(self):
        games = [{'platform': 'Switch'}, {'platform': 'PC'}, {'platform': 'Switch'}]
        self.assertEqual(GameService.platforms_of(games), ['Switch', 'PC'])


class TestGameService(ServiceTestCase):

    def test_add_and_list_filtered(self):
        self._add(self.alice, 'Hades', status='playing')
        self._add(self.alice, 'Celeste', platform='Switch')
        titles = [g['title'] for g in self.games.list_for(self.db, self.alice['id'], status='playing')]
        self.assertEqual(titles, ['Hades'])
        self.assertEqual(self.games.platforms_for(self.db, self.alice['id']), ['Switch', 'PC'])

    def test_add_invalid_form(self):
        game, message = self.games.add(self.db, self.alice['id'], {'title': ''})
        self.assertIsNone(game)
        self.assertEqual(message, 'Title is required')

    def test_update_own_game(self):
        game = self._add(self.alice)
        updated, _ = self.games.update(self.db, self.alice['id'], game['id'],
                                       {'title': 'Hades', 'platform': 'PC', 'status': 'completed', 'rating': 9})
        self.assertEqual(updated['status'], 'completed')
        self.assertEqual(updated['rating'], 9)

    def test_cannot_change_someone_elses_game(self):
        game = self._add(self.alice)
        updated, message = self.games.update(self.db, self.bob['id'], game['id'],
                                             {'title': 'Mine', 'platform': 'PC'})
        self.assertIsNone(updated)
        self.assertIn('your own catalog', message)
        ok, _ = self.games.delete(self.db, self.bob['id'], game['id'])
        self.assertFalse(ok)
        self.assertIsNotNone(self.games.get(self.db, game['id']))

    def test_delete_missing_game(self):
        ok, message = self.games.delete(self.db, self.alice['id'], 'missing')
        self.assertFalse(ok)
        self.assertEqual(message, 'Game not found')

    def test_others_and_all_games(self):
        self._add(self.alice, 'Hades')
        self._add(self.bob, 'Doom')
        self.assertEqual([g['title'] for g in self.games.others(self.db, self.alice['id'])], ['Doom'])
        self.assertEqual(len(self.games.all_games(self.db)), 2)


# ===========================================================================
# FavoritesService
# ===========================================================================

class TestFavoritesMove(unittest.TestCase):

    def test_move_forward_and_back(self):
        self.assertEqual(FavoritesService.move(['a', 'b', 'c'], 'a', 'c'), ['b', 'c', 'a'])
        self.assertEqual(FavoritesService.move(['a', 'b', 'c'], 'c', 'a'), ['c', 'a', 'b'])

    def test_move_noop_cases(self):
        ids = ['a', 'b']
        self.assertEqual(FavoritesService.move(ids, 'a', 'a'), ids)
        self.assertEqual(FavoritesService.move(ids, 'a', 'zzz'), ids)
        self.assertEqual(FavoritesService.move(ids, 'zzz', 'a'), ids)

    def test_move_returns_copy(self):
        ids = ['a', 'b']
        FavoritesService.move(ids, 'a', 'b')
        self.assertEqual(ids, ['a', 'b'])


class TestFavoritesService(ServiceTestCase):

    def setUp(self):
        super().setUp()
        self.svc = FavoritesService(database)
        self.a = self._add(self.alice, 'A')
        self.b = self._add(self.alice, 'B')

    def test_toggle_appends_in_order(self):
        self.assertEqual(self.svc.toggle(self.db, self.alice['id'], self.b['id']),
                         (True, 'Added to favorites'))
        self.svc.toggle(self.db, self.alice['id'], self.a['id'])
        ordered = self.svc.get_ordered(self.db, self.alice['id'])
        self.assertEqual([g['title'] for g in ordered], ['B', 'A'])
        self.assertEqual([g['favorite_position'] for g in ordered], [1, 2])

    def test_toggle_twice_removes(self):
        self.svc.toggle(self.db, self.alice['id'], self.a['id'])
        ok, message = self.svc.toggle(self.db, self.alice['id'], self.a['id'])
        self.assertTrue(ok)
        self.assertEqual(message, 'Removed from favorites')
        self.assertEqual(self.svc.get_ordered(self.db, self.alice['id']), [])

    def test_toggle_other_members_game(self):
        ok, _ = self.svc.toggle(self.db, self.bob['id'], self.a['id'])
        self.assertFalse(ok)

    def test_save_order(self):
        self.svc.toggle(self.db, self.alice['id'], self.a['id'])
        self.svc.toggle(self.db, self.alice['id'], self.b['id'])
        ok, _ = self.svc.save_order(self.db, self.alice['id'], [self.b['id'], self.a['id']])
        self.assertTrue(ok)
        self.assertEqual([g['title'] for g in self.svc.get_ordered(self.db, self.alice['id'])], ['B', 'A'])

    def test_save_order_rejects_duplicates_and_non_favorites(self):
        self.svc.toggle(self.db, self.alice['id'], self.a['id'])
        self.assertFalse(self.svc.save_order(self.db, self.alice['id'], [self.a['id'], self.a['id']])[0])
        self.assertFalse(self.svc.save_order(self.db, self.alice['id'], [self.b['id']])[0])
        self.assertFalse(self.svc.save_order(self.db, self.bob['id'], [self.a['id']])[0])

    def test_save_empty_order(self):
        self.assertTrue(self.svc.save_order(self.db, self.alice['id'], [])[0])

    def test_top_limit(self):
        self.svc.toggle(self.db, self.alice['id'], self.a['id'])
        self.svc.toggle(self.db, self.alice['id'], self.b['id'])
        self.assertEqual(len(self.svc.top(self.db, self.alice['id'], limit=1)), 1)


# ===========================================================================
# CommentService / LikeService
# ===========================================================================

class TestCommentService(ServiceTestCase):

    def setUp(self):
        super().setUp()
        self.svc = CommentService(database)
        self.game = self._add(self.alice)

    def test_add_requires_login_and_text(self):
        self.assertEqual(self.svc.add(self.db, None, self.game['id'], 'hi')[1],
                         'You must be logged in to comment')
        self.assertEqual(self.svc.add(self.db, self.bob['id'], self.game['id'], '   ')[1],
                         'Comment cannot be empty')
        self.assertEqual(self.svc.add(self.db, self.bob['id'], 'missing', 'hi')[1], 'Game not found')

    def test_add_and_list(self):
        comment, _ = self.svc.add(self.db, self.bob['id'], self.game['id'], '  gg  ')
        self.assertEqual(comment['comment'], 'gg')
        listed = self.svc.list_for_game(self.db, self.game['id'])
        self.assertEqual([c['id'] for c in listed], [comment['id']])

    def test_only_author_can_edit_or_delete(self):
        comment, _ = self.svc.add(self.db, self.bob['id'], self.game['id'], 'gg')
        ok, message = self.svc.update(self.db, self.alice['id'], comment['id'], 'edited')
        self.assertFalse(ok)
        self.assertEqual(message, 'You can only change your own comments')
        self.assertFalse(self.svc.delete(self.db, self.alice['id'], comment['id'])[0])
        self.assertTrue(self.svc.update(self.db, self.bob['id'], comment['id'], 'edited')[0])
        self.assertTrue(self.svc.delete(self.db, self.bob['id'], comment['id'])[0])
        self.assertEqual(self.svc.list_for_game(self.db, self.game['id']), [])


class TestLikeService(ServiceTestCase):

    def setUp(self):
        super().setUp()
        self.svc = LikeService(database)
        self.game = self._add(self.alice)

    def test_toggle(self):
        self.assertEqual(self.svc.toggle(self.db, self.bob['id'], self.game['id']), (True, 'Liked'))
        likes = self.svc.list_for_user(self.db, self.bob['id'])
        self.assertTrue(LikeService.is_liked(likes, self.game['id']))
        self.assertEqual(self.svc.toggle(self.db, self.bob['id'], self.game['id']), (True, 'Unliked'))
        self.assertEqual(self.svc.list_for_user(self.db, self.bob['id']), [])

    def test_requires_login(self):
        self.assertEqual(self.svc.toggle(self.db, None, self.game['id']),
                         (False, 'You must be logged in to like games'))

    def test_missing_game(self):
        self.assertEqual(self.svc.toggle(self.db, self.bob['id'], 'missing'), (False, 'Game not found'))


# ===========================================================================
# NotificationService / ActivityService
# ===========================================================================

class TestNotificationService(ServiceTestCase):

    def setUp(self):
        super().setUp()
        self.svc = NotificationService(database)
        self.game = self._add(self.alice)

    def test_describe(self):
        actor = {'username': 'bob', 'display_name': None}
        meta = {'game_title': 'Hades'}
        self.assertEqual(NotificationService.describe({'type': 'like.game', 'actor': actor, 'metadata': meta}),
                         'bob liked your game Hades')
        self.assertEqual(NotificationService.describe({'type': 'comment.reply', 'actor': actor, 'metadata': meta}),
                         'bob commented on Hades')
        thread = dict(meta, reason='thread')
        self.assertEqual(NotificationService.describe({'type': 'comment.reply', 'actor': actor, 'metadata': thread}),
                         'bob commented on Hades, which you also commented on')
        self.assertEqual(NotificationService.describe({'type': 'other', 'actor': actor}),
                         'Notification from bob')

    def test_recent_has_text_and_unread_count(self):
        LikeService(database).toggle(self.db, self.bob['id'], self.game['id'])
        CommentService(database).add(self.db, self.bob['id'], self.game['id'], 'gg')
        recent = self.svc.recent(self.db, self.alice['id'])
        self.assertEqual(len(recent), 2)
        self.assertEqual(NotificationService.unread_count(recent), 2)
        self.assertTrue(all(n['text'] for n in recent))

    def test_mark_read_variants(self):
        LikeService(database).toggle(self.db, self.bob['id'], self.game['id'])
        note = self.svc.recent(self.db, self.alice['id'])[0]
        self.assertTrue(self.svc.mark_many_read(self.db, self.alice['id'], []))
        self.assertEqual(NotificationService.unread_count(self.svc.recent(self.db, self.alice['id'])), 1)
        self.assertTrue(self.svc.mark_read(self.db, self.alice['id'], note['id']))
        self.assertEqual(NotificationService.unread_count(self.svc.recent(self.db, self.alice['id'])), 0)

    def test_mark_all_read(self):
        CommentService(database).add(self.db, self.bob['id'], self.game['id'], 'gg')
        self.assertTrue(self.svc.mark_all_read(self.db, self.alice['id']))
        self.assertEqual(NotificationService.unread_count(self.svc.recent(self.db, self.alice['id'])), 0)


class TestActivityServiceDescribe(unittest.TestCase):

    PROFILE = {'username': 'alice', 'display_name': 'Alice'}

    def _activity(self, kind, **meta):
        meta.setdefault('game_title', 'Hades')
        return {'type': kind, 'profile': self.PROFILE, 'metadata': meta}

    def test_game_new(self):
        self.assertEqual(ActivityService.describe(self._activity('game.new')),
                         'Alice added Hades to the catalog')

    def test_status_change_wins_over_rating(self):
        activity = self._activity('game.update', old_status='playing', new_status='completed',
                                  old_rating=None, new_rating=9)
        self.assertEqual(ActivityService.describe(activity),
                         'Alice changed the status of Hades to Completed')

    def test_rating_change(self):
        activity = self._activity('game.update', old_status='playing', new_status='playing',
                                  old_rating=7, new_rating=9)
        self.assertEqual(ActivityService.describe(activity), 'Alice rated Hades 9/10')

    def test_update_without_change_is_hidden(self):
        activity = self._activity('game.update', old_status='playing', new_status='playing',
                                  old_rating=7, new_rating=7)
        self.assertIsNone(ActivityService.describe(activity))

    def test_comment_like_and_unknown(self):
        self.assertEqual(ActivityService.describe(self._activity('comment.new')), 'Alice commented on Hades')
        self.assertEqual(ActivityService.describe(self._activity('like.game')), 'Alice liked Hades')
        self.assertIsNone(ActivityService.describe(self._activity('mystery')))


class TestActivityServiceFeed(unittest.TestCase):

    def test_feed_skips_hidden_entries(self):
        db_module = MagicMock()
        db_module.get_activities.return_value = [
            {'type': 'game.new', 'profile': {'username': 'bob'}, 'metadata': {'game_title': 'Doom'},
             'created_at': '2024-01-10T11:00:00'},
            {'type': 'mystery', 'profile': {'username': 'bob'}, 'metadata': {},
             'created_at': '2024-01-10T11:00:00'},
        ]
        svc = ActivityService(db_module)
        now = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)
        feed = svc.feed(db=MagicMock(), limit=5, now=now)
        self.assertEqual(len(feed), 1)
        self.assertEqual(feed[0]['text'], 'bob added Doom to the catalog')
        self.assertEqual(feed[0]['time_ago'], '1 hour ago')
        db_module.get_activities.assert_called_once()


if __name__ == '__main__':
    unittest.main()
