"""
Tests for the view-once tracker.
"""
from unittest.mock import MagicMock, patch

from django.core.cache.backends.locmem import LocMemCache
from django.db import DatabaseError
from django.test import TestCase

from forum.categories import create_category
from forum.models import Thread
from forum.services import create_thread, get_thread
from forum.view_tracking import ViewTracker
from .helpers import make_user


class ViewTrackerTestCase(TestCase):

    def setUp(self):
        _, self.principal = make_user('user1')
        category = create_category('General')
        self.thread = create_thread(self.principal, category.pk, 'Popular thread', 'content')
        self.cache = LocMemCache('view-tracker-tests', {})
        self.cache.clear()
        self.tracker = ViewTracker(self.cache, ttl_seconds=60)

    def view_count(self):
        return Thread.objects.values_list('view_count', flat=True).get(pk=self.thread.pk)

    def test_first_view_counted_once(self):
        self.assertTrue(self.tracker.record_view(self.thread.pk, '10.0.0.1'))
        self.assertFalse(self.tracker.record_view(self.thread.pk, '10.0.0.1'))
        self.assertEqual(self.view_count(), 1)

    def test_each_ip_counted(self):
        self.tracker.record_view(self.thread.pk, '10.0.0.1')
        self.tracker.record_view(self.thread.pk, '10.0.0.2')
        self.assertEqual(self.view_count(), 2)

    def test_no_ip_never_counted(self):
        self.assertFalse(self.tracker.record_view(self.thread.pk, None))
        self.assertFalse(self.tracker.record_view(self.thread.pk, ''))
        self.assertEqual(self.view_count(), 0)

    def test_key_and_ttl(self):
        cache = MagicMock()
        cache.add.return_value = True
        ViewTracker(cache, ttl_seconds=3600).record_view(self.thread.pk, '10.0.0.1')
        cache.add.assert_called_once_with(f'viewed_thread:{self.thread.pk}:10.0.0.1', 1, timeout=3600)

    def test_cache_failure_fails_open(self):
        cache = MagicMock()
        cache.add.side_effect = ConnectionError('redis down')
        tracker = ViewTracker(cache)
        with self.assertLogs('forum.view_tracking', level='ERROR'):
            self.assertFalse(tracker.record_view(self.thread.pk, '10.0.0.1'))

        thread = get_thread(self.thread.pk, self.principal, ip='10.0.0.1', tracker=tracker)
        self.assertEqual(thread.pk, self.thread.pk)
        self.assertEqual(self.view_count(), 0)

    def test_counter_failure_is_logged(self):
        with patch('forum.view_tracking.Thread.objects.filter', side_effect=DatabaseError('boom')):
            with self.assertLogs('forum.view_tracking', level='ERROR'):
                self.assertTrue(self.tracker.record_view(self.thread.pk, '10.0.0.1'))
        self.assertEqual(self.view_count(), 0)

    def test_get_thread_records_view(self):
        thread = get_thread(self.thread.slug, self.principal, ip='10.0.0.9', tracker=self.tracker)
        self.assertEqual(thread.view_count, 1)
        thread = get_thread(self.thread.pk, self.principal, ip='10.0.0.9', tracker=self.tracker)
        self.assertEqual(thread.view_count, 1)
