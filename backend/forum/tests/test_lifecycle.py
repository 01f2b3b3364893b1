"""
Tests for the thread/post lifecycle and counter propagation.

CRITICAL: These tests verify that:
1. Category.post_count == live posts across its threads
2. Thread.reply_count == live non-starter posts
3. last_post* follows creation and deletion
4. A starter post can never be deleted on its own
"""
import threading
from unittest import skipUnless
from unittest.mock import patch

from django.db import connection, DatabaseError
from django.test import TestCase, TransactionTestCase

from forum import counters
from forum.categories import create_category
from forum.exceptions import NotFound, Conflict, Forbidden, InvalidOperation
from forum.models import Category, Thread, Post, PostComment, Role
from forum.services import (
    create_thread,
    create_reply,
    update_thread,
    remove_thread,
    update_post,
    remove_post,
    find_post,
    list_posts,
    list_threads,
    add_comment,
    remove_comment,
    list_comments,
)
from forum.stats import audit_counters
from .helpers import make_user


class ForumScenarioTestCase(TestCase):
    """
    Category C (min_thread_role=USER):
    USER creates T1, USER2 replies, the reply is deleted.
    """

    def setUp(self):
        self.user, self.principal = make_user('user1')
        self.user2, self.principal2 = make_user('user2')
        self.category = create_category('C', min_thread_role=Role.USER)

    def test_scenario(self):
        thread = create_thread(self.principal, self.category.pk, 'T1', 'hello world, this is a test thread')
        self.category.refresh_from_db()
        self.assertEqual(self.category.thread_count, 1)
        self.assertEqual(self.category.post_count, 1)
        self.assertEqual(thread.reply_count, 0)
        self.assertEqual(thread.last_post_by_id, self.user.id)
        starter = Post.objects.get(thread=thread, is_thread_starter=True)
        self.assertEqual(thread.last_post_id, starter.pk)

        reply = create_reply(self.principal2, thread.pk, 'nice post!')
        thread.refresh_from_db()
        self.category.refresh_from_db()
        self.assertEqual(thread.reply_count, 1)
        self.assertEqual(self.category.post_count, 2)
        self.assertEqual(thread.last_post_by_id, self.user2.id)
        self.assertEqual(thread.last_post_id, reply.pk)

        remove_post(self.principal2, reply.pk)
        thread.refresh_from_db()
        self.category.refresh_from_db()
        self.assertEqual(thread.reply_count, 0)
        self.assertEqual(self.category.post_count, 1)
        self.assertEqual(thread.last_post_by_id, self.user.id)
        self.assertEqual(thread.last_post_id, starter.pk)

    def test_counters_match_rows_after_mixed_sequence(self):
        t1 = create_thread(self.principal, self.category.pk, 'First thread', 'one')
        t2 = create_thread(self.principal2, self.category.pk, 'Second thread', 'two')
        replies = [create_reply(self.principal2, t1.pk, f'reply {i}') for i in range(3)]
        create_reply(self.principal, t2.pk, 'reply on t2')
        remove_post(self.principal2, replies[1].pk)
        remove_thread(self.principal2, t2.pk)

        self.category.refresh_from_db()
        t1.refresh_from_db()
        self.assertEqual(self.category.thread_count, 1)
        self.assertEqual(self.category.post_count, Post.objects.filter(thread__category=self.category).count())
        self.assertEqual(t1.reply_count, Post.objects.filter(thread=t1, is_thread_starter=False).count())
        self.assertEqual(audit_counters(), [])


class ThreadLifecycleTestCase(TestCase):

    def setUp(self):
        self.author, self.principal = make_user('author')
        self.other, self.other_principal = make_user('other')
        self.mod_user, self.moderator = make_user('mod', role=Role.MODERATOR)
        self.category = create_category('General')
        self.thread = create_thread(self.principal, self.category.pk, 'Hello world', 'Starter content')

    def test_thread_requires_min_thread_role(self):
        staff = create_category('Staff', min_thread_role=Role.MODERATOR)
        with self.assertRaises(Forbidden) as ctx:
            create_thread(self.principal, staff.pk, 'Nope', 'content')
        self.assertEqual(ctx.exception.required_role, Role.MODERATOR)
        create_thread(self.moderator, staff.pk, 'Staff notes', 'content')

    def test_pending_user_cannot_create(self):
        _, pending = make_user('pending', status='pending_verification')
        with self.assertRaises(Forbidden):
            create_thread(pending, self.category.pk, 'Hi', 'content')

    def test_duplicate_title_conflicts(self):
        with self.assertRaises(Conflict):
            create_thread(self.other_principal, self.category.pk, 'Hello World!', 'again')
        self.category.refresh_from_db()
        self.assertEqual(self.category.thread_count, 1)

    def test_missing_category(self):
        with self.assertRaises(NotFound):
            create_thread(self.principal, 999999, 'Lost', 'content')

    def test_owner_renames(self):
        thread = update_thread(self.principal, self.thread.pk, title='Renamed thread')
        self.assertEqual(thread.slug, 'renamed-thread')

    def test_other_user_cannot_rename(self):
        with self.assertRaises(Forbidden):
            update_thread(self.other_principal, self.thread.pk, title='Hijacked')

    def test_owner_cannot_lock(self):
        with self.assertRaises(Forbidden) as ctx:
            update_thread(self.principal, self.thread.pk, is_locked=True)
        self.assertEqual(ctx.exception.required_role, Role.MODERATOR)
        self.thread.refresh_from_db()
        self.assertFalse(self.thread.is_locked)

    def test_moderator_locks_and_pins(self):
        update_thread(self.moderator, self.thread.pk, is_locked=True, is_pinned=True)
        self.thread.refresh_from_db()
        self.assertTrue(self.thread.is_locked)
        self.assertTrue(self.thread.is_pinned)

    def test_update_does_not_clobber_counters(self):
        stale = Thread.objects.get(pk=self.thread.pk)
        create_reply(self.other_principal, self.thread.pk, 'reply')
        update_thread(self.principal, stale.pk, title='New title')
        stale.title = 'Stale title'
        stale.save(update_fields=['title'])
        stale.refresh_from_db()
        self.assertEqual(stale.reply_count, 1)

    def test_remove_thread_cascades(self):
        reply = create_reply(self.other_principal, self.thread.pk, 'reply')
        add_comment(self.other_principal, reply.pk, 'comment')
        remove_thread(self.principal, self.thread.pk)

        self.assertFalse(Thread.objects.exists())
        self.assertFalse(Post.objects.exists())
        self.assertFalse(PostComment.objects.exists())
        self.category.refresh_from_db()
        self.assertEqual(self.category.thread_count, 0)
        self.assertEqual(self.category.post_count, 0)

    def test_other_user_cannot_remove_thread(self):
        with self.assertRaises(Forbidden):
            remove_thread(self.other_principal, self.thread.pk)

    def test_moderator_removes_thread(self):
        remove_thread(self.moderator, self.thread.slug)
        self.assertFalse(Thread.objects.exists())

    def test_list_threads_pinned_first(self):
        newer = create_thread(self.other_principal, self.category.pk, 'Newer thread', 'content')
        update_thread(self.moderator, self.thread.pk, is_pinned=True)
        page = list_threads(self.category.slug, self.principal)
        self.assertEqual([t.pk for t in page.object_list], [self.thread.pk, newer.pk])


class PostLifecycleTestCase(TestCase):

    def setUp(self):
        self.author, self.principal = make_user('author')
        self.other, self.other_principal = make_user('other')
        self.mod_user, self.moderator = make_user('mod', role=Role.MODERATOR)
        self.category = create_category('General')
        self.thread = create_thread(self.principal, self.category.pk, 'Hello world', 'Starter content')
        self.starter = Post.objects.get(thread=self.thread, is_thread_starter=True)

    def test_starter_post_cannot_be_deleted(self):
        for principal in (self.principal, self.moderator):
            with self.assertRaises(InvalidOperation):
                remove_post(principal, self.starter.pk)
        self.assertTrue(Post.objects.filter(pk=self.starter.pk).exists())
        self.category.refresh_from_db()
        self.assertEqual(self.category.post_count, 1)

    def test_locked_thread_rejects_every_role(self):
        update_thread(self.moderator, self.thread.pk, is_locked=True)
        for principal in (self.principal, self.moderator):
            with self.assertRaises(Forbidden):
                create_reply(principal, self.thread.pk, 'late reply')
        self.thread.refresh_from_db()
        self.assertEqual(self.thread.reply_count, 0)

    def test_reply_requires_min_post_role(self):
        readonly = create_category('Announcements', min_post_role=Role.MODERATOR)
        thread = create_thread(self.moderator, readonly.pk, 'Release notes', 'v1')
        with self.assertRaises(Forbidden):
            create_reply(self.principal, thread.pk, 'thanks')

    def test_parent_post_must_be_in_thread(self):
        other_thread = create_thread(self.other_principal, self.category.pk, 'Other thread', 'content')
        foreign = Post.objects.get(thread=other_thread)
        with self.assertRaises(NotFound):
            create_reply(self.principal, self.thread.pk, 'reply', parent_post_id=foreign.pk)

        reply = create_reply(self.principal, self.thread.pk, 'reply', parent_post_id=self.starter.pk)
        self.assertEqual(reply.parent_post_id, self.starter.pk)

    def test_missing_thread(self):
        with self.assertRaises(NotFound):
            create_reply(self.principal, 999999, 'reply')

    def test_removing_older_reply_keeps_last_post(self):
        first = create_reply(self.other_principal, self.thread.pk, 'first')
        second = create_reply(self.principal, self.thread.pk, 'second')
        remove_post(self.other_principal, first.pk)

        self.thread.refresh_from_db()
        self.assertEqual(self.thread.reply_count, 1)
        self.assertEqual(self.thread.last_post_id, second.pk)

    def test_removing_last_reply_moves_last_post_back(self):
        first = create_reply(self.other_principal, self.thread.pk, 'first')
        second = create_reply(self.principal, self.thread.pk, 'second')
        remove_post(self.moderator, second.pk)

        self.thread.refresh_from_db()
        self.assertEqual(self.thread.last_post_id, first.pk)
        self.assertEqual(self.thread.last_post_by_id, self.other.id)

    def test_other_user_cannot_remove_reply(self):
        reply = create_reply(self.principal, self.thread.pk, 'mine')
        with self.assertRaises(Forbidden):
            remove_post(self.other_principal, reply.pk)

    def test_update_post_marks_edited(self):
        post = update_post(self.principal, self.starter.pk, 'edited content')
        self.assertTrue(post.is_edited)
        self.assertEqual(find_post(self.starter.pk).content, 'edited content')
        with self.assertRaises(Forbidden):
            update_post(self.other_principal, self.starter.pk, 'nope')

    def test_counter_failure_rolls_back_reply(self):
        with patch('forum.services.counters.on_reply_created', side_effect=DatabaseError('boom')):
            with self.assertRaises(DatabaseError):
                create_reply(self.other_principal, self.thread.pk, 'lost reply')
        self.assertEqual(Post.objects.filter(thread=self.thread).count(), 1)

    def test_stale_thread_instance_cannot_lose_replies(self):
        stale = Thread.objects.get(pk=self.thread.pk)
        create_reply(self.other_principal, self.thread.pk, 'one')
        create_reply(self.other_principal, self.thread.pk, 'two')
        stale.is_pinned = True
        stale.save(update_fields=['is_pinned'])

        self.thread.refresh_from_db()
        self.assertEqual(self.thread.reply_count, 2)

    def test_repeated_delete_keeps_counters(self):
        first = create_reply(self.other_principal, self.thread.pk, 'first')
        create_reply(self.other_principal, self.thread.pk, 'second')
        loaded_before_delete = Post.objects.get(pk=first.pk)
        remove_post(self.other_principal, first.pk)

        # A second request that read the row before the first delete committed
        with patch('forum.services._get_post', return_value=loaded_before_delete):
            with self.assertRaises(NotFound):
                remove_post(self.other_principal, first.pk)

        self.thread.refresh_from_db()
        self.category.refresh_from_db()
        self.assertEqual(self.thread.reply_count, 1)
        self.assertEqual(self.category.post_count, 2)
        self.assertEqual(audit_counters(), [])

    def test_lock_committed_after_read_rejects_reply(self):
        read_before_lock = Thread.objects.select_related('category').get(pk=self.thread.pk)
        update_thread(self.moderator, self.thread.pk, is_locked=True)

        with patch('forum.services._get_thread', return_value=read_before_lock):
            with self.assertRaises(Forbidden):
                create_reply(self.principal, self.thread.pk, 'slipped in')

        self.assertEqual(Post.objects.filter(thread=self.thread).count(), 1)
        self.thread.refresh_from_db()
        self.assertEqual(self.thread.reply_count, 0)

    def test_list_posts_oldest_first(self):
        reply = create_reply(self.other_principal, self.thread.pk, 'reply')
        page = list_posts(self.thread.pk, self.principal)
        self.assertEqual([p.pk for p in page.object_list], [self.starter.pk, reply.pk])


class CommentLifecycleTestCase(TestCase):

    def setUp(self):
        self.author, self.principal = make_user('author')
        self.other, self.other_principal = make_user('other')
        self.category = create_category('General')
        self.thread = create_thread(self.principal, self.category.pk, 'Hello world', 'Starter content')
        self.post = Post.objects.get(thread=self.thread)

    def test_comment_counts(self):
        comment = add_comment(self.other_principal, self.post.pk, 'first!')
        add_comment(self.principal, self.post.pk, 'second')
        self.post.refresh_from_db()
        self.assertEqual(self.post.comment_count, 2)

        remove_comment(self.other_principal, comment.pk)
        self.post.refresh_from_db()
        self.assertEqual(self.post.comment_count, 1)
        self.assertEqual(len(list_comments(self.post.pk).object_list), 1)

    def test_only_owner_removes_comment(self):
        comment = add_comment(self.other_principal, self.post.pk, 'mine')
        with self.assertRaises(Forbidden):
            remove_comment(self.principal, comment.pk)

    def test_repeated_comment_delete_keeps_count(self):
        comment = add_comment(self.other_principal, self.post.pk, 'double click')
        add_comment(self.principal, self.post.pk, 'stays')
        loaded_before_delete = PostComment.objects.get(pk=comment.pk)
        remove_comment(self.other_principal, comment.pk)

        with patch('forum.services._get_comment', return_value=loaded_before_delete):
            with self.assertRaises(NotFound):
                remove_comment(self.other_principal, comment.pk)

        self.post.refresh_from_db()
        self.assertEqual(self.post.comment_count, 1)

    def test_comment_length_limit(self):
        with self.assertRaises(InvalidOperation):
            add_comment(self.principal, self.post.pk, 'x' * 1001)

    def test_missing_post(self):
        with self.assertRaises(NotFound):
            add_comment(self.principal, 999999, 'hello')


class CounterGuardTestCase(TransactionTestCase):
    """Counter propagation refuses to run outside a transaction."""

    def test_requires_atomic_block(self):
        _, principal = make_user('user1')
        category = create_category('General')
        thread = create_thread(principal, category.pk, 'Hello world', 'content')
        post = Post.objects.get(thread=thread)
        with self.assertRaises(RuntimeError):
            counters.on_reply_created(post)


@skipUnless(connection.vendor == 'postgresql', 'Row-level concurrency needs PostgreSQL')
class ConcurrentReplyTestCase(TransactionTestCase):
    """
    Two replies committed concurrently must both be counted.

    Needs real parallel transactions, so PostgreSQL only
    (SQLite serializes writers at the database level).
    """

    def test_concurrent_replies_no_lost_update(self):
        _, principal = make_user('user1')
        _, principal2 = make_user('user2')
        category = create_category('General')
        thread = create_thread(principal, category.pk, 'Busy thread', 'content')

        barrier = threading.Barrier(2)
        errors = []

        def reply(p, text):
            try:
                barrier.wait()
                create_reply(p, thread.pk, text)
            except Exception as e:
                errors.append(e)
            finally:
                connection.close()

        workers = [
            threading.Thread(target=reply, args=(principal, 'one')),
            threading.Thread(target=reply, args=(principal2, 'two')),
        ]
        for w in workers:
            w.start()
        for w in workers:
            w.join()

        self.assertEqual(errors, [])
        thread.refresh_from_db()
        self.assertEqual(thread.reply_count, 2)
        self.assertEqual(Category.objects.get(pk=category.pk).post_count, 3)
