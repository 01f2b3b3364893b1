"""
Counter Propagation Protocol
============================

Keeps the denormalized counters in sync with the rows:

    Category.thread_count   live threads in the category
    Category.post_count     live posts across those threads
    Thread.reply_count      live non-starter posts
    Thread.last_post*       most recent post of the thread
    Post.comment_count      live comments of the post

RULES:
------
1. Called explicitly by the lifecycle manager (services.py), never from
   ORM signals. Every call must run inside the mutation's
   transaction.atomic() block, so a rollback of the mutation rolls the
   counters back too.
2. Every change is an atomic column update:

       UPDATE ... SET reply_count = reply_count + 1 WHERE id = %s

   via QuerySet.update(F(...)). Never read-modify-write on a model
   instance: two concurrent replies must end at +2, not +1.
3. Decrements are clamped at 0 with GREATEST(col - n, 0). The columns
   are PositiveIntegerField, so the database CHECK is the second guard.
"""

import logging

from django.db import transaction
from django.db.models import F, Q, Value
from django.db.models.functions import Greatest

from .models import Category, Thread, Post
from .queries import find_last_post, count_posts_in_thread

logger = logging.getLogger(__name__)


def _require_atomic() -> None:
    if not transaction.get_connection().in_atomic_block:
        raise RuntimeError('Counter propagation must run inside transaction.atomic()')


def increment(field: str, amount: int = 1):
    return F(field) + amount


def clamped_decrement(field: str, amount: int = 1):
    return Greatest(F(field) - amount, Value(0))


def on_thread_created(thread: Thread, starter_post: Post) -> None:
    """
    Thread + starter post were just inserted.

    - Thread: reply_count = 0, last_post* = starter post
    - Category: thread_count + 1, post_count + 1
    """
    _require_atomic()
    Thread.objects.filter(pk=thread.pk).update(
        reply_count=0,
        last_post_id=starter_post.pk,
        last_post_at=starter_post.created_at,
        last_post_by_id=starter_post.author_id,
    )
    Category.objects.filter(pk=thread.category_id).update(
        thread_count=increment('thread_count'),
        post_count=increment('post_count'),
    )
    logger.debug(f"Counters updated for new thread {thread.pk} in category {thread.category_id}")


def on_reply_created(post: Post) -> None:
    """
    A non-starter post was just inserted.

    - Thread: reply_count + 1; last_post* = this post unless a newer post
      already took that slot (concurrent replies commit in any order)
    - Category (via thread): post_count + 1
    """
    _require_atomic()
    Thread.objects.filter(pk=post.thread_id).update(
        reply_count=increment('reply_count'),
    )
    Thread.objects.filter(
        Q(last_post_at__isnull=True) | Q(last_post_at__lte=post.created_at),
        pk=post.thread_id,
    ).update(
        last_post_id=post.pk,
        last_post_at=post.created_at,
        last_post_by_id=post.author_id,
    )
    Category.objects.filter(threads__pk=post.thread_id).update(
        post_count=increment('post_count'),
    )
    logger.debug(f"Counters updated for reply {post.pk} in thread {post.thread_id}")


def on_reply_removed(post: Post) -> None:
    """
    A non-starter post is about to be deleted (call BEFORE post.delete():
    the delete nulls Thread.last_post through SET_NULL).

    - Thread: reply_count - 1 (clamped); if the post was the last post,
      repoint last_post* at the most recent remaining post
    - Category (via thread): post_count - 1 (clamped)

    The starter post is undeletable, so a remaining post always exists.
    """
    _require_atomic()
    thread = Thread.objects.select_for_update().get(pk=post.thread_id)

    update = {'reply_count': clamped_decrement('reply_count')}
    if thread.last_post_id == post.pk:
        new_last = find_last_post(thread.pk, exclude_post_id=post.pk)
        update.update(
            last_post_id=new_last.pk if new_last else None,
            last_post_at=new_last.created_at if new_last else None,
            last_post_by_id=new_last.author_id if new_last else None,
        )
        logger.debug(
            f"Last post of thread {thread.pk} moved from {post.pk} to "
            f"{new_last.pk if new_last else 'None'}"
        )

    Thread.objects.filter(pk=thread.pk).update(**update)
    Category.objects.filter(pk=thread.category_id).update(
        post_count=clamped_decrement('post_count'),
    )
    logger.debug(f"Counters updated for removed post {post.pk} in thread {thread.pk}")


def on_thread_removed(thread: Thread) -> int:
    """
    A thread is about to be deleted (call BEFORE thread.delete()).

    Posts are counted before the cascade runs.

    - Category: thread_count - 1, post_count - <posts in thread>

    RETURNS: number of posts the thread contained
    """
    _require_atomic()
    post_total = count_posts_in_thread(thread.pk)
    Category.objects.filter(pk=thread.category_id).update(
        thread_count=clamped_decrement('thread_count'),
        post_count=clamped_decrement('post_count', post_total),
    )
    logger.debug(
        f"Counters updated for removed thread {thread.pk}: "
        f"-1 thread, -{post_total} posts in category {thread.category_id}"
    )
    return post_total


def on_comment_created(comment) -> None:
    _require_atomic()
    Post.objects.filter(pk=comment.post_id).update(
        comment_count=increment('comment_count'),
    )


def on_comment_removed(comment) -> None:
    _require_atomic()
    Post.objects.filter(pk=comment.post_id).update(
        comment_count=clamped_decrement('comment_count'),
    )
