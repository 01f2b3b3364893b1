"""
Thread/Post Lifecycle Manager
=============================

Every mutation of threads, posts and comments goes through this module.

OPERATION SHAPE:
----------------
1. ensure_active(principal)           - status re-validated on every mutation
2. Role / ownership checks            - permissions.py
3. transaction.atomic():
       entity mutation
       counters.on_*()                - same transaction, explicit call
4. Log the outcome

If any statement inside the atomic block fails, the entity row AND the
counter updates roll back together. There is no code path that writes a
row without propagating its counters.

DELETION ORDER:
---------------
Counters run BEFORE .delete(): the thread's posts must be counted before
the cascade, and last_post must be repointed before SET_NULL clears it.

Deletes lock the parent row, then re-read the target FOR UPDATE. A row
that a concurrent request already deleted raises NotFound, so counters
are never decremented twice for one row.

STARTER POSTS:
--------------
The starter post is created with its thread and can only disappear with
it. remove_post() rejects it; remove_thread() is the only path.
"""

import logging
from typing import Optional

from django.core.paginator import Page
from django.db import transaction, IntegrityError

from . import counters
from .categories import find_category, make_slug
from .exceptions import NotFound, Conflict, Forbidden, InvalidOperation
from .models import (
    Role,
    Thread,
    Post,
    PostComment,
    THREAD_TITLE_MAX_LENGTH,
    THREAD_SLUG_MAX_LENGTH,
    COMMENT_MAX_LENGTH,
)
from .permissions import (
    Principal,
    ensure_active,
    require_role,
    require_owner_or_moderator,
    check_category_view,
)
from .queries import paginate, get_category_threads, get_thread_posts, get_post_comments
from .view_tracking import ViewTracker, default_view_tracker

logger = logging.getLogger(__name__)


def _clean_text(value: Optional[str], field: str, max_length: Optional[int] = None) -> str:
    value = (value or '').strip()
    if not value:
        raise InvalidOperation(f"{field} cannot be empty.")
    if max_length is not None and len(value) > max_length:
        raise InvalidOperation(f"{field} cannot exceed {max_length} characters.")
    return value


def _get_thread(id_or_slug, for_update: bool = False) -> Thread:
    qs = Thread.objects.select_related('category')
    if for_update:
        qs = qs.select_for_update(of=('self',))

    thread = None
    if isinstance(id_or_slug, int):
        thread = qs.filter(pk=id_or_slug).first()
    else:
        value = str(id_or_slug)
        thread = qs.filter(slug=value).first()
        if thread is None and value.isdigit():
            thread = qs.filter(pk=int(value)).first()

    if thread is None:
        logger.warning(f"Thread not found: {id_or_slug}")
        raise NotFound(f"Thread with identifier {id_or_slug} not found")
    return thread


def _lock_thread(thread_id) -> Thread:
    """Re-read the thread under FOR UPDATE inside the caller's transaction."""
    thread = Thread.objects.select_for_update().filter(pk=thread_id).first()
    if thread is None:
        logger.warning(f"Thread not found: {thread_id}")
        raise NotFound(f"Thread with identifier {thread_id} not found")
    return thread


def _get_post(post_id) -> Post:
    post = Post.objects.select_related('thread__category').filter(pk=post_id).first()
    if post is None:
        logger.warning(f"Post not found: {post_id}")
        raise NotFound(f"Post with ID {post_id} not found.")
    return post


def _get_comment(comment_id) -> PostComment:
    comment = PostComment.objects.filter(pk=comment_id).first()
    if comment is None:
        logger.warning(f"Comment not found: {comment_id}")
        raise NotFound(f"Comment with ID {comment_id} not found.")
    return comment


def _ensure_thread_slug_free(slug: str, exclude_pk=None) -> None:
    qs = Thread.objects.filter(slug=slug)
    if exclude_pk is not None:
        qs = qs.exclude(pk=exclude_pk)
    if qs.exists():
        raise Conflict('A thread with this title already exists.')


# ============================================================================
# THREADS
# ============================================================================

def create_thread(
    principal: Principal,
    category_id,
    title: str,
    content: str,
    ip: Optional[str] = None,
) -> Thread:
    """
    Create a thread together with its starter post.

    ATOMICITY:
    Thread row, starter post and the category counters (+1 thread,
    +1 post) commit together or not at all.

    RAISES:
    - Forbidden: inactive account, category not viewable, or role below
      the category's min_thread_role
    - NotFound: category missing
    - Conflict: another thread already uses the derived slug
    """
    principal = ensure_active(principal)
    title = _clean_text(title, 'Title', THREAD_TITLE_MAX_LENGTH)
    content = _clean_text(content, 'Content')

    category = find_category(category_id)
    check_category_view(category, principal)
    require_role(category.min_thread_role, principal, 'create threads in this category')

    slug = make_slug(title, THREAD_SLUG_MAX_LENGTH)

    with transaction.atomic():
        _ensure_thread_slug_free(slug)
        try:
            with transaction.atomic():
                thread = Thread.objects.create(
                    title=title,
                    slug=slug,
                    category=category,
                    author_id=principal.user_id,
                )
        except IntegrityError:
            logger.warning(f"Slug collision while creating thread '{title}'")
            raise Conflict('A thread with this title already exists.')

        starter_post = Post.objects.create(
            content=content,
            thread=thread,
            author_id=principal.user_id,
            is_thread_starter=True,
            ip_address=ip or None,
        )
        counters.on_thread_created(thread, starter_post)

    thread.refresh_from_db()
    logger.info(
        f"Thread {thread.pk} created by {principal.username} in category {category.pk} "
        f"(starter post {starter_post.pk})"
    )
    return thread


def get_thread(
    id_or_slug,
    principal: Optional[Principal] = None,
    ip: Optional[str] = None,
    tracker: Optional[ViewTracker] = None,
) -> Thread:
    """
    Single thread by id or slug. Records a view for the caller's IP.
    """
    thread = _get_thread(id_or_slug)
    check_category_view(thread.category, principal)

    tracker = tracker or default_view_tracker()
    if tracker.record_view(thread.pk, ip):
        thread.refresh_from_db(fields=['view_count'])
    return thread


def list_threads(
    category_id_or_slug,
    principal: Optional[Principal] = None,
    page=None,
    limit=None,
) -> Page:
    """Threads of a category: pinned first, then latest activity."""
    category = find_category(category_id_or_slug)
    check_category_view(category, principal)
    return paginate(get_category_threads(category.pk), page, limit)


def update_thread(
    principal: Principal,
    thread_id,
    *,
    title: Optional[str] = None,
    is_locked: Optional[bool] = None,
    is_pinned: Optional[bool] = None,
) -> Thread:
    """
    Update a thread.

    - title: author or moderator; re-derives the slug
    - is_locked / is_pinned: admin or moderator only, ownership is not enough

    Only the touched columns are saved: reply_count, view_count and
    last_post* are owned by the counter protocol.
    """
    principal = ensure_active(principal)

    with transaction.atomic():
        thread = _get_thread(thread_id, for_update=True)
        require_owner_or_moderator(principal, thread.author_id, 'update this thread')
        if is_locked is not None or is_pinned is not None:
            require_role(Role.MODERATOR, principal, 'lock or pin threads')

        fields = []
        if title is not None:
            title = _clean_text(title, 'Title', THREAD_TITLE_MAX_LENGTH)
            if title != thread.title:
                slug = make_slug(title, THREAD_SLUG_MAX_LENGTH)
                _ensure_thread_slug_free(slug, exclude_pk=thread.pk)
                thread.title = title
                thread.slug = slug
                fields += ['title', 'slug']
        if is_locked is not None:
            thread.is_locked = bool(is_locked)
            fields.append('is_locked')
        if is_pinned is not None:
            thread.is_pinned = bool(is_pinned)
            fields.append('is_pinned')

        if fields:
            try:
                with transaction.atomic():
                    thread.save(update_fields=fields + ['updated_at'])
            except IntegrityError:
                raise Conflict('A thread with this title already exists.')

    logger.info(f"Thread {thread.pk} updated by {principal.username}: {', '.join(fields) or 'no changes'}")
    return thread


def remove_thread(principal: Principal, thread_id) -> None:
    """
    Delete a thread with all of its posts, votes and comments.

    The category loses 1 thread and every post the thread held.
    """
    principal = ensure_active(principal)

    with transaction.atomic():
        thread = _get_thread(thread_id, for_update=True)
        require_owner_or_moderator(principal, thread.author_id, 'delete this thread')

        post_total = counters.on_thread_removed(thread)
        thread.delete()

    logger.info(f"Thread {thread_id} deleted by {principal.username} ({post_total} posts removed)")


# ============================================================================
# POSTS
# ============================================================================

def create_reply(
    principal: Principal,
    thread_id,
    content: str,
    parent_post_id=None,
    ip: Optional[str] = None,
) -> Post:
    """
    Reply to a thread.

    RAISES:
    - Forbidden: inactive account, category not viewable, role below
      min_post_role, or thread locked (for every role)
    - NotFound: thread missing, or parent post not in this thread
    """
    principal = ensure_active(principal)
    content = _clean_text(content, 'Content')

    thread = _get_thread(thread_id)
    check_category_view(thread.category, principal)
    require_role(thread.category.min_post_role, principal, 'post in this category')

    with transaction.atomic():
        # is_locked is read under the row lock so a concurrent lock wins
        thread = _lock_thread(thread.pk)
        if thread.is_locked:
            logger.warning(f"Attempt to post in locked thread {thread.pk} by {principal.username}")
            raise Forbidden('This thread is locked.')

        if parent_post_id is not None:
            if not Post.objects.filter(pk=parent_post_id, thread_id=thread.pk).exists():
                raise NotFound(f"Parent post with ID {parent_post_id} not found in this thread.")

        post = Post.objects.create(
            content=content,
            thread_id=thread.pk,
            author_id=principal.user_id,
            parent_post_id=parent_post_id,
            is_thread_starter=False,
            ip_address=ip or None,
        )
        counters.on_reply_created(post)

    logger.info(f"Post {post.pk} created by {principal.username} in thread {thread.pk}")
    return post


def find_post(post_id, principal: Optional[Principal] = None) -> Post:
    post = _get_post(post_id)
    check_category_view(post.thread.category, principal)
    return post


def list_posts(thread_id, principal: Optional[Principal] = None, page=None, limit=None) -> Page:
    """Posts of a thread, oldest first."""
    thread = _get_thread(thread_id)
    check_category_view(thread.category, principal)
    return paginate(get_thread_posts(thread.pk), page, limit)


def update_post(principal: Principal, post_id, content: str) -> Post:
    principal = ensure_active(principal)
    content = _clean_text(content, 'Content')

    post = _get_post(post_id)
    require_owner_or_moderator(principal, post.author_id, 'edit this post')

    post.content = content
    post.is_edited = True
    post.save(update_fields=['content', 'is_edited', 'updated_at'])

    logger.info(f"Post {post.pk} edited by {principal.username}")
    return post


def remove_post(principal: Principal, post_id) -> None:
    """
    Delete a reply.

    RAISES:
    - InvalidOperation: the post is a thread's starter post; delete the
      thread instead
    - Forbidden: not the author and not a moderator
    """
    principal = ensure_active(principal)

    post = _get_post(post_id)
    require_owner_or_moderator(principal, post.author_id, 'delete this post')
    if post.is_thread_starter:
        logger.warning(f"Attempt to delete starter post {post.pk} by {principal.username}")
        raise InvalidOperation('The starter post cannot be deleted. Delete the thread instead.')

    with transaction.atomic():
        # Thread lock first (same order as replies), then re-check the row:
        # a concurrent delete of this post may have committed meanwhile
        _lock_thread(post.thread_id)
        post = Post.objects.select_for_update().filter(pk=post.pk).first()
        if post is None:
            logger.warning(f"Post {post_id} already deleted")
            raise NotFound(f"Post with ID {post_id} not found.")

        counters.on_reply_removed(post)
        post.delete()

    logger.info(f"Post {post_id} deleted by {principal.username}")


# ============================================================================
# COMMENTS
# ============================================================================

def add_comment(principal: Principal, post_id, content: str) -> PostComment:
    principal = ensure_active(principal)
    content = _clean_text(content, 'Comment', COMMENT_MAX_LENGTH)

    post = _get_post(post_id)
    check_category_view(post.thread.category, principal)

    with transaction.atomic():
        comment = PostComment.objects.create(
            content=content,
            post_id=post.pk,
            author_id=principal.user_id,
        )
        counters.on_comment_created(comment)

    logger.info(f"Comment {comment.pk} added by {principal.username} to post {post.pk}")
    return comment


def remove_comment(principal: Principal, comment_id) -> None:
    principal = ensure_active(principal)

    comment = _get_comment(comment_id)
    require_owner_or_moderator(principal, comment.author_id, 'delete this comment')

    with transaction.atomic():
        Post.objects.select_for_update().filter(pk=comment.post_id).first()
        comment = PostComment.objects.select_for_update().filter(pk=comment.pk).first()
        if comment is None:
            logger.warning(f"Comment {comment_id} already deleted")
            raise NotFound(f"Comment with ID {comment_id} not found.")

        counters.on_comment_removed(comment)
        comment.delete()

    logger.info(f"Comment {comment_id} deleted by {principal.username}")


def list_comments(post_id, principal: Optional[Principal] = None, page=None, limit=None) -> Page:
    post = find_post(post_id, principal)
    return paginate(get_post_comments(post.pk), page, limit)
