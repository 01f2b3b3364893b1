"""
Read Queries
============

Query helpers that avoid N+1 problems.

OUR APPROACH:
-------------
1. Fetch each collection in ONE query
2. select_related for authors / last poster (LEFT JOIN)
3. Build trees in Python with an O(n) single pass

Listings are paginated with django.core.paginator. Thread pages are
small (<= FORUM_MAX_PAGE_SIZE), so offset pagination is fine here.
"""

from typing import Optional

from django.conf import settings
from django.core.paginator import Paginator, Page
from django.db.models import F

from .models import Thread, Post, PostVote, PostComment


def page_limits(page=None, limit=None) -> tuple[int, int]:
    """Normalize page/limit against the configured bounds."""
    default_size = getattr(settings, 'FORUM_DEFAULT_PAGE_SIZE', 20)
    max_size = getattr(settings, 'FORUM_MAX_PAGE_SIZE', 100)
    try:
        page = max(int(page or 1), 1)
    except (TypeError, ValueError):
        page = 1
    try:
        limit = int(limit or default_size)
    except (TypeError, ValueError):
        limit = default_size
    return page, min(max(limit, 1), max_size)


def paginate(queryset, page=None, limit=None) -> Page:
    page, limit = page_limits(page, limit)
    return Paginator(queryset, limit).get_page(page)


def build_category_tree(flat_categories: list) -> list[dict]:
    """
    Build nested tree structure from a flat, ordered list.

    Algorithm: O(n) single pass with hash map

    1. First pass: Create lookup dict {id -> node}
    2. Second pass: Attach children to parents

    Input order is preserved on every level, so an input sorted by
    display_order yields sibling lists sorted by display_order.

    Example Output:
        [
            {
                'category': Category(id=1),
                'children': [
                    {'category': Category(id=2), 'children': []},
                ]
            }
        ]
    """
    nodes = {}
    for category in flat_categories:
        nodes[category.pk] = {
            'category': category,
            'children': []
        }

    root_nodes = []
    for category in flat_categories:
        node = nodes[category.pk]
        parent_node = nodes.get(category.parent_id) if category.parent_id else None
        if parent_node is None:
            # Root, or parent outside the fetched set (subtree queries)
            root_nodes.append(node)
        else:
            parent_node['children'].append(node)

    return root_nodes


def get_category_threads(category_id: int):
    """
    Threads of a category: pinned first, then most recent activity.

    Query uses index on (category, -is_pinned, -last_post_at)
    """
    return (
        Thread.objects
        .filter(category_id=category_id)
        .select_related('author', 'last_post_by')
        .order_by('-is_pinned', F('last_post_at').desc(nulls_last=True), '-pk')
    )


def get_thread_posts(thread_id: int):
    """Posts of a thread, oldest first (starter post on top)."""
    return (
        Post.objects
        .filter(thread_id=thread_id)
        .select_related('author')
        .order_by('created_at', 'pk')
    )


def get_post_comments(post_id: int):
    return (
        PostComment.objects
        .filter(post_id=post_id)
        .select_related('author')
        .order_by('created_at', 'pk')
    )


def find_last_post(thread_id: int, exclude_post_id: Optional[int] = None) -> Optional[Post]:
    """
    Most recent post of a thread, optionally ignoring one post.

    ORDER BY created_at DESC, id DESC - the id breaks timestamp ties.
    """
    qs = Post.objects.filter(thread_id=thread_id)
    if exclude_post_id is not None:
        qs = qs.exclude(pk=exclude_post_id)
    return qs.order_by('-created_at', '-pk').first()


def count_posts_in_thread(thread_id: int) -> int:
    return Post.objects.filter(thread_id=thread_id).count()


def get_user_votes(user_id: Optional[int], post_ids) -> dict:
    """
    {post_id: +1 | -1} for the posts the user has voted on.

    Query: 1. Used to show the caller's vote state next to each post.
    """
    if user_id is None:
        return {}
    return dict(
        PostVote.objects
        .filter(user_id=user_id, post_id__in=list(post_ids))
        .values_list('post_id', 'value')
    )
