"""
Counter Audit & Rebuild
=======================

Recomputes every denormalized counter from the source rows.

The counter protocol keeps counters exact inside each transaction, so
in a healthy database the audit comes back empty. Rows written outside
the lifecycle manager (raw SQL, fixtures, the admin) are the usual
source of drift; rebuild_counters() corrects it.

QUERY STRATEGY:
---------------
One aggregate query per model, comparing stored vs. recomputed values:

    SELECT category.id, category.thread_count, COUNT(DISTINCT thread.id) ...
    GROUP BY category.id

Rebuilding a row locks it (SELECT ... FOR UPDATE) and recounts inside the
same transaction, so a concurrent mutation cannot interleave.
"""

import logging
from typing import List, TypedDict

from django.db import transaction
from django.db.models import Count, Q, OuterRef, Subquery

from .models import Category, Thread, Post

logger = logging.getLogger(__name__)


class CounterDrift(TypedDict):
    """One counter whose stored value differs from the rows."""
    model: str
    pk: int
    field: str
    stored: object
    actual: object


def _latest_post():
    return (
        Post.objects
        .filter(thread_id=OuterRef('pk'))
        .order_by('-created_at', '-pk')
    )


def _category_counts():
    return Category.objects.annotate(
        actual_thread_count=Count('threads', distinct=True),
        actual_post_count=Count('threads__posts', distinct=True),
    )


def _thread_counts():
    return Thread.objects.annotate(
        actual_reply_count=Count('posts', filter=Q(posts__is_thread_starter=False)),
        actual_last_post_id=Subquery(_latest_post().values('pk')[:1]),
    )


def _post_counts():
    return Post.objects.annotate(
        actual_upvotes=Count('votes', filter=Q(votes__value=1), distinct=True),
        actual_downvotes=Count('votes', filter=Q(votes__value=-1), distinct=True),
        actual_comment_count=Count('comments', distinct=True),
    )


AUDITS = (
    ('category', _category_counts, ('thread_count', 'post_count')),
    ('thread', _thread_counts, ('reply_count', 'last_post_id')),
    ('post', _post_counts, ('upvotes', 'downvotes', 'comment_count')),
)


def audit_counters() -> List[CounterDrift]:
    """
    Compare every stored counter with its recomputed value.

    RETURNS: one CounterDrift per mismatching (row, field).
    Post.score is checked as upvotes - downvotes.
    """
    drifts: List[CounterDrift] = []
    for model_name, queryset, fields in AUDITS:
        for row in queryset():
            for field in fields:
                stored = getattr(row, field)
                actual = getattr(row, f"actual_{field}")
                if stored != actual:
                    drifts.append(CounterDrift(
                        model=model_name, pk=row.pk, field=field,
                        stored=stored, actual=actual,
                    ))
            if model_name == 'post':
                actual_score = row.actual_upvotes - row.actual_downvotes
                if row.score != actual_score:
                    drifts.append(CounterDrift(
                        model='post', pk=row.pk, field='score',
                        stored=row.score, actual=actual_score,
                    ))
    return drifts


def recount_category(category_id: int) -> None:
    with transaction.atomic():
        Category.objects.select_for_update().get(pk=category_id)
        counts = _category_counts().values('actual_thread_count', 'actual_post_count').get(pk=category_id)
        Category.objects.filter(pk=category_id).update(
            thread_count=counts['actual_thread_count'],
            post_count=counts['actual_post_count'],
        )


def recount_thread(thread_id: int) -> None:
    with transaction.atomic():
        Thread.objects.select_for_update().get(pk=thread_id)
        reply_count = Post.objects.filter(thread_id=thread_id, is_thread_starter=False).count()
        last_post = (
            Post.objects
            .filter(thread_id=thread_id)
            .order_by('-created_at', '-pk')
            .first()
        )
        Thread.objects.filter(pk=thread_id).update(
            reply_count=reply_count,
            last_post_id=last_post.pk if last_post else None,
            last_post_at=last_post.created_at if last_post else None,
            last_post_by_id=last_post.author_id if last_post else None,
        )


def recount_post(post_id: int) -> None:
    with transaction.atomic():
        Post.objects.select_for_update().get(pk=post_id)
        counts = (
            _post_counts()
            .values('actual_upvotes', 'actual_downvotes', 'actual_comment_count')
            .get(pk=post_id)
        )
        Post.objects.filter(pk=post_id).update(
            upvotes=counts['actual_upvotes'],
            downvotes=counts['actual_downvotes'],
            score=counts['actual_upvotes'] - counts['actual_downvotes'],
            comment_count=counts['actual_comment_count'],
        )


RECOUNTERS = {
    'category': recount_category,
    'thread': recount_thread,
    'post': recount_post,
}


def rebuild_counters(dry_run: bool = False) -> List[CounterDrift]:
    """
    Audit, then recount every drifted row.

    RETURNS: the drifts found (before correction).
    """
    drifts = audit_counters()
    if dry_run:
        return drifts

    rows = {(drift['model'], drift['pk']) for drift in drifts}
    for model_name, pk in sorted(rows):
        RECOUNTERS[model_name](pk)

    if drifts:
        logger.warning(f"Rebuilt counters on {len(rows)} rows ({len(drifts)} drifted values)")
    else:
        logger.info('Counter audit clean, nothing to rebuild')
    return drifts
