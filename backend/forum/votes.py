"""
Vote Ledger
===========

One live vote per (user, post). Submitting a value moves the pair through:

    state      submitted   ->  state      score  up   down   row
    NoVote     +1              Upvoted     +1    +1    0     create
    NoVote     -1              Downvoted   -1     0   +1     create
    Upvoted    +1              NoVote      -1    -1    0     delete
    Downvoted  -1              NoVote      +1     0   -1     delete
    Upvoted    -1              Downvoted   -2    -1   +1     update
    Downvoted  +1              Upvoted     +2    +1   -1     update

CONCURRENCY STRATEGY:
---------------------
The read-decide-write sequence runs in a single transaction:
1. SELECT ... FOR UPDATE the existing vote (if any)
2. Compute the transition
3. Write the vote row
4. Apply the deltas to Post.score/upvotes/downvotes with F()

Two first-votes racing from the same user cannot both insert: the unique
(user, post) constraint rejects the second. That IntegrityError rolls the
attempt back and the transition is retried - the retry sees the winner's
row and becomes an update/delete.
"""

import logging
from typing import Optional

from django.conf import settings
from django.db import transaction, IntegrityError
from django.db.models import F

from .exceptions import NotFound, Conflict, InvalidOperation
from .models import Post, PostVote
from .permissions import Principal, ensure_active, check_category_view

logger = logging.getLogger(__name__)

VALID_VOTE_VALUES = (PostVote.Value.UP, PostVote.Value.DOWN)


class VoteResult:
    """Result of a vote operation."""
    def __init__(
        self,
        score: int,
        user_vote: Optional[int],
        action: str,
    ):
        self.score = score
        self.user_vote = user_vote
        self.action = action

    def __repr__(self):
        return f"VoteResult(score={self.score}, user_vote={self.user_vote}, action={self.action!r})"


def transition(previous: Optional[int], submitted: int) -> tuple:
    """
    Pure state transition.

    RETURNS: (new_value, score_delta, upvote_delta, downvote_delta)
    new_value is None when the vote is toggled off.
    """
    new_value = None if previous == submitted else submitted
    score_delta = (new_value or 0) - (previous or 0)
    upvote_delta = int(new_value == 1) - int(previous == 1)
    downvote_delta = int(new_value == -1) - int(previous == -1)
    return new_value, score_delta, upvote_delta, downvote_delta


def _apply_vote(user_id: int, post_id: int, value: int) -> VoteResult:
    with transaction.atomic():
        existing = (
            PostVote.objects
            .select_for_update()
            .filter(user_id=user_id, post_id=post_id)
            .first()
        )
        previous = existing.value if existing else None
        new_value, score_delta, upvote_delta, downvote_delta = transition(previous, value)

        if existing is None:
            # May raise IntegrityError if a concurrent request won the insert
            PostVote.objects.create(user_id=user_id, post_id=post_id, value=value)
            action = 'created'
        elif new_value is None:
            existing.delete()
            action = 'removed'
        else:
            PostVote.objects.filter(pk=existing.pk).update(value=new_value)
            action = 'switched'

        Post.objects.filter(pk=post_id).update(
            score=F('score') + score_delta,
            upvotes=F('upvotes') + upvote_delta,
            downvotes=F('downvotes') + downvote_delta,
        )
        score = Post.objects.filter(pk=post_id).values_list('score', flat=True).get()

    logger.debug(
        f"Post {post_id} stats updated: score{score_delta:+d}, "
        f"up{upvote_delta:+d}, down{downvote_delta:+d}"
    )
    return VoteResult(score=score, user_vote=new_value, action=action)


def cast_vote(principal: Principal, post_id: int, value: int) -> VoteResult:
    """
    Submit +1 or -1 for a post on behalf of the principal.

    RETURNS: VoteResult with the post's resulting score and the caller's
    current vote (+1, -1 or None).

    RAISES:
    - InvalidOperation: value is not +1/-1
    - NotFound: post missing
    - Forbidden: inactive account, or category not viewable
    - Conflict: retries exhausted under sustained contention
    """
    principal = ensure_active(principal)
    if value not in VALID_VOTE_VALUES:
        raise InvalidOperation('Value must be 1 (upvote) or -1 (downvote).')

    post = Post.objects.select_related('thread__category').filter(pk=post_id).first()
    if post is None:
        raise NotFound(f"Post with ID {post_id} not found.")
    check_category_view(post.thread.category, principal)

    logger.info(f"User {principal.username} voting on post {post_id} with value {value}")

    max_attempts = max(getattr(settings, 'FORUM_VOTE_MAX_RETRIES', 3), 1)
    for attempt in range(1, max_attempts + 1):
        try:
            return _apply_vote(principal.user_id, post.pk, int(value))
        except IntegrityError:
            # Vote already exists - retry as update
            logger.info(
                f"Concurrent vote on post {post_id} by user {principal.user_id}, "
                f"retrying ({attempt}/{max_attempts})"
            )

    raise Conflict('Vote could not be recorded, please retry.')


def get_user_vote(user_id: Optional[int], post_id: int) -> Optional[int]:
    if user_id is None:
        return None
    return (
        PostVote.objects
        .filter(user_id=user_id, post_id=post_id)
        .values_list('value', flat=True)
        .first()
    )


def retract_user_votes(user_id: int) -> int:
    """
    Take back every vote a user holds before the user row goes away.

    Each vote runs through the toggle-off transition, so score/upvotes/
    downvotes move exactly as if the user had clicked the same button
    again. The vote rows are deleted here; the CASCADE that follows finds
    nothing left.

    RETURNS: number of votes retracted
    """
    with transaction.atomic():
        votes = list(
            PostVote.objects
            .select_for_update()
            .filter(user_id=user_id)
            .order_by('post_id')
        )
        for vote in votes:
            _, score_delta, upvote_delta, downvote_delta = transition(vote.value, vote.value)
            Post.objects.filter(pk=vote.post_id).update(
                score=F('score') + score_delta,
                upvotes=F('upvotes') + upvote_delta,
                downvotes=F('downvotes') + downvote_delta,
            )
        PostVote.objects.filter(pk__in=[vote.pk for vote in votes]).delete()

    if votes:
        logger.info(f"Retracted {len(votes)} votes of user {user_id}")
    return len(votes)
