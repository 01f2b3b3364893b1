"""
Data Models for the Forum Core
==============================

Design Philosophy:
------------------
1. Categories form a tree stored twice:
   - Adjacency edge (parent FK) for cheap "who is my parent" lookups
   - Closure table (CategoryClosure) for one-query ancestor/descendant sets
   The closure rows are maintained by categories.py on insert/move/delete.
   No ORM tree extension is involved.

2. Counters are denormalized on three levels:
   - Category.thread_count / Category.post_count
   - Thread.reply_count / Thread.last_post*
   - Post.upvotes / downvotes / score / comment_count
   They are written ONLY through counters.py and votes.py, always as
   F() expressions inside the mutation's transaction.
   Source of truth is still the rows - stats.py can rebuild every counter.

3. PostVote carries a unique (user, post) constraint.
   The constraint is the concurrency backstop for the vote ledger.

4. Role/status live on a Profile (one-to-one with auth.User).
   Created by a post_save receiver in signals.py.

Indexes Strategy:
-----------------
- thread.category + pinned + last_post_at: category listing order
- post.thread + created_at: thread pages and last-post recomputation
- closure.descendant + depth: ancestor chains
"""

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone


CATEGORY_NAME_MAX_LENGTH = 100
CATEGORY_SLUG_MAX_LENGTH = 120
THREAD_TITLE_MAX_LENGTH = 255
THREAD_SLUG_MAX_LENGTH = 280
COMMENT_MAX_LENGTH = 1000
PROFILE_TEXT_MAX_LENGTH = 100


class Role(models.TextChoices):
    """
    Access roles, most privileged first.

    Rank is an explicit integer (lower = more privileged). ADMIN's bypass
    is handled separately in permissions.has_permission, not by rank 0.
    """
    ADMIN = 'admin', 'Admin'
    MODERATOR = 'moderator', 'Moderator'
    USER = 'user', 'User'
    GUEST = 'guest', 'Guest'

    @property
    def rank(self) -> int:
        return ROLE_RANK[self]


ROLE_RANK = {
    Role.ADMIN: 0,
    Role.MODERATOR: 1,
    Role.USER: 2,
    Role.GUEST: 3,
}


class UserStatus(models.TextChoices):
    ACTIVE = 'active', 'Active'
    PENDING_VERIFICATION = 'pending_verification', 'Pending verification'
    SUSPENDED = 'suspended', 'Suspended'
    BANNED = 'banned', 'Banned'


class Profile(models.Model):
    """Forum-specific identity data for a Django user."""
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='forum_profile'
    )
    role = models.CharField(
        max_length=16,
        choices=Role.choices,
        default=Role.USER
    )
    status = models.CharField(
        max_length=32,
        choices=UserStatus.choices,
        default=UserStatus.PENDING_VERIFICATION,
        db_index=True
    )
    signature = models.CharField(max_length=PROFILE_TEXT_MAX_LENGTH, blank=True, default='')
    location = models.CharField(max_length=PROFILE_TEXT_MAX_LENGTH, blank=True, default='')
    avatar_url = models.URLField(max_length=255, blank=True, default='')
    created_at = models.DateTimeField(default=timezone.now)

    def __str__(self):
        return f"{self.user.username} ({self.role}, {self.status})"


class Category(models.Model):
    """
    A node of the category taxonomy.

    parent uses SET_NULL: removing a category detaches its children
    (they become roots). Threads use CASCADE, so a removed category
    takes its own threads with it.
    """
    name = models.CharField(max_length=CATEGORY_NAME_MAX_LENGTH, db_index=True)
    slug = models.SlugField(max_length=CATEGORY_SLUG_MAX_LENGTH, unique=True)
    description = models.TextField(blank=True, default='')
    icon_url = models.CharField(max_length=255, blank=True, default='')
    display_order = models.PositiveIntegerField(default=0)

    parent = models.ForeignKey(
        'self',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='children'
    )

    # Denormalized - maintained by counters.py only
    thread_count = models.PositiveIntegerField(default=0)
    post_count = models.PositiveIntegerField(default=0)

    min_view_role = models.CharField(
        max_length=16,
        choices=Role.choices,
        default=Role.GUEST
    )
    min_thread_role = models.CharField(
        max_length=16,
        choices=Role.choices,
        default=Role.USER
    )
    min_post_role = models.CharField(
        max_length=16,
        choices=Role.choices,
        default=Role.USER
    )

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['display_order', 'name']
        verbose_name_plural = 'categories'

    def __str__(self):
        return self.name


class CategoryClosure(models.Model):
    """
    Closure table: one row per (ancestor, descendant) path.

    Every category has a self row (depth 0). A category at depth d
    below the root has d + 1 rows where it is the descendant.
    """
    ancestor = models.ForeignKey(
        Category,
        on_delete=models.CASCADE,
        related_name='descendant_links'
    )
    descendant = models.ForeignKey(
        Category,
        on_delete=models.CASCADE,
        related_name='ancestor_links'
    )
    depth = models.PositiveIntegerField()

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['ancestor', 'descendant'],
                name='unique_category_closure_path'
            )
        ]
        indexes = [
            models.Index(fields=['descendant', 'depth'], name='closure_descendant_depth_idx'),
        ]

    def __str__(self):
        return f"{self.ancestor_id} -> {self.descendant_id} ({self.depth})"


class Thread(models.Model):
    """
    A discussion thread. Always has exactly one starter post.

    reply_count counts non-starter posts only.
    last_post* point at the most recent post (the starter post at minimum).
    """
    title = models.CharField(max_length=THREAD_TITLE_MAX_LENGTH)
    slug = models.SlugField(max_length=THREAD_SLUG_MAX_LENGTH, unique=True)

    category = models.ForeignKey(
        Category,
        on_delete=models.CASCADE,
        related_name='threads'
    )
    author = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='forum_threads'
    )

    is_locked = models.BooleanField(default=False)
    is_pinned = models.BooleanField(default=False)

    view_count = models.PositiveIntegerField(default=0)
    reply_count = models.PositiveIntegerField(default=0)

    last_post = models.ForeignKey(
        'Post',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )
    last_post_at = models.DateTimeField(null=True, blank=True)
    last_post_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-is_pinned', '-last_post_at']
        indexes = [
            models.Index(fields=['category', '-is_pinned', '-last_post_at'], name='thread_category_listing_idx'),
        ]

    def __str__(self):
        return self.title[:50]


class Post(models.Model):
    """
    A message inside a thread.

    Created either as the starter post (with the thread) or as a reply.
    The starter post cannot be deleted on its own.
    """
    content = models.TextField()

    thread = models.ForeignKey(
        Thread,
        on_delete=models.CASCADE,
        related_name='posts'
    )
    author = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='forum_posts'
    )
    # Reply-to edge; broken (NULL) when the target is deleted
    parent_post = models.ForeignKey(
        'self',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='replies'
    )

    is_thread_starter = models.BooleanField(default=False, db_index=True)
    is_edited = models.BooleanField(default=False)
    ip_address = models.GenericIPAddressField(null=True, blank=True)

    # Denormalized - maintained by votes.py / counters.py only
    upvotes = models.PositiveIntegerField(default=0)
    downvotes = models.PositiveIntegerField(default=0)
    score = models.IntegerField(default=0, db_index=True)
    comment_count = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['created_at', 'id']
        indexes = [
            models.Index(fields=['thread', 'created_at'], name='post_thread_created_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['thread'],
                condition=Q(is_thread_starter=True),
                name='unique_starter_post_per_thread'
            )
        ]

    def __str__(self):
        return f"Post {self.pk} in thread {self.thread_id}"


class PostVote(models.Model):
    """
    A single live vote of a user on a post.

    CRITICAL: unique (user, post) - a user holds at most one vote per post.
    """

    class Value(models.IntegerChoices):
        UP = 1, 'Upvote'
        DOWN = -1, 'Downvote'

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='forum_votes'
    )
    post = models.ForeignKey(
        Post,
        on_delete=models.CASCADE,
        related_name='votes'
    )
    value = models.SmallIntegerField(choices=Value.choices)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'post'],
                name='unique_vote_per_user_per_post'
            ),
            models.CheckConstraint(
                condition=Q(value__in=[1, -1]),
                name='post_vote_value_is_plus_or_minus_one'
            ),
        ]

    def __str__(self):
        return f"{self.user_id} voted {self.value:+d} on post {self.post_id}"


class PostComment(models.Model):
    """Append-only short comment under a post."""
    content = models.CharField(max_length=COMMENT_MAX_LENGTH)
    post = models.ForeignKey(
        Post,
        on_delete=models.CASCADE,
        related_name='comments'
    )
    author = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='forum_comments'
    )
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['created_at', 'id']
        indexes = [
            models.Index(fields=['post', 'created_at'], name='comment_post_created_idx'),
        ]

    def __str__(self):
        return f"Comment {self.pk} on post {self.post_id}"
