"""
View-Once Tracker
=================

Counts a thread view at most once per (thread, IP) within a TTL window.

    key = "viewed_thread:<thread_id>:<ip>"

cache.add() is an atomic "insert if absent": only the request that
creates the key increments Thread.view_count.

FAIL-OPEN:
----------
The cache is an accelerator, not a dependency of the read path.
- cache error   -> logged, view not counted, read continues
- counter error -> logged, read continues
- no IP         -> never counted (known limitation)
"""

import logging
from typing import Optional

from django.conf import settings
from django.core.cache import caches
from django.db import transaction, DatabaseError
from django.db.models import F

from .models import Thread

logger = logging.getLogger(__name__)

DEFAULT_VIEW_TTL_SECONDS = 24 * 60 * 60


class ViewTracker:
    key_prefix = 'viewed_thread:'

    def __init__(self, cache, ttl_seconds: int = DEFAULT_VIEW_TTL_SECONDS):
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    def make_key(self, thread_id, ip: str) -> str:
        return f"{self.key_prefix}{thread_id}:{ip}"

    def record_view(self, thread_id, ip: Optional[str]) -> bool:
        """
        Count a view if this IP has not viewed the thread within the TTL.

        RETURNS: True if the view was counted.
        """
        if not ip:
            logger.warning(f"No IP address provided for view count tracking on thread {thread_id}")
            return False

        key = self.make_key(thread_id, ip)
        try:
            first_view = self.cache.add(key, 1, timeout=self.ttl_seconds)
        except Exception:
            logger.exception(f"Cache error during view count check for thread {thread_id} and IP {ip}")
            return False

        if not first_view:
            logger.debug(f"IP {ip} has already viewed thread {thread_id} within TTL.")
            return False

        logger.debug(f"Unique view detected for thread {thread_id} from IP {ip}.")
        self._increment(thread_id)
        return True

    def _increment(self, thread_id) -> None:
        try:
            # Savepoint: a failure here must not poison an enclosing transaction
            with transaction.atomic():
                Thread.objects.filter(pk=thread_id).update(view_count=F('view_count') + 1)
        except DatabaseError:
            logger.exception(f"Failed to increment view count for thread {thread_id}")


def default_view_tracker() -> ViewTracker:
    """Tracker wired to the configured cache alias and TTL."""
    alias = getattr(settings, 'FORUM_VIEW_CACHE_ALIAS', 'default')
    ttl = getattr(settings, 'FORUM_THREAD_VIEW_TTL_SECONDS', DEFAULT_VIEW_TTL_SECONDS)
    return ViewTracker(caches[alias], ttl_seconds=ttl)
