"""
Forum App Configuration
"""
from django.apps import AppConfig


class ForumConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'forum'

    def ready(self):
        # Import signals when app is ready
        import forum.signals  # noqa
