"""
Management command to audit and rebuild denormalized forum counters.

Usage:
    python manage.py rebuild_forum_stats            # audit + fix
    python manage.py rebuild_forum_stats --dry-run  # audit only
"""

from django.core.management.base import BaseCommand

from forum.stats import rebuild_counters


class Command(BaseCommand):
    help = 'Recompute category/thread/post counters from the source rows'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Report drift without fixing it'
        )

    def handle(self, *args, **options):
        drifts = rebuild_counters(dry_run=options['dry_run'])

        for drift in drifts:
            self.stdout.write(
                f"  {drift['model']} {drift['pk']}.{drift['field']}: "
                f"stored={drift['stored']} actual={drift['actual']}"
            )

        if not drifts:
            self.stdout.write(self.style.SUCCESS('All counters are consistent.'))
        elif options['dry_run']:
            self.stdout.write(self.style.WARNING(f'{len(drifts)} drifted counters found (dry run).'))
        else:
            self.stdout.write(self.style.SUCCESS(f'Rebuilt {len(drifts)} drifted counters.'))
